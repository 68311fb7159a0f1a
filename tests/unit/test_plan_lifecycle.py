"""Plan model transition tests."""

import pytest

from planrelay.contracts import PlanStatus, StepResult, StepStatus
from planrelay.errors import InvalidTransitionError, StepAlreadyExecutedError

from tests.fakes import make_plan


def test_plan_runs_to_completion():
    plan = make_plan(2)
    assert plan.status == PlanStatus.PENDING
    assert plan.current_step is plan.steps[0]

    plan.start()
    assert plan.status == PlanStatus.RUNNING

    step = plan.claim_current_step()
    assert step.status == StepStatus.RUNNING
    plan.record_step_result(StepResult(output="a"))
    assert plan.current_step_index == 1
    assert plan.status == PlanStatus.RUNNING

    plan.claim_current_step()
    plan.record_step_result(StepResult(output="b"))
    assert plan.current_step_index == 2
    assert plan.status == PlanStatus.COMPLETED
    assert plan.is_finished()
    assert [r["output"] for r in plan.previous_results()] == ["a", "b"]


def test_failed_step_fails_plan_with_reason():
    plan = make_plan(3)
    plan.start()
    plan.claim_current_step()
    plan.record_step_result(StepResult(exit_code=1, error="boom"))

    assert plan.status == PlanStatus.FAILED
    assert plan.failure_reason == "boom"
    assert plan.steps[0].status == StepStatus.FAILED
    assert plan.current_step_index == 1


def test_executed_step_is_immutable():
    plan = make_plan(1)
    step = plan.steps[0]
    step.record(StepResult(output="x"), plan.updated_at)
    with pytest.raises(StepAlreadyExecutedError):
        step.record(StepResult(output="y"), plan.updated_at)
    assert step.result.output == "x"


def test_start_requires_pending():
    plan = make_plan(1)
    plan.start()
    with pytest.raises(InvalidTransitionError):
        plan.start()


def test_completed_plan_cannot_be_failed():
    plan = make_plan(1)
    plan.start()
    plan.claim_current_step()
    plan.record_step_result(StepResult())
    with pytest.raises(InvalidTransitionError):
        plan.fail("late")


def test_approval_round_trip():
    plan = make_plan(2)
    plan.steps[0].requires_approval = True
    plan.start()

    step = plan.pause_for_approval()
    assert plan.status == PlanStatus.PAUSED
    assert step.status == StepStatus.AWAITING_APPROVAL

    plan.approve()
    assert plan.status == PlanStatus.RUNNING
    assert plan.steps[0].status == StepStatus.PENDING
    assert plan.steps[0].requires_approval is False


def test_reject_skips_remaining_steps():
    plan = make_plan(3)
    plan.start()
    plan.claim_current_step()
    plan.record_step_result(StepResult())
    plan.pause_for_approval()

    plan.reject()
    assert plan.status == PlanStatus.CANCELLED
    assert plan.current_step_index == 3
    assert [s.status for s in plan.steps[1:]] == [StepStatus.SKIPPED, StepStatus.SKIPPED]
    assert plan.failure_reason == "Step rejected by user"


def test_approve_requires_paused_plan():
    plan = make_plan(1)
    with pytest.raises(InvalidTransitionError):
        plan.approve()
