import pytest

from planrelay.contracts import PlanStatus, PlanStep, StepResult, StepStatus
from planrelay.errors import PlanConflictError, PlanNotFoundError
from planrelay.orchestrate import PlanOrchestrator
from planrelay.steps import StepRegistry, default_registry

from tests.fakes import RecordingReporter, make_plan


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def orchestrator(repo, reporter):
    return PlanOrchestrator(repo, default_registry(), reporter)


@pytest.mark.asyncio
async def test_three_step_plan_runs_one_step_per_call(repo, reporter, orchestrator):
    plan = make_plan(3)
    await repo.create_plan(plan)

    first = await orchestrator.orchestrate(plan.id)
    assert first.status == PlanStatus.RUNNING
    assert first.current_step_index == 1
    assert first.steps[0].result.output == "step 1"
    assert first.steps[1].status == StepStatus.PENDING

    second = await orchestrator.orchestrate(plan.id)
    assert second.status == PlanStatus.RUNNING
    assert second.current_step_index == 2

    third = await orchestrator.orchestrate(plan.id)
    assert third.status == PlanStatus.COMPLETED
    assert third.current_step_index == 3
    assert reporter.completed == [plan.id]

    # Further continuations change nothing and report nothing.
    fourth = await orchestrator.orchestrate(plan.id)
    assert fourth.status == PlanStatus.COMPLETED
    assert fourth.current_step_index == 3
    assert reporter.completed == [plan.id]

    stored = await repo.get_plan(plan.id)
    assert [s.status for s in stored.steps] == [StepStatus.COMPLETED] * 3
    assert stored.version == 6


@pytest.mark.asyncio
async def test_prior_results_are_passed_to_later_steps(repo, reporter):
    seen = []
    registry = default_registry()

    @registry.register("collect")
    async def collect(step, context):
        seen.append(context.prior_results)
        return len(context.prior_results)

    plan = make_plan(1)
    plan.steps.append(PlanStep(action="collect"))
    await repo.create_plan(plan)
    orchestrator = PlanOrchestrator(repo, registry, reporter)

    await orchestrator.orchestrate(plan.id)
    done = await orchestrator.orchestrate(plan.id)

    assert done.status == PlanStatus.COMPLETED
    assert seen[0][0]["output"] == "step 1"
    assert done.steps[1].result.output == 1


@pytest.mark.asyncio
async def test_failed_step_fails_plan_and_reports(repo, reporter):
    registry = StepRegistry()
    registry.register("broken", _broken)
    plan = make_plan(0)
    plan.steps = [PlanStep(action="broken"), PlanStep(action="broken")]
    await repo.create_plan(plan)

    result = await PlanOrchestrator(repo, registry, reporter).orchestrate(plan.id)

    assert result.status == PlanStatus.FAILED
    assert result.failure_reason == "disk full"
    assert result.current_step_index == 1
    assert reporter.failed == [plan.id]
    assert reporter.completed == []


async def _broken(step, context):
    return StepResult(exit_code=3, error="disk full")


@pytest.mark.asyncio
async def test_step_requiring_approval_pauses_plan(repo, reporter, orchestrator):
    plan = make_plan(2)
    plan.steps[1].requires_approval = True
    await repo.create_plan(plan)

    await orchestrator.orchestrate(plan.id)
    paused = await orchestrator.orchestrate(plan.id)

    assert paused.status == PlanStatus.PAUSED
    assert paused.current_step_index == 1
    assert paused.steps[1].status == StepStatus.AWAITING_APPROVAL
    assert paused.steps[1].result is None
    assert reporter.approvals == [(plan.id, plan.steps[1].id)]

    # A paused plan is not advanced by further continuations.
    again = await orchestrator.orchestrate(plan.id)
    assert again.status == PlanStatus.PAUSED
    assert again.steps[1].result is None


@pytest.mark.asyncio
async def test_running_step_rejects_second_continuation(repo, orchestrator):
    plan = make_plan(2)
    plan.start()
    plan.claim_current_step()
    await repo.create_plan(plan)

    with pytest.raises(PlanConflictError):
        await orchestrator.orchestrate(plan.id)

    stored = await repo.get_plan(plan.id)
    assert stored.current_step_index == 0
    assert stored.steps[0].result is None


@pytest.mark.asyncio
async def test_result_discarded_when_plan_changes_mid_step(repo, reporter):
    registry = StepRegistry()

    @registry.register("slow")
    async def slow(step, context):
        # Simulates the sweeper failing the plan while the step runs.
        stored = await repo.get_plan(context.plan_id)
        version = stored.version
        stored.fail("Plan timed out")
        assert await repo.save_plan(stored, version)
        return "late"

    plan = make_plan(0)
    plan.steps = [PlanStep(action="slow")]
    await repo.create_plan(plan)

    with pytest.raises(PlanConflictError):
        await PlanOrchestrator(repo, registry, reporter).orchestrate(plan.id)

    stored = await repo.get_plan(plan.id)
    assert stored.status == PlanStatus.FAILED
    assert stored.failure_reason == "Plan timed out"
    assert stored.steps[0].result is None
    assert reporter.completed == []


@pytest.mark.asyncio
async def test_missing_plan_raises(orchestrator):
    with pytest.raises(PlanNotFoundError):
        await orchestrator.orchestrate("does-not-exist")


@pytest.mark.asyncio
async def test_empty_plan_completes_on_first_continuation(repo, reporter, orchestrator):
    plan = make_plan(0)
    await repo.create_plan(plan)

    result = await orchestrator.orchestrate(plan.id)

    assert result.status == PlanStatus.COMPLETED
    assert reporter.completed == [plan.id]


@pytest.mark.asyncio
async def test_handler_cannot_mutate_stored_plan_context(repo, reporter):
    registry = StepRegistry()

    @registry.register("meddle")
    async def meddle(step, context):
        context.plan_context["conversation"]["owner"] = "someone-else"
        context.plan_context["injected"] = True
        context.prior_results.clear()
        return "done"

    plan = make_plan(0, context={"conversation": {"owner": "user-1"}})
    plan.steps = [PlanStep(action="meddle")]
    await repo.create_plan(plan)

    result = await PlanOrchestrator(repo, registry, reporter).orchestrate(plan.id)

    assert result.status == PlanStatus.COMPLETED
    stored = await repo.get_plan(plan.id)
    assert stored.context == {"conversation": {"owner": "user-1"}}
