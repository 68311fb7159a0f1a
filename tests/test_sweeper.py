from datetime import timedelta

import pytest

from planrelay.constants import SWEEP_FAILURE_REASON
from planrelay.contracts import PlanStatus, utcnow
from planrelay.sweeper import PlanSweeper

from tests.fakes import RecordingReporter, make_plan


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def sweeper(repo, reporter):
    return PlanSweeper(repo, reporter)


def _running_plan(minutes_idle: int):
    return make_plan(
        2,
        status=PlanStatus.RUNNING,
        updated_at=utcnow() - timedelta(minutes=minutes_idle),
    )


@pytest.mark.asyncio
async def test_stale_plan_is_failed_and_reported_once(repo, reporter, sweeper):
    stale = _running_plan(11)
    await repo.create_plan(stale)

    result = await sweeper.sweep()

    assert result.swept == 1
    assert result.total == 1
    stored = await repo.get_plan(stale.id)
    assert stored.status == PlanStatus.FAILED
    assert stored.failure_reason == SWEEP_FAILURE_REASON
    assert reporter.failed == [stale.id]

    # A second sweep finds nothing; the user is not notified twice.
    again = await sweeper.sweep()
    assert again.total == 0
    assert reporter.failed == [stale.id]


@pytest.mark.asyncio
async def test_fresh_and_finished_plans_are_untouched(repo, reporter, sweeper):
    fresh = _running_plan(5)
    paused = make_plan(
        1, status=PlanStatus.PAUSED, updated_at=utcnow() - timedelta(hours=2)
    )
    done = make_plan(
        1, status=PlanStatus.COMPLETED, updated_at=utcnow() - timedelta(hours=2)
    )
    for plan in (fresh, paused, done):
        await repo.create_plan(plan)

    result = await sweeper.sweep()

    assert result.swept == 0
    assert result.total == 0
    assert (await repo.get_plan(fresh.id)).status == PlanStatus.RUNNING
    assert (await repo.get_plan(paused.id)).status == PlanStatus.PAUSED
    assert reporter.failed == []


@pytest.mark.asyncio
async def test_empty_sweep_writes_nothing(repo, sweeper, monkeypatch):
    async def fail_save(*args, **kwargs):
        raise AssertionError("save_plan must not be called")

    monkeypatch.setattr(repo, "save_plan", fail_save)
    result = await sweeper.sweep()
    assert result.swept == 0
    assert result.total == 0


@pytest.mark.asyncio
async def test_sweep_uses_supplied_clock(repo, reporter, sweeper):
    plan = _running_plan(0)
    await repo.create_plan(plan)

    assert (await sweeper.sweep(now=utcnow() + timedelta(minutes=9))).total == 0
    result = await sweeper.sweep(now=utcnow() + timedelta(minutes=11))
    assert result.swept == 1


@pytest.mark.asyncio
async def test_one_broken_plan_does_not_stop_the_sweep(repo, reporter):
    first = _running_plan(20)
    second = _running_plan(30)
    await repo.create_plan(first)
    await repo.create_plan(second)

    class FlakyReporter(RecordingReporter):
        async def report_failure(self, plan):
            if plan.id == first.id:
                raise RuntimeError("notification service down")
            await super().report_failure(plan)

    flaky = FlakyReporter()
    result = await PlanSweeper(repo, flaky).sweep()

    assert result.total == 2
    assert result.swept == 1
    assert flaky.failed == [second.id]
    assert (await repo.get_plan(second.id)).status == PlanStatus.FAILED


@pytest.mark.asyncio
async def test_plan_that_progressed_after_selection_is_skipped(repo, reporter):
    plan = _running_plan(15)
    await repo.create_plan(plan)

    original_list = repo.list_stale_plans

    async def list_then_progress(cutoff):
        candidates = await original_list(cutoff)
        # A continuation finishes a step between selection and the update.
        live = await repo.get_plan(plan.id)
        live.claim_current_step()
        assert await repo.save_plan(live, live.version)
        return candidates

    repo.list_stale_plans = list_then_progress
    result = await PlanSweeper(repo, reporter).sweep()

    assert result.total == 1
    assert result.swept == 0
    assert reporter.failed == []
    assert (await repo.get_plan(plan.id)).status == PlanStatus.RUNNING
