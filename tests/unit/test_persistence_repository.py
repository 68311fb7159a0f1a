from datetime import timedelta

import pytest

from planrelay.contracts import PlanStatus, StepResult, utcnow
from planrelay.persistence import (
    DeliveryStatus,
    InMemoryRepository,
    SQLiteRepository,
    WebhookDelivery,
    WebhookEndpoint,
)

from tests.fakes import make_plan


@pytest.fixture(params=["inmemory", "sqlite"])
def repository(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteRepository(tmp_path / "plans.db")
    return InMemoryRepository()


@pytest.mark.asyncio
async def test_plan_crud(repository):
    plan = make_plan(2, context={"conversation_id": "c-1"})
    await repository.create_plan(plan)

    loaded = await repository.get_plan(plan.id)
    assert loaded is not None
    assert loaded.id == plan.id
    assert loaded.status == PlanStatus.PENDING
    assert [s.action for s in loaded.steps] == ["echo", "echo"]
    assert loaded.context == {"conversation_id": "c-1"}
    assert loaded.version == 0

    assert await repository.get_plan("missing") is None
    assert [p.id for p in await repository.list_plans()] == [plan.id]
    assert await repository.list_plans(status=PlanStatus.RUNNING) == []
    assert await repository.list_plans(user_id="someone-else") == []


@pytest.mark.asyncio
async def test_save_plan_compare_and_set(repository):
    plan = make_plan(2)
    await repository.create_plan(plan)

    first = await repository.get_plan(plan.id)
    second = await repository.get_plan(plan.id)

    first.start()
    first.claim_current_step()
    first.record_step_result(StepResult(output="done"))
    assert await repository.save_plan(first, expected_version=0) is True
    assert first.version == 1

    # A writer holding the old version must not overwrite the newer state.
    second.start()
    assert await repository.save_plan(second, expected_version=0) is False
    assert second.version == 0

    stored = await repository.get_plan(plan.id)
    assert stored.version == 1
    assert stored.current_step_index == 1
    assert stored.steps[0].result.output == "done"


@pytest.mark.asyncio
async def test_list_stale_plans_only_returns_old_running_plans(repository):
    now = utcnow()
    old_running = make_plan(1, status=PlanStatus.RUNNING, updated_at=now - timedelta(minutes=11))
    fresh_running = make_plan(1, status=PlanStatus.RUNNING, updated_at=now - timedelta(minutes=2))
    old_completed = make_plan(1, status=PlanStatus.COMPLETED, updated_at=now - timedelta(hours=1))
    for plan in (old_running, fresh_running, old_completed):
        await repository.create_plan(plan)

    stale = await repository.list_stale_plans(now - timedelta(minutes=10))
    assert [p.id for p in stale] == [old_running.id]


@pytest.mark.asyncio
async def test_webhook_deliveries_due_in_order(repository):
    endpoint = WebhookEndpoint(
        user_id="user-1",
        name="hook",
        url="https://example.com/hook",
        secret="whsec_x",
        events=["plan.failed"],
    )
    await repository.create_endpoint(endpoint)
    assert (await repository.get_endpoint(endpoint.id)).events == ["plan.failed"]
    assert [e.id for e in await repository.list_endpoints(user_id="user-1")] == [endpoint.id]

    now = utcnow()
    early = WebhookDelivery(
        endpoint_id=endpoint.id, event="plan.failed", created_at=now - timedelta(minutes=2),
        next_attempt_at=now - timedelta(minutes=2),
    )
    later = WebhookDelivery(
        endpoint_id=endpoint.id, event="plan.failed", created_at=now - timedelta(minutes=1),
        next_attempt_at=now - timedelta(minutes=1),
    )
    future = WebhookDelivery(
        endpoint_id=endpoint.id, event="plan.failed", next_attempt_at=now + timedelta(minutes=5)
    )
    for d in (later, future, early):
        await repository.create_delivery(d)

    due = await repository.list_due_deliveries(now, limit=10)
    assert [d.id for d in due] == [early.id, later.id]
    assert [d.id for d in await repository.list_due_deliveries(now, limit=1)] == [early.id]

    early.status = DeliveryStatus.SUCCEEDED
    early.attempts = 1
    early.response_status = 200
    await repository.update_delivery(early)
    due = await repository.list_due_deliveries(now, limit=10)
    assert [d.id for d in due] == [later.id]

    endpoint.consecutive_failures = 2
    endpoint.last_failure_at = now
    await repository.update_endpoint(endpoint)
    stored = await repository.get_endpoint(endpoint.id)
    assert stored.consecutive_failures == 2
    assert stored.last_failure_at is not None

    history = await repository.list_deliveries(endpoint_id=endpoint.id)
    assert {d.id for d in history} == {early.id, later.id, future.id}


@pytest.mark.asyncio
async def test_sqlite_repository_survives_reopen(tmp_path):
    path = tmp_path / "plans.db"
    plan = make_plan(1)
    await SQLiteRepository(path).create_plan(plan)

    reopened = SQLiteRepository(path)
    loaded = await reopened.get_plan(plan.id)
    assert loaded is not None
    assert loaded.updated_at == plan.updated_at


@pytest.mark.asyncio
async def test_update_and_delete_endpoint(repository):
    endpoint = WebhookEndpoint(
        user_id="user-1",
        name="hook",
        url="https://example.com/hook",
        secret="whsec_x",
        events=["plan.failed"],
    )
    other = WebhookEndpoint(
        user_id="user-1",
        name="other",
        url="https://example.com/other",
        secret="whsec_y",
        events=["plan.failed"],
    )
    await repository.create_endpoint(endpoint)
    await repository.create_endpoint(other)
    await repository.create_delivery(WebhookDelivery(endpoint_id=endpoint.id, event="plan.failed"))
    kept = WebhookDelivery(endpoint_id=other.id, event="plan.failed")
    await repository.create_delivery(kept)

    endpoint.name = "renamed"
    endpoint.url = "https://example.com/new"
    endpoint.events = ["plan.completed", "plan.paused"]
    endpoint.headers = {"X-Team": "ops"}
    endpoint.is_active = False
    endpoint.max_attempts = 5
    endpoint.timeout_seconds = 10
    await repository.update_endpoint(endpoint)

    stored = await repository.get_endpoint(endpoint.id)
    assert stored.name == "renamed"
    assert stored.url == "https://example.com/new"
    assert stored.events == ["plan.completed", "plan.paused"]
    assert stored.headers == {"X-Team": "ops"}
    assert stored.is_active is False
    assert (stored.max_attempts, stored.timeout_seconds) == (5, 10)

    assert await repository.delete_endpoint(endpoint.id) is True
    assert await repository.get_endpoint(endpoint.id) is None
    assert await repository.list_deliveries(endpoint_id=endpoint.id) == []
    assert [d.id for d in await repository.list_deliveries()] == [kept.id]
    assert await repository.delete_endpoint(endpoint.id) is False
