import httpx
import pytest

from planrelay.contracts import PlanStep, StepResult
from planrelay.steps import StepContext, StepRegistry, default_registry


def _context() -> StepContext:
    return StepContext(plan_id="plan-1", user_id="user-1")


@pytest.mark.asyncio
async def test_echo_step_returns_message():
    registry = default_registry()
    result = await registry.run(
        PlanStep(action="echo", arguments={"message": "hi"}), _context()
    )
    assert result.ok
    assert result.output == "hi"
    assert result.timing_ms >= 0


@pytest.mark.asyncio
async def test_unknown_action_fails():
    result = await StepRegistry().run(PlanStep(action="teleport"), _context())
    assert not result.ok
    assert "teleport" in result.error


@pytest.mark.asyncio
async def test_handler_exception_becomes_failed_result():
    registry = StepRegistry()

    @registry.register("explode")
    async def explode(step, context):
        raise RuntimeError("kaboom")

    result = await registry.run(PlanStep(action="explode"), _context())
    assert result.exit_code == 1
    assert result.error == "kaboom"


@pytest.mark.asyncio
async def test_handler_may_return_step_result():
    registry = StepRegistry()
    registry.register("soft_fail", lambda step, ctx: _soft_fail())

    result = await registry.run(PlanStep(action="soft_fail"), _context())
    assert result.exit_code == 2
    assert result.error == "nope"


async def _soft_fail() -> StepResult:
    return StepResult(exit_code=2, error="nope")


@pytest.mark.asyncio
async def test_http_request_step(monkeypatch):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/ok":
            return httpx.Response(200, json={"done": True})
        return httpx.Response(503, text="down")

    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        httpx,
        "AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )
    registry = default_registry()

    ok = await registry.run(
        PlanStep(
            action="http_request",
            arguments={"method": "post", "url": "https://api.test/ok", "json": {"a": 1}},
        ),
        _context(),
    )
    assert ok.ok
    assert ok.output == {"status_code": 200, "body": {"done": True}}
    assert seen[0].method == "POST"

    down = await registry.run(
        PlanStep(action="http_request", arguments={"url": "https://api.test/down"}),
        _context(),
    )
    assert not down.ok
    assert down.error == "HTTP 503 from https://api.test/down"

    missing = await registry.run(PlanStep(action="http_request"), _context())
    assert not missing.ok
