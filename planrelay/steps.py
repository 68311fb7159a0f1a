"""Step handler registry used to run individual plan steps."""

from __future__ import annotations

import copy
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from pydantic import BaseModel, Field

from .contracts import Plan, PlanStep, StepResult

logger = logging.getLogger(__name__)


class StepContext(BaseModel):
    """Execution context handed to a step handler."""

    plan_id: str
    user_id: str
    plan_context: Dict[str, Any] = Field(default_factory=dict)
    prior_results: list[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def for_plan(cls, plan: Plan) -> "StepContext":
        return cls(
            plan_id=plan.id,
            user_id=plan.user_id,
            plan_context=copy.deepcopy(plan.context),
            prior_results=copy.deepcopy(plan.previous_results()),
        )


StepHandler = Callable[[PlanStep, StepContext], Awaitable[Any]]


class StepRegistry:
    """Maps step actions to async handlers."""

    def __init__(self) -> None:
        self._handlers: Dict[str, StepHandler] = {}

    def register(self, action: str, handler: Optional[StepHandler] = None):
        """Register ``handler`` for ``action``. Usable as a decorator."""

        def _add(func: StepHandler) -> StepHandler:
            self._handlers[action] = func
            return func

        if handler is not None:
            return _add(handler)
        return _add

    async def run(self, step: PlanStep, context: StepContext) -> StepResult:
        """Run ``step`` and always return a result, never raise."""
        handler = self._handlers.get(step.action)
        if handler is None:
            return StepResult(exit_code=1, error=f"Unknown step action: {step.action}")

        started = time.perf_counter()
        try:
            outcome = await handler(step, context)
        except Exception as e:
            logger.warning(
                f"Step {step.id} ({step.action}) raised for plan_id={context.plan_id}: {e}"
            )
            return StepResult(
                exit_code=1,
                error=str(e) or type(e).__name__,
                timing_ms=(time.perf_counter() - started) * 1000,
            )
        elapsed = (time.perf_counter() - started) * 1000
        if isinstance(outcome, StepResult):
            outcome.timing_ms = elapsed
            return outcome
        return StepResult(output=outcome, timing_ms=elapsed)


async def echo_step(step: PlanStep, context: StepContext) -> Any:
    """Return the ``message`` argument unchanged."""
    return step.arguments.get("message", step.description)


async def http_request_step(step: PlanStep, context: StepContext) -> StepResult:
    """Perform an HTTP request described by the step arguments."""
    args = step.arguments
    url = args.get("url")
    if not url:
        return StepResult(exit_code=1, error="http_request step requires a url")
    async with httpx.AsyncClient(timeout=args.get("timeout", 30)) as client:
        response = await client.request(
            args.get("method", "GET").upper(),
            url,
            json=args.get("json"),
            headers=args.get("headers"),
        )
    try:
        body: Any = response.json()
    except ValueError:
        body = response.text
    output = {"status_code": response.status_code, "body": body}
    if response.is_success:
        return StepResult(output=output)
    return StepResult(
        output=output,
        exit_code=1,
        error=f"HTTP {response.status_code} from {url}",
    )


def default_registry() -> StepRegistry:
    registry = StepRegistry()
    registry.register("echo", echo_step)
    registry.register("http_request", http_request_step)
    return registry
