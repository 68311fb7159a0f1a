"""Plan outcome reporting to the requesting user."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .contracts import Plan, PlanStep
from .webhooks import WebhookDispatcher

logger = logging.getLogger(__name__)


def plan_event_payload(plan: Plan) -> Dict[str, Any]:
    return {
        "plan_id": plan.id,
        "goal": plan.goal,
        "status": plan.status.value,
        "current_step": plan.current_step_index,
        "total_steps": plan.total_steps,
        "failure_reason": plan.failure_reason,
    }


class PlanReporter:
    """Notifies users about plan outcomes via logs and webhook events."""

    def __init__(self, webhooks: Optional[WebhookDispatcher] = None) -> None:
        self._webhooks = webhooks

    async def _emit(self, plan: Plan, event: str, **extra: Any) -> None:
        if self._webhooks is None:
            return
        await self._webhooks.emit(plan.user_id, event, {**plan_event_payload(plan), **extra})

    async def report_completion(self, plan: Plan) -> None:
        logger.info(f"Plan completed for plan_id={plan.id} ({plan.total_steps} steps)")
        await self._emit(plan, "plan.completed")

    async def report_failure(self, plan: Plan) -> None:
        logger.warning(f"Plan failed for plan_id={plan.id}: {plan.failure_reason}")
        await self._emit(plan, "plan.failed")

    async def request_approval(self, plan: Plan, step: PlanStep) -> None:
        logger.info(f"Plan paused for approval of step {step.id} for plan_id={plan.id}")
        await self._emit(
            plan,
            "plan.paused",
            step={"id": step.id, "action": step.action, "description": step.description},
        )

    async def report_cancellation(self, plan: Plan) -> None:
        logger.info(f"Plan cancelled for plan_id={plan.id}")
        await self._emit(plan, "plan.cancelled")
