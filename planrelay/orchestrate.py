"""Single-step plan execution engine."""

from __future__ import annotations

import logging

from .contracts import Plan, PlanStatus, StepStatus, utcnow
from .errors import PlanConflictError, PlanNotFoundError
from .persistence import PlanRepository
from .reporting import PlanReporter
from .steps import StepContext, StepRegistry

logger = logging.getLogger(__name__)


class PlanOrchestrator:
    """Executes at most one further step of a plan per call."""

    def __init__(
        self,
        repository: PlanRepository,
        registry: StepRegistry,
        reporter: PlanReporter,
    ) -> None:
        self._repository = repository
        self._registry = registry
        self._reporter = reporter

    async def _save(self, plan: Plan, expected_version: int) -> None:
        if not await self._repository.save_plan(plan, expected_version):
            raise PlanConflictError(plan.id)

    async def orchestrate(self, plan_id: str) -> Plan:
        """Run the next step of ``plan_id`` and persist the outcome.

        Raises:
            PlanNotFoundError: No plan with this id exists.
            PlanConflictError: Another continuation holds or changed the plan.
        """
        plan = await self._repository.get_plan(plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)

        if plan.status == PlanStatus.PENDING:
            plan.start()
            logger.info(f"Starting plan_id={plan.id} with {plan.total_steps} steps")
        elif plan.status != PlanStatus.RUNNING:
            logger.debug(f"Plan {plan.id} is {plan.status.value}; nothing to continue")
            return plan

        if plan.is_finished():
            version = plan.version
            plan.complete()
            await self._save(plan, version)
            await self._reporter.report_completion(plan)
            return plan

        step = plan.current_step
        if step.status == StepStatus.RUNNING:
            raise PlanConflictError(plan.id, f"step {step.id} is already running")

        if step.requires_approval:
            version = plan.version
            plan.pause_for_approval()
            await self._save(plan, version)
            await self._reporter.request_approval(plan, step)
            return plan

        # Claiming the step is what keeps a second continuation out.
        version = plan.version
        plan.claim_current_step()
        await self._save(plan, version)

        result = await self._registry.run(step, StepContext.for_plan(plan))

        claimed_version = plan.version
        plan.record_step_result(result, utcnow())
        if not await self._repository.save_plan(plan, claimed_version):
            logger.warning(
                f"Discarding result of step {step.id} for plan_id={plan.id}: "
                "plan changed while the step was running"
            )
            raise PlanConflictError(plan.id, "plan changed while the step was running")

        logger.info(
            f"Step {plan.current_step_index}/{plan.total_steps} ({step.action}) "
            f"{'succeeded' if result.ok else 'failed'} for plan_id={plan.id}"
        )
        if plan.status == PlanStatus.COMPLETED:
            await self._reporter.report_completion(plan)
        elif plan.status == PlanStatus.FAILED:
            await self._reporter.report_failure(plan)
        return plan
