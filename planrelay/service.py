"""Plan service wiring orchestration, chaining and collaborators together."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from pydantic import BaseModel

from .config import PlanRelayConfig, load_config
from .contracts import CreatePlanInput, Plan, PlanStatus
from .dispatch import ContinuationQueue
from .errors import PlanConflictError, PlanNotFoundError
from .orchestrate import PlanOrchestrator
from .persistence import Repository, get_repository
from .reporting import PlanReporter
from .steps import StepRegistry, default_registry
from .sweeper import PlanSweeper
from .transports import BaseTransport, get_transport
from .webhooks import WebhookDispatcher

logger = logging.getLogger(__name__)


class ContinuationOutcome(BaseModel):
    """Result of one continuation call."""

    plan_id: str
    status: PlanStatus
    current_step: int
    total_steps: int
    continuation_queued: bool = False

    def to_response(self) -> dict:
        return {
            "planId": self.plan_id,
            "status": self.status.value,
            "currentStep": self.current_step,
            "totalSteps": self.total_steps,
            "continuationQueued": self.continuation_queued,
        }


class PlanService:
    """Entry points for creating, continuing and approving plans."""

    def __init__(
        self,
        repository: Repository,
        orchestrator: PlanOrchestrator,
        queue: ContinuationQueue,
        reporter: PlanReporter,
    ) -> None:
        self._repository = repository
        self._orchestrator = orchestrator
        self._queue = queue
        self._reporter = reporter

    async def _chain(self, plan_id: str) -> bool:
        try:
            ticket = await self._queue.enqueue(plan_id)
        except Exception:
            logger.exception(f"Failed to queue continuation for plan_id={plan_id}")
            return False
        logger.debug(f"Continuation {ticket.message_id} accepted for plan_id={plan_id}")
        return True

    async def create_plan(self, data: CreatePlanInput) -> tuple[Plan, bool]:
        """Persist a new pending plan and queue its first continuation."""
        plan = Plan(
            user_id=data.user_id,
            goal=data.goal,
            steps=[s.to_step() for s in data.steps],
            context=data.context,
        )
        await self._repository.create_plan(plan)
        logger.info(f"Created plan_id={plan.id} for user_id={plan.user_id}")
        queued = await self._chain(plan.id)
        return plan, queued

    async def get_plan(self, plan_id: str) -> Plan:
        plan = await self._repository.get_plan(plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return plan

    async def continue_plan(self, plan_id: str) -> ContinuationOutcome:
        """Execute one step and, while the plan is running, queue the next."""
        plan = await self._orchestrator.orchestrate(plan_id)
        queued = False
        if plan.status == PlanStatus.RUNNING:
            queued = await self._chain(plan.id)
        return ContinuationOutcome(
            plan_id=plan.id,
            status=plan.status,
            current_step=plan.current_step_index,
            total_steps=plan.total_steps,
            continuation_queued=queued,
        )

    async def approve(self, plan_id: str) -> Plan:
        """Resume a paused plan and queue its next continuation."""
        plan = await self.get_plan(plan_id)
        version = plan.version
        plan.approve()
        if not await self._repository.save_plan(plan, version):
            raise PlanConflictError(plan_id)
        logger.info(f"Plan approved, resuming plan_id={plan_id}")
        await self._chain(plan_id)
        return plan

    async def reject(self, plan_id: str) -> Plan:
        """Cancel a paused plan, skipping its remaining steps."""
        plan = await self.get_plan(plan_id)
        version = plan.version
        plan.reject()
        if not await self._repository.save_plan(plan, version):
            raise PlanConflictError(plan_id)
        await self._reporter.report_cancellation(plan)
        return plan


@dataclass
class Services:
    """Container of wired-up collaborators."""

    config: PlanRelayConfig
    repository: Repository
    transport: BaseTransport
    registry: StepRegistry
    webhooks: WebhookDispatcher
    reporter: PlanReporter
    orchestrator: PlanOrchestrator
    queue: ContinuationQueue
    plans: PlanService
    sweeper: PlanSweeper


def build_services(
    config: Optional[PlanRelayConfig] = None,
    repository: Optional[Repository] = None,
    transport: Optional[BaseTransport] = None,
    registry: Optional[StepRegistry] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Services:
    """Build the service graph from configuration, allowing overrides."""
    config = config or load_config()
    repository = repository or get_repository()
    transport = transport or get_transport(config=config)
    registry = registry or default_registry()
    webhooks = WebhookDispatcher(
        repository,
        http_client=http_client,
        backoff_base_seconds=config.webhooks.backoff_base_seconds,
    )
    reporter = PlanReporter(webhooks)
    orchestrator = PlanOrchestrator(repository, registry, reporter)
    queue = ContinuationQueue(transport)
    plans = PlanService(repository, orchestrator, queue, reporter)
    sweeper = PlanSweeper(
        repository, reporter, stale_after_seconds=config.sweeper.stale_after_seconds
    )
    return Services(
        config=config,
        repository=repository,
        transport=transport,
        registry=registry,
        webhooks=webhooks,
        reporter=reporter,
        orchestrator=orchestrator,
        queue=queue,
        plans=plans,
        sweeper=sweeper,
    )
