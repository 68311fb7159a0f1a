"""Periodic safety net that force-fails plans stuck without progress."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel

from .constants import STALE_PLAN_AFTER_SECONDS, SWEEP_FAILURE_REASON
from .contracts import utcnow
from .persistence import PlanRepository
from .reporting import PlanReporter

logger = logging.getLogger(__name__)


class SweepResult(BaseModel):
    swept: int = 0
    total: int = 0


class PlanSweeper:
    """Fails running plans whose last update is older than ``stale_after``."""

    def __init__(
        self,
        repository: PlanRepository,
        reporter: PlanReporter,
        stale_after_seconds: int = STALE_PLAN_AFTER_SECONDS,
        reason: str = SWEEP_FAILURE_REASON,
    ) -> None:
        self._repository = repository
        self._reporter = reporter
        self.stale_after = timedelta(seconds=stale_after_seconds)
        self.reason = reason

    async def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or utcnow()
        cutoff = now - self.stale_after
        candidates = await self._repository.list_stale_plans(cutoff)
        if not candidates:
            return SweepResult()

        logger.info(f"Found {len(candidates)} orphaned plans older than {cutoff.isoformat()}")
        swept = 0
        for plan in candidates:
            try:
                version = plan.version
                plan.fail(self.reason, now)
                if not await self._repository.save_plan(plan, version):
                    logger.info(f"Skipping plan_id={plan.id}: it progressed after selection")
                    continue
                reloaded = await self._repository.get_plan(plan.id)
                await self._reporter.report_failure(reloaded or plan)
                swept += 1
            except Exception:
                logger.exception(f"Failed to sweep plan_id={plan.id}")
        return SweepResult(swept=swept, total=len(candidates))
