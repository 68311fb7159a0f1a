"""Shared test doubles and builders."""

from __future__ import annotations

from planrelay.contracts import Plan, PlanStep
from planrelay.reporting import PlanReporter

CRON_SECRET = "test-cron-secret"


class RecordingReporter(PlanReporter):
    """Reporter that records calls instead of emitting webhooks."""

    def __init__(self) -> None:
        super().__init__(None)
        self.completed: list[str] = []
        self.failed: list[str] = []
        self.approvals: list[tuple[str, str]] = []
        self.cancelled: list[str] = []

    async def report_completion(self, plan):
        self.completed.append(plan.id)

    async def report_failure(self, plan):
        self.failed.append(plan.id)

    async def request_approval(self, plan, step):
        self.approvals.append((plan.id, step.id))

    async def report_cancellation(self, plan):
        self.cancelled.append(plan.id)


def make_plan(n_steps: int = 3, **kwargs) -> Plan:
    steps = [
        PlanStep(action="echo", arguments={"message": f"step {i + 1}"})
        for i in range(n_steps)
    ]
    return Plan(
        user_id=kwargs.pop("user_id", "user-1"), goal="test goal", steps=steps, **kwargs
    )
