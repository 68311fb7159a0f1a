"""Core plan contracts and lifecycle transitions for planrelay."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidTransitionError, StepAlreadyExecutedError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlanStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    AWAITING_APPROVAL = "awaiting_approval"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepResult(BaseModel):
    """Outcome of running a single plan step."""

    output: Any = None
    exit_code: int = 0
    error: Optional[str] = None
    timing_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class PlanStep(BaseModel):
    """Defines one ordered unit of work in a plan."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: str
    description: str = ""
    arguments: Dict[str, Any] = Field(default_factory=dict)
    requires_approval: bool = False
    status: StepStatus = StepStatus.PENDING
    result: Optional[StepResult] = None
    executed_at: Optional[datetime] = None

    def record(self, result: StepResult, now: datetime) -> None:
        """Attach ``result`` to the step. Executed steps never change."""
        if self.result is not None:
            raise StepAlreadyExecutedError(f"Step {self.id} already executed")
        self.result = result
        self.executed_at = now
        self.status = StepStatus.COMPLETED if result.ok else StepStatus.FAILED


class Plan(BaseModel):
    """A long-running, multi-step task requested by a user."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    goal: str = ""
    steps: List[PlanStep] = Field(default_factory=list)
    current_step_index: int = 0
    status: PlanStatus = PlanStatus.PENDING
    failure_reason: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def current_step(self) -> Optional[PlanStep]:
        """Step the next continuation will execute, if any."""
        if self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None

    def is_finished(self) -> bool:
        """Return ``True`` when every step has been executed."""
        return self.current_step_index >= len(self.steps)

    def previous_results(self) -> List[Dict[str, Any]]:
        """Outputs of already executed steps, oldest first."""
        return [
            {"step_id": s.id, "action": s.action, "output": s.result.output}
            for s in self.steps[: self.current_step_index]
            if s.result is not None
        ]

    def touch(self, now: Optional[datetime] = None) -> None:
        self.updated_at = now or utcnow()

    # ------------------------------------------------------------------
    # Transitions
    def _require(self, *allowed: PlanStatus) -> None:
        if self.status not in allowed:
            names = ", ".join(s.value for s in allowed)
            raise InvalidTransitionError(
                f"Plan {self.id} is {self.status.value}; expected one of: {names}"
            )

    def start(self, now: Optional[datetime] = None) -> None:
        self._require(PlanStatus.PENDING)
        self.status = PlanStatus.RUNNING
        self.touch(now)

    def claim_current_step(self, now: Optional[datetime] = None) -> PlanStep:
        """Mark the current step as in progress and return it."""
        self._require(PlanStatus.RUNNING)
        step = self.current_step
        if step is None:
            raise InvalidTransitionError(f"Plan {self.id} has no step left to run")
        step.status = StepStatus.RUNNING
        self.touch(now)
        return step

    def record_step_result(
        self, result: StepResult, now: Optional[datetime] = None
    ) -> PlanStep:
        """Record ``result`` on the current step and advance the plan."""
        self._require(PlanStatus.RUNNING)
        step = self.current_step
        if step is None:
            raise InvalidTransitionError(f"Plan {self.id} has no step left to run")
        now = now or utcnow()
        step.record(result, now)
        self.current_step_index += 1
        if not result.ok:
            self.status = PlanStatus.FAILED
            self.failure_reason = result.error or f"Step {step.action} failed"
        elif self.is_finished():
            self.status = PlanStatus.COMPLETED
        self.touch(now)
        return step

    def complete(self, now: Optional[datetime] = None) -> None:
        self._require(PlanStatus.RUNNING)
        self.status = PlanStatus.COMPLETED
        self.touch(now)

    def fail(self, reason: str, now: Optional[datetime] = None) -> None:
        self._require(PlanStatus.PENDING, PlanStatus.RUNNING, PlanStatus.PAUSED)
        self.status = PlanStatus.FAILED
        self.failure_reason = reason
        self.touch(now)

    def pause_for_approval(self, now: Optional[datetime] = None) -> PlanStep:
        self._require(PlanStatus.RUNNING)
        step = self.current_step
        if step is None:
            raise InvalidTransitionError(f"Plan {self.id} has no step to approve")
        step.status = StepStatus.AWAITING_APPROVAL
        self.status = PlanStatus.PAUSED
        self.touch(now)
        return step

    def approve(self, now: Optional[datetime] = None) -> PlanStep:
        self._require(PlanStatus.PAUSED)
        step = self.current_step
        if step is None or step.status != StepStatus.AWAITING_APPROVAL:
            raise InvalidTransitionError(
                f"No step awaiting approval at index {self.current_step_index}"
            )
        step.status = StepStatus.PENDING
        step.requires_approval = False
        self.status = PlanStatus.RUNNING
        self.touch(now)
        return step

    def reject(self, now: Optional[datetime] = None) -> None:
        """Skip the paused step and everything after it, cancelling the plan."""
        self._require(PlanStatus.PAUSED)
        for step in self.steps[self.current_step_index :]:
            step.status = StepStatus.SKIPPED
        self.current_step_index = len(self.steps)
        self.status = PlanStatus.CANCELLED
        self.failure_reason = "Step rejected by user"
        self.touch(now)


class PlanStepInput(BaseModel):
    """Client-supplied description of a step. Execution state is never accepted."""

    model_config = ConfigDict(extra="forbid")

    action: str
    description: str = ""
    arguments: Dict[str, Any] = Field(default_factory=dict)
    requires_approval: bool = False

    def to_step(self) -> PlanStep:
        return PlanStep(**self.model_dump())


class CreatePlanInput(BaseModel):
    """Request body for creating a plan."""

    user_id: str
    goal: str
    steps: List[PlanStepInput] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)


class ContinuationMessage(BaseModel):
    """Envelope placed on the continuation queue for one plan."""

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    plan_id: str
    attempt: int = 1
    timestamp: datetime = Field(default_factory=utcnow)

    def to_json(self) -> str:
        """Serialize message to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "ContinuationMessage":
        """Deserialize message from JSON."""
        return cls.model_validate_json(data)
