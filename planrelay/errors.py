"""Exception types raised by planrelay."""

from __future__ import annotations


class PlanRelayError(Exception):
    """Base class for planrelay errors."""


class PlanNotFoundError(PlanRelayError, LookupError):
    """Raised when a plan id does not resolve to a stored plan."""

    def __init__(self, plan_id: str) -> None:
        super().__init__(f"Plan {plan_id} not found")
        self.plan_id = plan_id


class PlanConflictError(PlanRelayError):
    """Raised when another writer changed the plan first."""

    def __init__(self, plan_id: str, detail: str = "plan was modified concurrently") -> None:
        super().__init__(f"Plan {plan_id}: {detail}")
        self.plan_id = plan_id


class InvalidTransitionError(PlanRelayError, ValueError):
    """Raised on a lifecycle transition the current status does not allow."""


class StepAlreadyExecutedError(PlanRelayError):
    """Raised when recording a result on a step that already has one."""


class WebhookValidationError(PlanRelayError, ValueError):
    """Raised when an endpoint registration is invalid."""


class UnauthorizedError(PlanRelayError):
    """Raised when a system call lacks the shared-secret bearer credential."""


class WebhookNotFoundError(PlanRelayError, LookupError):
    """Raised when a webhook endpoint id does not resolve."""

    def __init__(self, endpoint_id: str) -> None:
        super().__init__(f"Webhook {endpoint_id} not found")
        self.endpoint_id = endpoint_id
