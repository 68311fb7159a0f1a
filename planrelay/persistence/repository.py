"""Repository abstraction for plan and webhook persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from ..contracts import Plan, PlanStatus
from .models import WebhookDelivery, WebhookEndpoint


class PlanRepository(Protocol):
    """Protocol for plan state persistence backends."""

    async def create_plan(self, plan: Plan) -> None:
        """Persist a new plan."""

    async def get_plan(self, plan_id: str) -> Plan | None:
        """Retrieve a plan by id."""

    async def list_plans(
        self, status: PlanStatus | None = None, user_id: str | None = None
    ) -> list[Plan]:
        """Return persisted plans, optionally filtered."""

    async def save_plan(self, plan: Plan, expected_version: int) -> bool:
        """Write ``plan`` only if the stored version equals ``expected_version``.

        On success the stored and in-memory versions are bumped by one and
        ``True`` is returned. On a version mismatch nothing is written.
        """

    async def list_stale_plans(self, cutoff: datetime) -> list[Plan]:
        """Return running plans last updated before ``cutoff``."""


class WebhookRepository(Protocol):
    """Protocol for webhook endpoint and delivery persistence."""

    async def create_endpoint(self, endpoint: WebhookEndpoint) -> None:
        """Persist a new endpoint."""

    async def get_endpoint(self, endpoint_id: str) -> WebhookEndpoint | None:
        """Retrieve an endpoint by id."""

    async def list_endpoints(self, user_id: str | None = None) -> list[WebhookEndpoint]:
        """Return endpoints, optionally for one user."""

    async def update_endpoint(self, endpoint: WebhookEndpoint) -> None:
        """Persist every mutable endpoint field."""

    async def delete_endpoint(self, endpoint_id: str) -> bool:
        """Remove an endpoint and its deliveries. Returns ``False`` if absent."""

    async def create_delivery(self, delivery: WebhookDelivery) -> None:
        """Queue a delivery."""

    async def update_delivery(self, delivery: WebhookDelivery) -> None:
        """Persist delivery attempt state."""

    async def list_due_deliveries(
        self, now: datetime, limit: int
    ) -> list[WebhookDelivery]:
        """Return pending deliveries due at ``now``, oldest first."""

    async def list_deliveries(
        self, endpoint_id: str | None = None, limit: int = 50
    ) -> list[WebhookDelivery]:
        """Return recent deliveries, newest first."""


class Repository(PlanRepository, WebhookRepository, Protocol):
    """Combined persistence surface used by planrelay services."""
