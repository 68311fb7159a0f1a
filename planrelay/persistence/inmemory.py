"""In-memory implementation of the planrelay repository."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict

from ..contracts import Plan, PlanStatus
from .models import DeliveryStatus, WebhookDelivery, WebhookEndpoint
from .repository import Repository


class InMemoryRepository(Repository):
    """Store plan and webhook state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Stored models are copied on the way
    in and out so callers never mutate stored state directly.
    """

    def __init__(self) -> None:
        self._plans: Dict[str, Plan] = {}
        self._endpoints: Dict[str, WebhookEndpoint] = {}
        self._deliveries: Dict[str, WebhookDelivery] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Plans
    async def create_plan(self, plan: Plan) -> None:
        self._plans[plan.id] = plan.model_copy(deep=True)

    async def get_plan(self, plan_id: str) -> Plan | None:
        plan = self._plans.get(plan_id)
        return plan.model_copy(deep=True) if plan else None

    async def list_plans(
        self, status: PlanStatus | None = None, user_id: str | None = None
    ) -> list[Plan]:
        plans = sorted(self._plans.values(), key=lambda p: p.created_at)
        return [
            p.model_copy(deep=True)
            for p in plans
            if (status is None or p.status == status)
            and (user_id is None or p.user_id == user_id)
        ]

    async def save_plan(self, plan: Plan, expected_version: int) -> bool:
        async with self._lock:
            stored = self._plans.get(plan.id)
            if stored is None or stored.version != expected_version:
                return False
            plan.version = expected_version + 1
            self._plans[plan.id] = plan.model_copy(deep=True)
            return True

    async def list_stale_plans(self, cutoff: datetime) -> list[Plan]:
        return [
            p.model_copy(deep=True)
            for p in self._plans.values()
            if p.status == PlanStatus.RUNNING and p.updated_at < cutoff
        ]

    # ------------------------------------------------------------------
    # Webhooks
    async def create_endpoint(self, endpoint: WebhookEndpoint) -> None:
        self._endpoints[endpoint.id] = endpoint.model_copy(deep=True)

    async def get_endpoint(self, endpoint_id: str) -> WebhookEndpoint | None:
        endpoint = self._endpoints.get(endpoint_id)
        return endpoint.model_copy(deep=True) if endpoint else None

    async def list_endpoints(self, user_id: str | None = None) -> list[WebhookEndpoint]:
        endpoints = sorted(self._endpoints.values(), key=lambda e: e.created_at)
        return [
            e.model_copy(deep=True)
            for e in endpoints
            if user_id is None or e.user_id == user_id
        ]

    async def update_endpoint(self, endpoint: WebhookEndpoint) -> None:
        if endpoint.id in self._endpoints:
            self._endpoints[endpoint.id] = endpoint.model_copy(deep=True)

    async def delete_endpoint(self, endpoint_id: str) -> bool:
        if self._endpoints.pop(endpoint_id, None) is None:
            return False
        self._deliveries = {
            k: d for k, d in self._deliveries.items() if d.endpoint_id != endpoint_id
        }
        return True

    async def create_delivery(self, delivery: WebhookDelivery) -> None:
        self._deliveries[delivery.id] = delivery.model_copy(deep=True)

    async def update_delivery(self, delivery: WebhookDelivery) -> None:
        if delivery.id in self._deliveries:
            self._deliveries[delivery.id] = delivery.model_copy(deep=True)

    async def list_due_deliveries(
        self, now: datetime, limit: int
    ) -> list[WebhookDelivery]:
        due = sorted(
            (
                d
                for d in self._deliveries.values()
                if d.status == DeliveryStatus.PENDING and d.next_attempt_at <= now
            ),
            key=lambda d: d.created_at,
        )
        return [d.model_copy(deep=True) for d in due[:limit]]

    async def list_deliveries(
        self, endpoint_id: str | None = None, limit: int = 50
    ) -> list[WebhookDelivery]:
        recent = sorted(
            (
                d
                for d in self._deliveries.values()
                if endpoint_id is None or d.endpoint_id == endpoint_id
            ),
            key=lambda d: d.created_at,
            reverse=True,
        )
        return [d.model_copy(deep=True) for d in recent[:limit]]
