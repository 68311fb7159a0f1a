"""PostgreSQL implementation of the planrelay repository."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator

import asyncpg

from ..contracts import Plan, PlanStatus
from .models import DeliveryStatus, WebhookDelivery, WebhookEndpoint
from .repository import Repository

_PLAN_COLUMNS = (
    "id, user_id, goal, steps, current_step_index, status, failure_reason, "
    "context, created_at, updated_at, version"
)
_ENDPOINT_COLUMNS = (
    "id, user_id, name, url, secret, events, headers, is_active, max_attempts, "
    "timeout_seconds, consecutive_failures, last_success_at, last_failure_at, created_at"
)
_DELIVERY_COLUMNS = (
    "id, endpoint_id, event, payload, status, attempts, next_attempt_at, "
    "last_error, response_status, created_at, delivered_at"
)


def _json(value: Any) -> Any:
    # asyncpg hands JSONB back as text unless a codec is registered.
    return json.loads(value) if isinstance(value, str) else value


class PostgresRepository(Repository):
    """Persist plan and webhook state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        conn = await self._connect()
        try:
            yield conn
        finally:
            await conn.close()

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS plans (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                goal TEXT NOT NULL,
                steps JSONB NOT NULL,
                current_step_index INTEGER NOT NULL,
                status TEXT NOT NULL,
                failure_reason TEXT,
                context JSONB,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                version INTEGER NOT NULL
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_plans_status_updated ON plans (status, updated_at)"
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS webhook_endpoints (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                url TEXT NOT NULL,
                secret TEXT NOT NULL,
                events JSONB NOT NULL,
                headers JSONB,
                is_active BOOLEAN NOT NULL,
                max_attempts INTEGER NOT NULL,
                timeout_seconds INTEGER NOT NULL,
                consecutive_failures INTEGER NOT NULL,
                last_success_at TIMESTAMPTZ,
                last_failure_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS webhook_deliveries (
                id TEXT PRIMARY KEY,
                endpoint_id TEXT NOT NULL,
                event TEXT NOT NULL,
                payload JSONB NOT NULL,
                status TEXT NOT NULL,
                attempts INTEGER NOT NULL,
                next_attempt_at TIMESTAMPTZ NOT NULL,
                last_error TEXT,
                response_status INTEGER,
                created_at TIMESTAMPTZ NOT NULL,
                delivered_at TIMESTAMPTZ
            )
            """
        )

    @staticmethod
    def _plan_from_row(row: asyncpg.Record) -> Plan:
        return Plan.model_validate(
            {
                **dict(row),
                "steps": _json(row["steps"]),
                "context": _json(row["context"]) or {},
            }
        )

    @staticmethod
    def _endpoint_from_row(row: asyncpg.Record) -> WebhookEndpoint:
        return WebhookEndpoint.model_validate(
            {
                **dict(row),
                "events": _json(row["events"]),
                "headers": _json(row["headers"]) or {},
            }
        )

    @staticmethod
    def _delivery_from_row(row: asyncpg.Record) -> WebhookDelivery:
        return WebhookDelivery.model_validate(
            {**dict(row), "payload": _json(row["payload"])}
        )

    # ------------------------------------------------------------------
    # Plans
    async def create_plan(self, plan: Plan) -> None:
        async with self._connection() as conn:
            await conn.execute(
                f"INSERT INTO plans ({_PLAN_COLUMNS}) "
                "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)",
                plan.id,
                plan.user_id,
                plan.goal,
                json.dumps([s.model_dump(mode="json") for s in plan.steps]),
                plan.current_step_index,
                plan.status.value,
                plan.failure_reason,
                json.dumps(plan.context),
                plan.created_at,
                plan.updated_at,
                plan.version,
            )

    async def get_plan(self, plan_id: str) -> Plan | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_PLAN_COLUMNS} FROM plans WHERE id = $1", plan_id
            )
        return self._plan_from_row(row) if row else None

    async def list_plans(
        self, status: PlanStatus | None = None, user_id: str | None = None
    ) -> list[Plan]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_PLAN_COLUMNS} FROM plans "
                "WHERE ($1::text IS NULL OR status = $1) "
                "AND ($2::text IS NULL OR user_id = $2) "
                "ORDER BY created_at",
                status.value if status is not None else None,
                user_id,
            )
        return [self._plan_from_row(r) for r in rows]

    async def save_plan(self, plan: Plan, expected_version: int) -> bool:
        async with self._connection() as conn:
            result = await conn.execute(
                """
                UPDATE plans
                SET steps = $1, current_step_index = $2, status = $3,
                    failure_reason = $4, context = $5, updated_at = $6,
                    version = version + 1
                WHERE id = $7 AND version = $8
                """,
                json.dumps([s.model_dump(mode="json") for s in plan.steps]),
                plan.current_step_index,
                plan.status.value,
                plan.failure_reason,
                json.dumps(plan.context),
                plan.updated_at,
                plan.id,
                expected_version,
            )
        if result != "UPDATE 1":
            return False
        plan.version = expected_version + 1
        return True

    async def list_stale_plans(self, cutoff: datetime) -> list[Plan]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_PLAN_COLUMNS} FROM plans WHERE status = $1 AND updated_at < $2",
                PlanStatus.RUNNING.value,
                cutoff,
            )
        return [self._plan_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Webhooks
    async def create_endpoint(self, endpoint: WebhookEndpoint) -> None:
        async with self._connection() as conn:
            await conn.execute(
                f"INSERT INTO webhook_endpoints ({_ENDPOINT_COLUMNS}) "
                "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)",
                endpoint.id,
                endpoint.user_id,
                endpoint.name,
                endpoint.url,
                endpoint.secret,
                json.dumps(endpoint.events),
                json.dumps(endpoint.headers),
                endpoint.is_active,
                endpoint.max_attempts,
                endpoint.timeout_seconds,
                endpoint.consecutive_failures,
                endpoint.last_success_at,
                endpoint.last_failure_at,
                endpoint.created_at,
            )

    async def get_endpoint(self, endpoint_id: str) -> WebhookEndpoint | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_ENDPOINT_COLUMNS} FROM webhook_endpoints WHERE id = $1",
                endpoint_id,
            )
        return self._endpoint_from_row(row) if row else None

    async def list_endpoints(self, user_id: str | None = None) -> list[WebhookEndpoint]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_ENDPOINT_COLUMNS} FROM webhook_endpoints "
                "WHERE ($1::text IS NULL OR user_id = $1) ORDER BY created_at",
                user_id,
            )
        return [self._endpoint_from_row(r) for r in rows]

    async def update_endpoint(self, endpoint: WebhookEndpoint) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                UPDATE webhook_endpoints
                SET name = $1, url = $2, events = $3, headers = $4, is_active = $5,
                    max_attempts = $6, timeout_seconds = $7,
                    consecutive_failures = $8, last_success_at = $9,
                    last_failure_at = $10
                WHERE id = $11
                """,
                endpoint.name,
                endpoint.url,
                json.dumps(endpoint.events),
                json.dumps(endpoint.headers),
                endpoint.is_active,
                endpoint.max_attempts,
                endpoint.timeout_seconds,
                endpoint.consecutive_failures,
                endpoint.last_success_at,
                endpoint.last_failure_at,
                endpoint.id,
            )

    async def delete_endpoint(self, endpoint_id: str) -> bool:
        async with self._connection() as conn:
            async with conn.transaction():
                await conn.execute(
                    "DELETE FROM webhook_deliveries WHERE endpoint_id = $1", endpoint_id
                )
                result = await conn.execute(
                    "DELETE FROM webhook_endpoints WHERE id = $1", endpoint_id
                )
        return result == "DELETE 1"

    async def create_delivery(self, delivery: WebhookDelivery) -> None:
        async with self._connection() as conn:
            await conn.execute(
                f"INSERT INTO webhook_deliveries ({_DELIVERY_COLUMNS}) "
                "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)",
                delivery.id,
                delivery.endpoint_id,
                delivery.event,
                json.dumps(delivery.payload),
                delivery.status.value,
                delivery.attempts,
                delivery.next_attempt_at,
                delivery.last_error,
                delivery.response_status,
                delivery.created_at,
                delivery.delivered_at,
            )

    async def update_delivery(self, delivery: WebhookDelivery) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                UPDATE webhook_deliveries
                SET status = $1, attempts = $2, next_attempt_at = $3,
                    last_error = $4, response_status = $5, delivered_at = $6
                WHERE id = $7
                """,
                delivery.status.value,
                delivery.attempts,
                delivery.next_attempt_at,
                delivery.last_error,
                delivery.response_status,
                delivery.delivered_at,
                delivery.id,
            )

    async def list_due_deliveries(
        self, now: datetime, limit: int
    ) -> list[WebhookDelivery]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_DELIVERY_COLUMNS} FROM webhook_deliveries "
                "WHERE status = $1 AND next_attempt_at <= $2 "
                "ORDER BY created_at LIMIT $3",
                DeliveryStatus.PENDING.value,
                now,
                limit,
            )
        return [self._delivery_from_row(r) for r in rows]

    async def list_deliveries(
        self, endpoint_id: str | None = None, limit: int = 50
    ) -> list[WebhookDelivery]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_DELIVERY_COLUMNS} FROM webhook_deliveries "
                "WHERE ($1::text IS NULL OR endpoint_id = $1) "
                "ORDER BY created_at DESC LIMIT $2",
                endpoint_id,
                limit,
            )
        return [self._delivery_from_row(r) for r in rows]
