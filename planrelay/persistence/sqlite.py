"""SQLite implementation of the planrelay repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

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


def _ts(value: datetime | None) -> str | None:
    # Fixed-width UTC text keeps lexical and chronological order identical.
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SQLiteRepository(Repository):
    """Persist plan and webhook state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS plans (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                goal TEXT NOT NULL,
                steps TEXT NOT NULL,
                current_step_index INTEGER NOT NULL,
                status TEXT NOT NULL,
                failure_reason TEXT,
                context TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_plans_status_updated ON plans (status, updated_at)"
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS webhook_endpoints (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                url TEXT NOT NULL,
                secret TEXT NOT NULL,
                events TEXT NOT NULL,
                headers TEXT,
                is_active INTEGER NOT NULL,
                max_attempts INTEGER NOT NULL,
                timeout_seconds INTEGER NOT NULL,
                consecutive_failures INTEGER NOT NULL,
                last_success_at TEXT,
                last_failure_at TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS webhook_deliveries (
                id TEXT PRIMARY KEY,
                endpoint_id TEXT NOT NULL,
                event TEXT NOT NULL,
                payload TEXT NOT NULL,
                status TEXT NOT NULL,
                attempts INTEGER NOT NULL,
                next_attempt_at TEXT NOT NULL,
                last_error TEXT,
                response_status INTEGER,
                created_at TEXT NOT NULL,
                delivered_at TEXT
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _plan_from_row(row: sqlite3.Row) -> Plan:
        return Plan.model_validate(
            {
                "id": row["id"],
                "user_id": row["user_id"],
                "goal": row["goal"],
                "steps": json.loads(row["steps"]),
                "current_step_index": row["current_step_index"],
                "status": row["status"],
                "failure_reason": row["failure_reason"],
                "context": json.loads(row["context"]) if row["context"] else {},
                "created_at": row["created_at"],
                "updated_at": row["updated_at"],
                "version": row["version"],
            }
        )

    @staticmethod
    def _endpoint_from_row(row: sqlite3.Row) -> WebhookEndpoint:
        return WebhookEndpoint.model_validate(
            {
                **dict(row),
                "events": json.loads(row["events"]),
                "headers": json.loads(row["headers"]) if row["headers"] else {},
                "is_active": bool(row["is_active"]),
            }
        )

    @staticmethod
    def _delivery_from_row(row: sqlite3.Row) -> WebhookDelivery:
        return WebhookDelivery.model_validate(
            {**dict(row), "payload": json.loads(row["payload"])}
        )

    # ------------------------------------------------------------------
    # Plans
    async def create_plan(self, plan: Plan) -> None:
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO plans ({_PLAN_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            plan.id,
            plan.user_id,
            plan.goal,
            json.dumps([s.model_dump(mode="json") for s in plan.steps]),
            plan.current_step_index,
            plan.status.value,
            plan.failure_reason,
            json.dumps(plan.context),
            _ts(plan.created_at),
            _ts(plan.updated_at),
            plan.version,
        )

    async def get_plan(self, plan_id: str) -> Plan | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_PLAN_COLUMNS} FROM plans WHERE id = ?",
            plan_id,
        )
        return self._plan_from_row(row) if row else None

    async def list_plans(
        self, status: PlanStatus | None = None, user_id: str | None = None
    ) -> list[Plan]:
        query = f"SELECT {_PLAN_COLUMNS} FROM plans WHERE 1 = 1"
        params: list[Any] = []
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        rows = await asyncio.to_thread(
            self._fetchall, query + " ORDER BY created_at", *params
        )
        return [self._plan_from_row(r) for r in rows]

    async def save_plan(self, plan: Plan, expected_version: int) -> bool:
        updated = await asyncio.to_thread(
            self._execute,
            """
            UPDATE plans
            SET steps = ?, current_step_index = ?, status = ?, failure_reason = ?,
                context = ?, updated_at = ?, version = ?
            WHERE id = ? AND version = ?
            """,
            json.dumps([s.model_dump(mode="json") for s in plan.steps]),
            plan.current_step_index,
            plan.status.value,
            plan.failure_reason,
            json.dumps(plan.context),
            _ts(plan.updated_at),
            expected_version + 1,
            plan.id,
            expected_version,
        )
        if updated != 1:
            return False
        plan.version = expected_version + 1
        return True

    async def list_stale_plans(self, cutoff: datetime) -> list[Plan]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_PLAN_COLUMNS} FROM plans WHERE status = ? AND updated_at < ?",
            PlanStatus.RUNNING.value,
            _ts(cutoff),
        )
        return [self._plan_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Webhooks
    async def create_endpoint(self, endpoint: WebhookEndpoint) -> None:
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO webhook_endpoints ({_ENDPOINT_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            endpoint.id,
            endpoint.user_id,
            endpoint.name,
            endpoint.url,
            endpoint.secret,
            json.dumps(endpoint.events),
            json.dumps(endpoint.headers),
            int(endpoint.is_active),
            endpoint.max_attempts,
            endpoint.timeout_seconds,
            endpoint.consecutive_failures,
            _ts(endpoint.last_success_at),
            _ts(endpoint.last_failure_at),
            _ts(endpoint.created_at),
        )

    async def get_endpoint(self, endpoint_id: str) -> WebhookEndpoint | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_ENDPOINT_COLUMNS} FROM webhook_endpoints WHERE id = ?",
            endpoint_id,
        )
        return self._endpoint_from_row(row) if row else None

    async def list_endpoints(self, user_id: str | None = None) -> list[WebhookEndpoint]:
        if user_id is None:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT {_ENDPOINT_COLUMNS} FROM webhook_endpoints ORDER BY created_at",
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT {_ENDPOINT_COLUMNS} FROM webhook_endpoints "
                "WHERE user_id = ? ORDER BY created_at",
                user_id,
            )
        return [self._endpoint_from_row(r) for r in rows]

    async def update_endpoint(self, endpoint: WebhookEndpoint) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE webhook_endpoints
            SET name = ?, url = ?, events = ?, headers = ?, is_active = ?,
                max_attempts = ?, timeout_seconds = ?, consecutive_failures = ?,
                last_success_at = ?, last_failure_at = ?
            WHERE id = ?
            """,
            endpoint.name,
            endpoint.url,
            json.dumps(endpoint.events),
            json.dumps(endpoint.headers),
            int(endpoint.is_active),
            endpoint.max_attempts,
            endpoint.timeout_seconds,
            endpoint.consecutive_failures,
            _ts(endpoint.last_success_at),
            _ts(endpoint.last_failure_at),
            endpoint.id,
        )

    async def delete_endpoint(self, endpoint_id: str) -> bool:
        await asyncio.to_thread(
            self._execute,
            "DELETE FROM webhook_deliveries WHERE endpoint_id = ?",
            endpoint_id,
        )
        deleted = await asyncio.to_thread(
            self._execute, "DELETE FROM webhook_endpoints WHERE id = ?", endpoint_id
        )
        return deleted > 0

    async def create_delivery(self, delivery: WebhookDelivery) -> None:
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO webhook_deliveries ({_DELIVERY_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            delivery.id,
            delivery.endpoint_id,
            delivery.event,
            json.dumps(delivery.payload),
            delivery.status.value,
            delivery.attempts,
            _ts(delivery.next_attempt_at),
            delivery.last_error,
            delivery.response_status,
            _ts(delivery.created_at),
            _ts(delivery.delivered_at),
        )

    async def update_delivery(self, delivery: WebhookDelivery) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE webhook_deliveries
            SET status = ?, attempts = ?, next_attempt_at = ?, last_error = ?,
                response_status = ?, delivered_at = ?
            WHERE id = ?
            """,
            delivery.status.value,
            delivery.attempts,
            _ts(delivery.next_attempt_at),
            delivery.last_error,
            delivery.response_status,
            _ts(delivery.delivered_at),
            delivery.id,
        )

    async def list_due_deliveries(
        self, now: datetime, limit: int
    ) -> list[WebhookDelivery]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_DELIVERY_COLUMNS} FROM webhook_deliveries "
            "WHERE status = ? AND next_attempt_at <= ? ORDER BY created_at LIMIT ?",
            DeliveryStatus.PENDING.value,
            _ts(now),
            limit,
        )
        return [self._delivery_from_row(r) for r in rows]

    async def list_deliveries(
        self, endpoint_id: str | None = None, limit: int = 50
    ) -> list[WebhookDelivery]:
        if endpoint_id is None:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT {_DELIVERY_COLUMNS} FROM webhook_deliveries "
                "ORDER BY created_at DESC LIMIT ?",
                limit,
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT {_DELIVERY_COLUMNS} FROM webhook_deliveries "
                "WHERE endpoint_id = ? ORDER BY created_at DESC LIMIT ?",
                endpoint_id,
                limit,
            )
        return [self._delivery_from_row(r) for r in rows]
