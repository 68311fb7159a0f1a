"""Outbound webhook registration, fan-out and delivery."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import re
import secrets
import time
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel

from .constants import (
    WEBHOOK_BACKOFF_BASE_SECONDS,
    WEBHOOK_BATCH_SIZE,
    WEBHOOK_MAX_ATTEMPTS,
    WEBHOOK_MAX_TIMEOUT_SECONDS,
    WEBHOOK_MIN_ATTEMPTS,
    WEBHOOK_MIN_TIMEOUT_SECONDS,
    WEBHOOK_SECRET_PREFIX,
    WEBHOOK_TIME_BUDGET_SECONDS,
)
from .contracts import utcnow
from .errors import WebhookNotFoundError, WebhookValidationError
from .persistence import (
    DeliveryStatus,
    WebhookDelivery,
    WebhookEndpoint,
    WebhookRepository,
)
from .utils.retry import next_attempt_at

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS = (
    "plan.completed",
    "plan.failed",
    "plan.paused",
    "plan.cancelled",
)


def sign_payload(secret: str, timestamp: str, body: str) -> str:
    """Return the ``sha256=`` signature header value for ``body``."""
    digest = hmac.new(
        secret.encode(), f"{timestamp}.{body}".encode(), hashlib.sha256
    ).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret: str, timestamp: str, body: str, signature: str) -> bool:
    return hmac.compare_digest(sign_payload(secret, timestamp, body), signature)


def _clamp(value: int, low: int, high: int) -> int:
    return min(max(value, low), high)


# RFC 9110 token characters.
_HEADER_NAME = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


def _validate_name(name: Optional[str]) -> str:
    if not name:
        raise WebhookValidationError("name is required")
    return name


def _validate_url(url: Optional[str]) -> str:
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise WebhookValidationError("url must be a valid http(s) URL")
    return url


def _validate_events(events: Iterable[str]) -> List[str]:
    events = list(events)
    if not events:
        raise WebhookValidationError("At least one event is required")
    invalid = [e for e in events if e not in WEBHOOK_EVENTS]
    if invalid:
        raise WebhookValidationError(f"Invalid events: {', '.join(invalid)}")
    return events


def _validate_headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Reject headers that cannot be sent as HTTP/1.1 ASCII header lines."""
    headers = dict(headers or {})
    for name, value in headers.items():
        if not isinstance(name, str) or not _HEADER_NAME.match(name):
            raise WebhookValidationError(f"Invalid header name: {name!r}")
        if not isinstance(value, str) or not all(
            c == "\t" or 32 <= ord(c) < 127 for c in value
        ):
            raise WebhookValidationError(
                f"Header {name} must be printable ASCII without line breaks"
            )
    return headers


class DeliveryReport(BaseModel):
    """Aggregate outcome of one delivery tick."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    duration_ms: float = 0.0


class WebhookDispatcher:
    """Queues webhook events and delivers them in bounded batches."""

    def __init__(
        self,
        repository: WebhookRepository,
        http_client: Optional[httpx.AsyncClient] = None,
        backoff_base_seconds: float = WEBHOOK_BACKOFF_BASE_SECONDS,
    ) -> None:
        self._repository = repository
        self._http_client = http_client
        self._backoff_base = backoff_base_seconds

    async def register_endpoint(
        self,
        user_id: str,
        name: str,
        url: str,
        events: Iterable[str],
        headers: Optional[Dict[str, str]] = None,
        max_attempts: int = 3,
        timeout_seconds: int = 30,
    ) -> WebhookEndpoint:
        """Validate and store a new endpoint with a fresh signing secret."""
        endpoint = WebhookEndpoint(
            user_id=user_id,
            name=_validate_name(name),
            url=_validate_url(url),
            secret=WEBHOOK_SECRET_PREFIX + secrets.token_urlsafe(24),
            events=_validate_events(events),
            headers=_validate_headers(headers),
            max_attempts=_clamp(max_attempts, WEBHOOK_MIN_ATTEMPTS, WEBHOOK_MAX_ATTEMPTS),
            timeout_seconds=_clamp(
                timeout_seconds, WEBHOOK_MIN_TIMEOUT_SECONDS, WEBHOOK_MAX_TIMEOUT_SECONDS
            ),
        )
        await self._repository.create_endpoint(endpoint)
        logger.info(f"Registered webhook {endpoint.id} for user_id={user_id}")
        return endpoint

    async def get_endpoint(self, endpoint_id: str) -> WebhookEndpoint:
        endpoint = await self._repository.get_endpoint(endpoint_id)
        if endpoint is None:
            raise WebhookNotFoundError(endpoint_id)
        return endpoint

    async def update_endpoint(
        self,
        endpoint_id: str,
        name: Optional[str] = None,
        url: Optional[str] = None,
        events: Optional[Iterable[str]] = None,
        headers: Optional[Dict[str, str]] = None,
        is_active: Optional[bool] = None,
        max_attempts: Optional[int] = None,
        timeout_seconds: Optional[int] = None,
    ) -> WebhookEndpoint:
        """Apply the given changes with the same rules as registration.

        Fields left as ``None`` keep their value. Re-activating an endpoint
        clears its failure streak.
        """
        endpoint = await self.get_endpoint(endpoint_id)
        if name is not None:
            endpoint.name = _validate_name(name)
        if url is not None:
            endpoint.url = _validate_url(url)
        if events is not None:
            endpoint.events = _validate_events(events)
        if headers is not None:
            endpoint.headers = _validate_headers(headers)
        if max_attempts is not None:
            endpoint.max_attempts = _clamp(
                max_attempts, WEBHOOK_MIN_ATTEMPTS, WEBHOOK_MAX_ATTEMPTS
            )
        if timeout_seconds is not None:
            endpoint.timeout_seconds = _clamp(
                timeout_seconds, WEBHOOK_MIN_TIMEOUT_SECONDS, WEBHOOK_MAX_TIMEOUT_SECONDS
            )
        if is_active is not None:
            if is_active and not endpoint.is_active:
                endpoint.consecutive_failures = 0
            endpoint.is_active = is_active
        await self._repository.update_endpoint(endpoint)
        logger.info(f"Updated webhook {endpoint.id} (active={endpoint.is_active})")
        return endpoint

    async def delete_endpoint(self, endpoint_id: str) -> None:
        """Remove an endpoint together with its delivery history."""
        if not await self._repository.delete_endpoint(endpoint_id):
            raise WebhookNotFoundError(endpoint_id)
        logger.info(f"Deleted webhook {endpoint_id}")

    async def list_endpoints(
        self, user_id: Optional[str] = None, history: int = 10
    ) -> List[Tuple[WebhookEndpoint, List[WebhookDelivery]]]:
        """Return each endpoint of ``user_id`` with its most recent deliveries."""
        return [
            (endpoint, await self._repository.list_deliveries(endpoint.id, history))
            for endpoint in await self._repository.list_endpoints(user_id=user_id)
        ]

    async def emit(
        self, user_id: str, event: str, payload: Dict[str, Any]
    ) -> List[WebhookDelivery]:
        """Queue ``event`` for every active endpoint of ``user_id`` subscribed to it."""
        deliveries = []
        for endpoint in await self._repository.list_endpoints(user_id=user_id):
            if not endpoint.is_active or event not in endpoint.events:
                continue
            delivery = WebhookDelivery(
                endpoint_id=endpoint.id, event=event, payload=payload
            )
            await self._repository.create_delivery(delivery)
            deliveries.append(delivery)
        if deliveries:
            logger.info(
                f"Queued {len(deliveries)} {event} deliveries for user_id={user_id}"
            )
        return deliveries

    async def process_pending(
        self,
        batch_size: int = WEBHOOK_BATCH_SIZE,
        time_budget: float = WEBHOOK_TIME_BUDGET_SECONDS,
        now: Optional[datetime] = None,
    ) -> DeliveryReport:
        """Attempt up to ``batch_size`` due deliveries within ``time_budget`` seconds."""
        started = time.monotonic()
        now = now or utcnow()
        report = DeliveryReport()
        due = await self._repository.list_due_deliveries(now, batch_size)

        if self._http_client is not None:
            await self._deliver_batch(self._http_client, due, now, started, time_budget, report)
        else:
            async with httpx.AsyncClient() as client:
                await self._deliver_batch(client, due, now, started, time_budget, report)

        report.duration_ms = (time.monotonic() - started) * 1000
        logger.info(
            f"Webhook tick: processed={report.processed} succeeded={report.succeeded} "
            f"failed={report.failed} in {report.duration_ms:.0f}ms"
        )
        return report

    async def _deliver_batch(
        self,
        client: httpx.AsyncClient,
        due: List[WebhookDelivery],
        now: datetime,
        started: float,
        time_budget: float,
        report: DeliveryReport,
    ) -> None:
        for delivery in due:
            if time.monotonic() - started >= time_budget:
                logger.warning(
                    f"Webhook time budget of {time_budget}s spent; "
                    f"{len(due) - report.processed} deliveries left for next tick"
                )
                break
            ok = await self._attempt(client, delivery, now)
            report.processed += 1
            if ok:
                report.succeeded += 1
            else:
                report.failed += 1

    async def _attempt(
        self, client: httpx.AsyncClient, delivery: WebhookDelivery, now: datetime
    ) -> bool:
        endpoint = await self._repository.get_endpoint(delivery.endpoint_id)
        if endpoint is None or not endpoint.is_active:
            delivery.status = DeliveryStatus.FAILED
            delivery.last_error = "Endpoint inactive or deleted"
            await self._repository.update_delivery(delivery)
            return False

        delivery.attempts += 1
        error: Optional[str] = None
        try:
            response = await self._send(client, endpoint, delivery, now)
            delivery.response_status = response.status_code
            if not response.is_success:
                error = f"HTTP {response.status_code}"
        except httpx.HTTPError as e:
            error = str(e) or type(e).__name__
        except Exception as e:
            # Any error while building or sending the request is a failed attempt.
            logger.exception(f"Webhook delivery {delivery.id} could not be sent")
            error = f"{type(e).__name__}: {e}"

        if error is None:
            delivery.status = DeliveryStatus.SUCCEEDED
            delivery.delivered_at = now
            delivery.last_error = None
            endpoint.consecutive_failures = 0
            endpoint.last_success_at = now
        else:
            delivery.last_error = error
            endpoint.consecutive_failures += 1
            endpoint.last_failure_at = now
            if delivery.attempts >= endpoint.max_attempts:
                delivery.status = DeliveryStatus.FAILED
                logger.error(
                    f"Webhook delivery {delivery.id} to {endpoint.url} failed "
                    f"permanently after {delivery.attempts} attempts: {error}"
                )
            else:
                delivery.next_attempt_at = next_attempt_at(
                    now, delivery.attempts, self._backoff_base
                )
                logger.warning(
                    f"Webhook delivery {delivery.id} attempt {delivery.attempts} "
                    f"failed: {error}; retry at {delivery.next_attempt_at.isoformat()}"
                )

        await self._repository.update_delivery(delivery)
        await self._repository.update_endpoint(endpoint)
        return error is None

    @staticmethod
    async def _send(
        client: httpx.AsyncClient,
        endpoint: WebhookEndpoint,
        delivery: WebhookDelivery,
        now: datetime,
    ) -> httpx.Response:
        body = json.dumps(
            {
                "id": delivery.id,
                "event": delivery.event,
                "created_at": delivery.created_at.isoformat(),
                "data": delivery.payload,
            },
            separators=(",", ":"),
        )
        timestamp = str(int(now.timestamp()))
        headers = {
            **endpoint.headers,
            "Content-Type": "application/json",
            "X-Webhook-Event": delivery.event,
            "X-Webhook-Delivery": delivery.id,
            "X-Webhook-Timestamp": timestamp,
            "X-Webhook-Signature": sign_payload(endpoint.secret, timestamp, body),
        }
        return await client.post(
            endpoint.url,
            content=body,
            headers=headers,
            timeout=endpoint.timeout_seconds,
        )
