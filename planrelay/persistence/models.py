"""Data models for persisted webhook state."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..contracts import utcnow


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class WebhookEndpoint(BaseModel):
    """A user-configured URL that receives plan events."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    name: str
    url: str
    secret: str
    events: list[str] = Field(default_factory=list)
    headers: dict[str, str] = Field(default_factory=dict)
    is_active: bool = True
    max_attempts: int = 3
    timeout_seconds: int = 30
    consecutive_failures: int = 0
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class WebhookDelivery(BaseModel):
    """One outbound event queued for a single endpoint."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    endpoint_id: str
    event: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    next_attempt_at: datetime = Field(default_factory=utcnow)
    last_error: Optional[str] = None
    response_status: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    delivered_at: Optional[datetime] = None
