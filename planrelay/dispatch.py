"""Continuation queue used to chain plan steps."""

from __future__ import annotations

import logging
from datetime import datetime

from pydantic import BaseModel

from .constants import CONTINUATION_TOPIC
from .contracts import ContinuationMessage
from .transports import BaseTransport

logger = logging.getLogger(__name__)


class ContinuationTicket(BaseModel):
    """Acknowledgement that a continuation was accepted by the transport."""

    message_id: str
    plan_id: str
    topic: str
    queued_at: datetime


class ContinuationQueue:
    """Publishes continuation requests for plans."""

    def __init__(self, transport: BaseTransport, topic: str = CONTINUATION_TOPIC) -> None:
        self._transport = transport
        self.topic = topic

    async def enqueue(self, plan_id: str, attempt: int = 1) -> ContinuationTicket:
        """Publish a continuation for ``plan_id``.

        Raises whatever the transport raises; callers decide how to surface it.
        """
        message = ContinuationMessage(plan_id=plan_id, attempt=attempt)
        await self._transport.publish(self.topic, message)
        logger.debug(f"Queued continuation {message.message_id} for plan_id={plan_id}")
        return ContinuationTicket(
            message_id=message.message_id,
            plan_id=plan_id,
            topic=self.topic,
            queued_at=message.timestamp,
        )
