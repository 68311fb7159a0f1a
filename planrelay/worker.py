"""Continuation worker that drains the plan continuation queue."""

from __future__ import annotations

import logging
from typing import Optional

from .constants import CONTINUATION_TOPIC
from .errors import PlanConflictError, PlanNotFoundError
from .service import PlanService
from .transports import BaseTransport

logger = logging.getLogger(__name__)


class ContinuationWorker:
    """Executes queued continuations by listening to the transport."""

    def __init__(
        self,
        transport: BaseTransport,
        service: PlanService,
        topic: str = CONTINUATION_TOPIC,
    ) -> None:
        self._transport = transport
        self._service = service
        self._topic = topic
        self.processed = 0

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Start listening for continuation messages on the topic."""
        async for raw_message, message in self._transport.subscribe(
            self._topic, lifespan=lifespan
        ):
            try:
                outcome = await self._service.continue_plan(message.plan_id)
            except (PlanConflictError, PlanNotFoundError) as e:
                logger.info(f"Dropping continuation {message.message_id}: {e}")
                await self._transport.ack(raw_message)
            except Exception:
                logger.exception(
                    f"Continuation {message.message_id} failed for plan_id={message.plan_id}"
                )
                await self._transport.nack(raw_message, requeue=False)
            else:
                logger.info(
                    f"Continued plan_id={outcome.plan_id}: {outcome.status.value} "
                    f"{outcome.current_step}/{outcome.total_steps}"
                )
                await self._transport.ack(raw_message)
            self.processed += 1
