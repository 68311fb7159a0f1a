"""Redis transport for cross-process messaging."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Tuple

import redis.asyncio as redis

from ..contracts import ContinuationMessage
from .base import BaseTransport

logger = logging.getLogger(__name__)

RawRedis = Tuple[str, str]


class RedisTransport(BaseTransport[RawRedis]):
    """Redis-based transport for distributed messaging.

    Each topic is a Redis list. Rejected messages without requeue are pushed
    to ``<queue>:dead``.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = None

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @staticmethod
    def _queue_name(topic: str) -> str:
        return f"planrelay:{topic}"

    async def publish(self, topic: str, message: ContinuationMessage) -> None:
        """Publish message to Redis list (acting as queue)."""
        if not self._redis:
            await self.connect()
        await self._redis.lpush(self._queue_name(topic), message.to_json())

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawRedis, ContinuationMessage]]:
        """Subscribe to messages from Redis queue."""
        if not self._redis:
            await self.connect()

        queue_name = self._queue_name(topic)
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break

            result = await self._redis.brpop(queue_name, timeout=1)
            if result:
                _, message_json = result
                try:
                    message = ContinuationMessage.from_json(message_json)
                except ValueError as e:
                    logger.error(f"Dropping unparseable message on {queue_name}: {e}")
                    await self._redis.lpush(f"{queue_name}:dead", message_json)
                    continue
                yield (queue_name, message_json), message

    async def ack(self, raw_message: RawRedis) -> None:
        """No-op acknowledgment for Redis transport (message already consumed)."""
        pass

    async def nack(self, raw_message: RawRedis, requeue: bool = True) -> None:
        queue_name, message_json = raw_message
        if requeue:
            await self._redis.rpush(queue_name, message_json)
        else:
            await self._redis.lpush(f"{queue_name}:dead", message_json)
