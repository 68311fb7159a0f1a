"""In-memory transport for testing."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, List, Optional, Tuple

from ..contracts import ContinuationMessage
from .base import BaseTransport

RawInMemory = Tuple[str, str, ContinuationMessage]


class InMemoryTransport(BaseTransport[RawInMemory]):
    """Simple in-process queue for unit tests and single-process runs.

    Raw messages are ``(topic, json, message)`` triples. Requeued nacks go
    back to the front of their topic.
    """

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[RawInMemory]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self.acked: List[RawInMemory] = []
        self.dead_letters: List[RawInMemory] = []

    async def publish(self, topic: str, message: ContinuationMessage) -> None:
        """Publish message to in-memory queue."""
        raw = (topic, message.to_json(), message)
        async with self._lock:
            self._queues[topic].append(raw)

    def pending(self, topic: str) -> int:
        return len(self._queues[topic])

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawInMemory, ContinuationMessage]]:
        """Subscribe to messages from topic.

        Args:
            topic: The topic to subscribe to
            lifespan: Maximum time in seconds to keep connection open. If None, runs indefinitely.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break

            raw_message = None
            async with self._lock:
                if self._queues[topic]:
                    raw_message = self._queues[topic].popleft()
            if raw_message is not None:
                yield raw_message, raw_message[2]
                continue

            await asyncio.sleep(0.05)

    async def ack(self, raw_message: RawInMemory) -> None:
        """Record acknowledgment for inspection."""
        self.acked.append(raw_message)

    async def nack(self, raw_message: RawInMemory, requeue: bool = True) -> None:
        if requeue:
            async with self._lock:
                self._queues[raw_message[0]].appendleft(raw_message)
        else:
            self.dead_letters.append(raw_message)
