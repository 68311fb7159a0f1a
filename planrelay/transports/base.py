"""Queue abstraction carrying plan continuation messages."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..contracts import ContinuationMessage

RawMessageT = TypeVar("RawMessageT")


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """A topic-addressed queue with explicit acknowledgement.

    ``publish`` returning means the broker accepted the continuation. A
    consumer receives ``(raw, message)`` pairs and must settle every raw
    message with ``ack`` or ``nack``.
    """

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    @abc.abstractmethod
    async def publish(self, topic: str, message: ContinuationMessage) -> None:
        """Hand ``message`` to the broker, raising if it was not accepted."""

    @abc.abstractmethod
    def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, ContinuationMessage]]:
        """Yield continuations from ``topic`` until ``lifespan`` seconds pass.

        ``lifespan=None`` consumes forever.
        """

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Settle a message that needs no further processing."""

    async def nack(self, raw_message: RawMessageT, requeue: bool = True) -> None:
        """Reject a message; brokers without rejection treat it as settled."""
        await self.ack(raw_message)
