"""Continuation transports and the backend factory."""

from __future__ import annotations

import os
from typing import Optional

from ..config import PlanRelayConfig, load_config
from .base import BaseTransport
from .inmemory import InMemoryTransport


def get_transport(
    backend: Optional[str] = None, config: Optional[PlanRelayConfig] = None
) -> BaseTransport:
    """Return the transport named by ``backend``, ``PLANRELAY_TRANSPORT`` or config.

    The in-memory transport only reaches workers in the same process; use
    ``redis`` when the API and the worker run separately.
    """
    config = config or load_config()
    name = (backend or os.getenv("PLANRELAY_TRANSPORT") or config.transport.backend).lower()

    if name == "redis":
        from .redis import RedisTransport

        settings = config.transport.redis
        return RedisTransport(
            host=settings.host,
            port=settings.port,
            db=settings.db,
            password=settings.password,
        )
    if name == "inmemory":
        return InMemoryTransport()
    raise ValueError(f"Unsupported transport backend: {name}")


__all__ = ["BaseTransport", "InMemoryTransport", "get_transport"]
