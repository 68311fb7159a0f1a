"""Shared-secret bearer authentication for system endpoints."""

from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Request

from .errors import UnauthorizedError


def verify_bearer(authorization: Optional[str], secret: Optional[str]) -> bool:
    """Return ``True`` when ``authorization`` is ``Bearer <secret>``.

    An unset secret never authorizes anything.
    """
    if not secret or not authorization:
        return False
    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer" or not token:
        return False
    return hmac.compare_digest(token.encode(), secret.encode())


def require_cron_secret(request: Request) -> None:
    """FastAPI dependency rejecting requests without the cron secret."""
    secret = request.app.state.services.config.cron_secret
    if not verify_bearer(request.headers.get("authorization"), secret):
        raise UnauthorizedError("Unauthorized")
