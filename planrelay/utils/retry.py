from __future__ import annotations

import random
from datetime import datetime, timedelta


def compute_backoff(attempt: int, base: float = 1.5, jitter: float = 0.5) -> float:
    """Compute exponential backoff with jitter."""
    delay = base ** attempt
    return delay + random.uniform(0, jitter)


def next_attempt_at(
    now: datetime, attempt: int, base_delay: float, max_delay: float = 3600.0
) -> datetime:
    """Schedule retry ``attempt`` as a multiple of ``base_delay`` seconds.

    The first retry waits roughly ``base_delay``; each further one grows by
    the backoff factor, capped at ``max_delay``.
    """
    delay = min(base_delay * compute_backoff(attempt - 1), max_delay)
    return now + timedelta(seconds=delay)
