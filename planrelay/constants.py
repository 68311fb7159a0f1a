"""Shared constants for planrelay."""

from __future__ import annotations

CONTINUATION_TOPIC = "plans.continue"

# A running plan whose updated_at is older than this is considered orphaned.
STALE_PLAN_AFTER_SECONDS = 10 * 60
SWEEP_FAILURE_REASON = "Plan timed out: no progress for 10 minutes"

WEBHOOK_BATCH_SIZE = 100
WEBHOOK_TIME_BUDGET_SECONDS = 60.0
WEBHOOK_BACKOFF_BASE_SECONDS = 30.0

WEBHOOK_MIN_ATTEMPTS = 1
WEBHOOK_MAX_ATTEMPTS = 5
WEBHOOK_MIN_TIMEOUT_SECONDS = 5
WEBHOOK_MAX_TIMEOUT_SECONDS = 60
WEBHOOK_SECRET_PREFIX = "whsec_"
