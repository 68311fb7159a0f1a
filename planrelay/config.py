from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import (
    STALE_PLAN_AFTER_SECONDS,
    WEBHOOK_BACKOFF_BASE_SECONDS,
    WEBHOOK_BATCH_SIZE,
    WEBHOOK_TIME_BUDGET_SECONDS,
)


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class ServerConfig(BaseModel):
    """HTTP server bind settings."""

    host: str = "127.0.0.1"
    port: int = 8000


class SweeperConfig(BaseModel):
    """Orphaned-plan sweeper settings."""

    stale_after_seconds: int = STALE_PLAN_AFTER_SECONDS


class WebhookConfig(BaseModel):
    """Webhook delivery queue settings."""

    batch_size: int = WEBHOOK_BATCH_SIZE
    time_budget_seconds: float = WEBHOOK_TIME_BUDGET_SECONDS
    backoff_base_seconds: float = WEBHOOK_BACKOFF_BASE_SECONDS


class PlanRelayConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    database_url: Optional[str] = None
    cron_secret: Optional[str] = None
    server: ServerConfig = ServerConfig()
    sweeper: SweeperConfig = SweeperConfig()
    webhooks: WebhookConfig = WebhookConfig()


def load_config(path: Optional[str] = None) -> PlanRelayConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to PLANRELAY_CONFIG env
            variable or 'config.yaml' in the current directory.

    ``CRON_SECRET`` and ``PLANRELAY_DATABASE_URL``/``DATABASE_URL`` override
    the file.
    """

    config_path = path or os.getenv("PLANRELAY_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = PlanRelayConfig(**data)
    else:
        config = PlanRelayConfig()

    env_db_url = os.getenv("PLANRELAY_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_secret = os.getenv("CRON_SECRET")
    if env_secret:
        config.cron_secret = env_secret
    return config
