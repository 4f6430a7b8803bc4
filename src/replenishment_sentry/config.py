"""Application configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in {"1", "true", "yes", "on"}


def _default_database_url() -> str:
    """Resolve the database URL taking overrides into account."""

    override = os.environ.get("REPLENISHMENT_DB_URL")
    if override:
        return override
    return "sqlite:///./replenishment.db"


@dataclass(slots=True)
class Settings:
    """Runtime configuration loaded from environment variables."""

    app_name: str = field(default_factory=lambda: os.environ.get("REPLENISHMENT_APP_NAME", "Replenishment Sentry"))
    host: str = field(default_factory=lambda: os.environ.get("REPLENISHMENT_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.environ.get("REPLENISHMENT_PORT", "3000")))
    reload: bool = field(default_factory=lambda: _env_flag("REPLENISHMENT_RELOAD", "false"))
    log_level: str = field(default_factory=lambda: os.environ.get("REPLENISHMENT_LOG_LEVEL", "info"))
    database_url: str = field(default_factory=_default_database_url)
    echo_sql: bool = field(default_factory=lambda: _env_flag("REPLENISHMENT_DB_ECHO", "false"))
    default_warehouse_id: str = field(default_factory=lambda: os.environ.get("DEFAULT_WAREHOUSE_ID", "WH1"))
    default_carrier: str = field(
        default_factory=lambda: os.environ.get("REPLENISHMENT_DEFAULT_CARRIER", "DefaultCarrier")
    )
    recent_orders_limit: int = field(
        default_factory=lambda: int(os.environ.get("REPLENISHMENT_RECENT_LIMIT", "100"))
    )
    consumer_group: str = field(
        default_factory=lambda: os.environ.get("REPLENISHMENT_CONSUMER_GROUP", "sentry-lowstock-group")
    )
    run_consumers: bool = field(default_factory=lambda: _env_flag("REPLENISHMENT_RUN_CONSUMERS", "true"))
    poll_interval: float = field(
        default_factory=lambda: float(os.environ.get("REPLENISHMENT_POLL_INTERVAL", "0.5"))
    )
    max_transition_attempts: int = field(
        default_factory=lambda: int(os.environ.get("REPLENISHMENT_MAX_ATTEMPTS", "3"))
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
