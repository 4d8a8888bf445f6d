"""Configuration loader for the deal scraping service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from zoneinfo import ZoneInfo

from .logging import LOG_FORMATS


def _get_env(key: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(key)
    if value is not None:
        value = value.strip()
        if value == "":
            return default
        return value
    return default


def _get_int(key: str, default: int) -> int:
    value = _get_env(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {key} must be an integer") from exc


def _get_float(key: str, default: float) -> float:
    value = _get_env(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {key} must be a number") from exc


def _get_bool(key: str, default: bool) -> bool:
    value = _get_env(key)
    if value is None:
        return default
    value_lower = value.lower()
    if value_lower in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if value_lower in {"0", "false", "f", "no", "n", "off"}:
        return False
    raise ValueError(f"Environment variable {key} must be a boolean")


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@dataclass(slots=True)
class AppConfig:
    database_url: str
    timezone: ZoneInfo
    log_level: str = "INFO"
    log_format: str = "json"
    http_user_agent: str = DEFAULT_USER_AGENT
    http_backoff_base: float = 1.0
    http_backoff_max: float = 30.0
    stale_grace_days: int = 7
    max_concurrent_runs: int = 4
    scheduler_enabled: bool = True
    service_poll_interval: timedelta = timedelta(days=1)

    @property
    def timezone_name(self) -> str:
        return self.timezone.key


def load_config() -> AppConfig:
    database_url = _get_env("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL must be set")

    tz_name = _get_env("TIMEZONE", "Europe/London")
    try:
        timezone = ZoneInfo(tz_name)
    except Exception as exc:  # pragma: no cover
        raise ValueError(f"Unable to load timezone '{tz_name}'") from exc

    log_level = _get_env("LOG_LEVEL", "INFO").upper()
    log_format = _get_env("LOG_FORMAT", "json").lower()
    if log_format not in LOG_FORMATS:
        raise ValueError(f"LOG_FORMAT must be one of: {', '.join(LOG_FORMATS)}")
    http_user_agent = _get_env("HTTP_USER_AGENT", DEFAULT_USER_AGENT)
    http_backoff_base = max(0.0, _get_float("HTTP_BACKOFF_BASE_SECONDS", 1.0))
    http_backoff_max = max(http_backoff_base, _get_float("HTTP_BACKOFF_MAX_SECONDS", 30.0))
    stale_grace_days = max(0, _get_int("STALE_EXPIRY_GRACE_DAYS", 7))
    max_concurrent_runs = max(1, _get_int("MAX_CONCURRENT_RUNS", 4))
    scheduler_enabled = _get_bool("SCHEDULER_ENABLED", True)
    poll_interval_seconds = max(60, _get_int("SERVICE_POLL_INTERVAL_SECONDS", 86_400))

    return AppConfig(
        database_url=database_url,
        timezone=timezone,
        log_level=log_level,
        log_format=log_format,
        http_user_agent=http_user_agent,
        http_backoff_base=http_backoff_base,
        http_backoff_max=http_backoff_max,
        stale_grace_days=stale_grace_days,
        max_concurrent_runs=max_concurrent_runs,
        scheduler_enabled=scheduler_enabled,
        service_poll_interval=timedelta(seconds=poll_interval_seconds),
    )
