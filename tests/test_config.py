from datetime import timedelta

import pytest

from deal_scraper.config import DEFAULT_USER_AGENT, load_config


def test_load_config_defaults(monkeypatch):
    for key in ("TIMEZONE", "LOG_LEVEL", "LOG_FORMAT", "HTTP_USER_AGENT", "STALE_EXPIRY_GRACE_DAYS",
                "MAX_CONCURRENT_RUNS", "SCHEDULER_ENABLED", "SERVICE_POLL_INTERVAL_SECONDS"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("DATABASE_URL", "sqlite:///deals.db")

    config = load_config()

    assert config.timezone_name == "Europe/London"
    assert config.log_format == "json"
    assert config.http_user_agent == DEFAULT_USER_AGENT
    assert config.stale_grace_days == 7
    assert config.max_concurrent_runs == 4
    assert config.scheduler_enabled is True
    assert config.service_poll_interval == timedelta(days=1)


def test_load_config_reads_overrides(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://deals@db/deals")
    monkeypatch.setenv("TIMEZONE", "UTC")
    monkeypatch.setenv("LOG_FORMAT", "Console")
    monkeypatch.setenv("SCHEDULER_ENABLED", "off")
    monkeypatch.setenv("SERVICE_POLL_INTERVAL_SECONDS", "5")
    monkeypatch.setenv("MAX_CONCURRENT_RUNS", "0")

    config = load_config()

    assert config.timezone_name == "UTC"
    assert config.log_format == "console"
    assert config.scheduler_enabled is False
    assert config.service_poll_interval == timedelta(seconds=60)
    assert config.max_concurrent_runs == 1


@pytest.mark.parametrize(
    "key, value",
    [("DATABASE_URL", ""), ("STALE_EXPIRY_GRACE_DAYS", "soon"), ("SCHEDULER_ENABLED", "maybe"), ("LOG_FORMAT", "xml")],
)
def test_load_config_rejects_bad_values(monkeypatch, key, value):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///deals.db")
    monkeypatch.setenv(key, value)
    with pytest.raises(ValueError):
        load_config()
