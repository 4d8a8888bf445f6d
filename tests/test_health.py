from datetime import datetime, timedelta, timezone

from deal_scraper.health import CRITICAL, HEALTHY, WARNING, HealthStatus, assess_health, overall_status
from deal_scraper.models import RunRecord, RunStatus

NOW = datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc)


def _runs(*entries):
    """Build runs newest first from (status, deals_found) pairs, one hour apart."""
    return [
        RunRecord(
            source_id=1,
            source_name="Example",
            started_at=NOW - timedelta(hours=index + 1),
            status=status,
            deals_found=deals,
        )
        for index, (status, deals) in enumerate(entries)
    ]


def test_no_history_is_a_warning():
    status = assess_health(1, "Example", [], NOW)
    assert status.status == WARNING
    assert status.issues == ["No scraping history available"]


def test_recent_successes_are_healthy():
    status = assess_health(1, "Example", _runs((RunStatus.SUCCESS, 5), (RunStatus.PARTIAL, 5)), NOW)

    assert status.status == HEALTHY
    assert status.success_rate == 100.0
    assert status.average_deals_found == 5.0
    assert status.last_success_at == NOW - timedelta(hours=1)
    assert status.issues == []


def test_three_consecutive_failures_are_critical():
    runs = _runs(
        (RunStatus.FAILED, 0),
        (RunStatus.FAILED, 0),
        (RunStatus.FAILED, 0),
        (RunStatus.SUCCESS, 4),
    )
    status = assess_health(1, "Example", runs, NOW)

    assert status.status == CRITICAL
    assert status.consecutive_failures == 3
    assert "Source has failed 3 consecutive times" in status.issues
    assert "Low success rate: 25.0%" in status.issues


def test_two_consecutive_failures_are_a_warning():
    runs = _runs((RunStatus.FAILED, 0), (RunStatus.FAILED, 0), (RunStatus.SUCCESS, 4), (RunStatus.SUCCESS, 4))
    status = assess_health(1, "Example", runs, NOW)
    assert status.status == WARNING
    assert status.consecutive_failures == 2


def test_deal_count_drop_is_flagged():
    runs = _runs(*[(RunStatus.SUCCESS, 2)] * 3, *[(RunStatus.SUCCESS, 10)] * 3)
    status = assess_health(1, "Example", runs, NOW)

    assert status.status == WARNING
    assert status.issues == ["Deal count dropped significantly - site structure may have changed"]


def test_stale_source_is_flagged():
    run = RunRecord(
        source_id=1,
        source_name="Example",
        started_at=NOW - timedelta(hours=72),
        status=RunStatus.SUCCESS,
        deals_found=3,
    )
    status = assess_health(1, "Example", [run], NOW)

    assert status.status == WARNING
    assert status.issues == ["Last scrape was 72 hours ago"]


def test_overall_status_is_the_worst_source():
    healthy = HealthStatus(source_id=1, source_name="A", status=HEALTHY)
    critical = HealthStatus(source_id=2, source_name="B", status=CRITICAL)

    assert overall_status([healthy, critical]) == CRITICAL
    assert overall_status([healthy]) == HEALTHY
    assert overall_status([]) == WARNING
