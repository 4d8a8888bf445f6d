from datetime import date, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from deal_scraper.config import AppConfig
from deal_scraper.errors import ConflictResolutionError, SourceConfigError
from deal_scraper.models import ConflictRecord, ConflictStatus, FieldDifference, RunRecord, RunStatus
from deal_scraper.orchestrator import RunOrchestrator
from deal_scraper.service import DealSyncService
from deal_scraper.time_utils import utcnow

from conftest import SOURCE_URL, html_handler, make_fetcher


@pytest.fixture()
def service(store, offers_html):
    config = AppConfig(database_url="sqlite://", timezone=ZoneInfo("Europe/London"), stale_grace_days=7)
    fetcher = make_fetcher(html_handler(offers_html))
    orchestrator = RunOrchestrator(store, fetcher, today=lambda: date(2024, 6, 1), max_workers=1)
    yield DealSyncService(config, store, fetcher, orchestrator)
    orchestrator.close()


def _pending_conflict(store):
    deal = store.add_deal("Acme Bank", "150", required_direct_debits=2)
    return store.create_conflict(
        ConflictRecord(
            deal_id=deal.id,
            deal_name=deal.name,
            differences=[
                FieldDifference(field="reward_amount", old=Decimal("150"), new=Decimal("200")),
                FieldDifference(field="required_direct_debits", old=2, new=3),
            ],
            source_id=1,
        )
    )


def test_test_config_never_touches_the_store(service, store, source_tree):
    result = service.test_config(SOURCE_URL, source_tree)

    assert result.success
    assert store.calls == []


def test_save_source_validates_before_writing(service, store, source_tree):
    with pytest.raises(SourceConfigError):
        service.save_source("Broken", SOURCE_URL, {"locationPatterns": {}})
    assert "save_source" not in store.calls

    saved = service.save_source("Example", SOURCE_URL, source_tree, priority=2)
    assert saved.id == 1
    assert saved.config_tree["locationPatterns"]["container"] == ".deal-item"
    assert [source.name for source in service.list_sources()] == ["Example"]


def test_accepting_a_conflict_writes_new_values(service, store):
    conflict_id = _pending_conflict(store)

    resolved = service.resolve_conflict(conflict_id, "accept", resolved_by="ops")

    assert resolved.status is ConflictStatus.ACCEPTED
    assert resolved.resolved_by == "ops"
    assert store.deals["Acme Bank"].reward_amount == Decimal("200")
    assert store.deals["Acme Bank"].required_direct_debits == 3
    assert store.conflicts[conflict_id].status is ConflictStatus.ACCEPTED


def test_rejecting_a_conflict_keeps_stored_values(service, store):
    conflict_id = _pending_conflict(store)

    service.resolve_conflict(conflict_id, "reject")

    assert store.deals["Acme Bank"].reward_amount == Decimal("150")
    assert store.conflicts[conflict_id].status is ConflictStatus.REJECTED
    assert "update_record" not in store.calls


def test_conflicts_resolve_only_once(service, store):
    conflict_id = _pending_conflict(store)
    service.resolve_conflict(conflict_id, "reject")

    with pytest.raises(ConflictResolutionError):
        service.resolve_conflict(conflict_id, "accept")
    with pytest.raises(LookupError):
        service.resolve_conflict(999, "accept")
    with pytest.raises(ValueError):
        service.resolve_conflict(conflict_id, "maybe")


def test_resolution_racing_another_operator_is_refused(service, store, monkeypatch):
    conflict_id = _pending_conflict(store)
    stale = store.get_conflict(conflict_id)
    service.resolve_conflict(conflict_id, "reject", resolved_by="first")
    monkeypatch.setattr(store, "get_conflict", lambda _id: stale)

    with pytest.raises(ConflictResolutionError):
        service.resolve_conflict(conflict_id, "reject", resolved_by="second")
    assert store.conflicts[conflict_id].resolved_by == "first"


def test_list_runs_clamps_page_size(service, store):
    for hours in range(3):
        store.runs.append(
            RunRecord(
                source_id=1,
                source_name="Example",
                started_at=utcnow() - timedelta(hours=hours),
                status=RunStatus.SUCCESS,
            )
        )

    runs, total = service.list_runs(page_size=1000)
    assert total == 3
    assert len(runs) == 3

    with pytest.raises(ValueError):
        service.list_runs(status="exploded")


def test_run_source_and_health(service, store, source_tree):
    source = store.add_source(source_tree)

    ticket = service.run_source(source.id)
    ticket.future.result(timeout=10)

    health = service.source_health(source.id)
    assert health.status == "healthy"
    assert health.success_rate == 100.0

    report = service.overall_health()
    assert report["overall"] == "healthy"
    assert report["sources"][0]["source_name"] == "Example Deals"
    with pytest.raises(LookupError):
        service.source_health(99)


def test_overall_health_without_sources(service):
    report = service.overall_health()
    assert report["overall"] == "warning"
    assert report["issues"] == ["No active scraping sources configured"]
