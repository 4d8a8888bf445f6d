from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from deal_scraper.db import DealDatabase, _ensure_psycopg_driver
from deal_scraper.errors import ConflictResolutionError
from deal_scraper.models import (
    CandidateRecord,
    ConflictRecord,
    ConflictStatus,
    FieldDifference,
    RunRecord,
    RunStatus,
    SourceRow,
)


@pytest.fixture()
def sqlite_db(tmp_path):
    db_path = tmp_path / "test.db"
    database = DealDatabase(f"sqlite:///{db_path}")
    database.create_schema()
    yield database
    database.dispose()


def _candidate(**overrides):
    values = dict(
        container_index=0,
        source_url="https://deals.example.co.uk/switching",
        name="Acme Bank",
        reward_amount=Decimal("150"),
        required_direct_debits=2,
        min_pay_in=Decimal("1000"),
        debit_card_transactions=5,
        expiry_date=date(2099, 12, 31),
    )
    values.update(overrides)
    return CandidateRecord(**values)


def test_insert_find_and_update_deal(sqlite_db):
    deal_id = sqlite_db.insert_record(_candidate(), source_name="Example")

    stored = sqlite_db.find_entity_by_name("Acme Bank")
    assert stored is not None
    assert stored.id == deal_id
    # SQLite may return as float, compare with tolerance
    assert abs(float(stored.reward_amount) - 150.0) < 0.01
    assert stored.required_direct_debits == 2
    assert stored.expiry_date == date(2099, 12, 31)
    assert stored.source_name == "Example"

    sqlite_db.update_record("Acme Bank", {"expiry_date": "2100-01-31", "reward_amount": "175"})
    updated = sqlite_db.find_entity_by_name("Acme Bank")
    assert updated.expiry_date == date(2100, 1, 31)
    assert abs(float(updated.reward_amount) - 175.0) < 0.01

    assert sqlite_db.find_entity_by_name("acme bank") is None


def test_update_rejects_unknown_deals_and_columns(sqlite_db):
    with pytest.raises(LookupError):
        sqlite_db.update_record("Nobody Bank", {"reward_amount": Decimal("10")})
    with pytest.raises(ValueError):
        sqlite_db.update_record("Acme Bank", {"bank_name": "Renamed"})


def test_conflict_lifecycle(sqlite_db):
    deal_id = sqlite_db.insert_record(_candidate())
    conflict = ConflictRecord(
        deal_id=deal_id,
        deal_name="Acme Bank",
        differences=[FieldDifference(field="reward_amount", old=Decimal("150"), new=Decimal("200"))],
        source_id=1,
        run_id="run-1",
    )
    conflict_id = sqlite_db.create_conflict(conflict)

    loaded = sqlite_db.get_conflict(conflict_id)
    assert loaded.status is ConflictStatus.PENDING
    assert loaded.run_id == "run-1"
    assert loaded.differences[0].field == "reward_amount"
    assert loaded.differences[0].new == "200"
    assert sqlite_db.find_pending_conflict(deal_id).id == conflict_id

    resolved_at = datetime(2024, 6, 2, 12, 0, tzinfo=timezone.utc)
    sqlite_db.mark_conflict(conflict_id, ConflictStatus.REJECTED, "ops@example.com", resolved_at)
    assert sqlite_db.find_pending_conflict(deal_id) is None

    assert sqlite_db.list_conflicts(status=ConflictStatus.PENDING) == []
    rejected = sqlite_db.list_conflicts(status=ConflictStatus.REJECTED, source_id=1)
    assert [item.id for item in rejected] == [conflict_id]
    assert rejected[0].resolved_by == "ops@example.com"
    assert rejected[0].resolved_at == resolved_at

    with pytest.raises(LookupError):
        sqlite_db.mark_conflict(999, ConflictStatus.ACCEPTED, None, resolved_at)


def test_conflict_cannot_be_marked_twice(sqlite_db):
    deal_id = sqlite_db.insert_record(_candidate())
    conflict_id = sqlite_db.create_conflict(
        ConflictRecord(
            deal_id=deal_id,
            deal_name="Acme Bank",
            differences=[FieldDifference(field="reward_amount", old=Decimal("150"), new=Decimal("200"))],
        )
    )
    resolved_at = datetime(2024, 6, 2, 12, 0, tzinfo=timezone.utc)
    sqlite_db.mark_conflict(conflict_id, ConflictStatus.ACCEPTED, "first", resolved_at)

    with pytest.raises(ConflictResolutionError):
        sqlite_db.mark_conflict(conflict_id, ConflictStatus.REJECTED, "second", resolved_at)
    assert sqlite_db.get_conflict(conflict_id).resolved_by == "first"


def test_run_records_are_filtered_and_paged(sqlite_db):
    base = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)
    for offset, status in enumerate([RunStatus.SUCCESS, RunStatus.FAILED, RunStatus.PARTIAL]):
        started = base + timedelta(hours=offset)
        sqlite_db.write_run_record(
            RunRecord(
                source_id=1,
                source_name="Example",
                started_at=started,
                finished_at=started + timedelta(seconds=5),
                status=status,
                deals_found=offset,
                errors=["boom"] if status is RunStatus.FAILED else [],
            )
        )

    runs, total = sqlite_db.list_runs(source_id=1, page=1, page_size=2)
    assert total == 3
    assert [run.status for run in runs] == [RunStatus.PARTIAL, RunStatus.FAILED]
    assert runs[1].errors == ["boom"]
    assert runs[0].duration_seconds == 5.0

    failed, failed_total = sqlite_db.list_runs(status="failed")
    assert failed_total == 1
    assert failed[0].deals_found == 1

    recent, recent_total = sqlite_db.list_runs(started_after=base + timedelta(minutes=30))
    assert recent_total == 2


def test_sources_are_saved_and_summarised(sqlite_db):
    saved = sqlite_db.save_source(
        SourceRow(
            id=None,
            name="Example",
            url="https://deals.example.co.uk/switching",
            priority=3,
            config_tree={"locationPatterns": {"container": ".deal-item"}},
        )
    )
    assert saved.id is not None
    assert saved.config_tree["locationPatterns"]["container"] == ".deal-item"

    saved.is_active = False
    sqlite_db.save_source(saved)
    assert sqlite_db.list_sources(active_only=True) == []
    assert [source.id for source in sqlite_db.list_sources()] == [saved.id]

    finished = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)
    sqlite_db.update_source_summary(saved.id, "partial", 4, finished)
    reloaded = sqlite_db.get_source(saved.id)
    assert reloaded.last_scrape_status == "partial"
    assert reloaded.last_scrape_deals_found == 4
    assert reloaded.last_scraped_at == finished

    with pytest.raises(LookupError):
        sqlite_db.update_source_summary(999, "failed", 0, finished)


def test_postgres_dsn_uses_psycopg_driver():
    assert _ensure_psycopg_driver("postgresql://u:p@db/deals") == "postgresql+psycopg://u:p@db/deals"
    assert _ensure_psycopg_driver("postgres://u:p@db/deals") == "postgresql+psycopg://u:p@db/deals"
    assert _ensure_psycopg_driver("sqlite:///deals.db") == "sqlite:///deals.db"
