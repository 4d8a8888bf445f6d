"""Database helpers around Postgres using SQLAlchemy Core."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .errors import ConflictResolutionError
from .models import (
    CandidateRecord,
    ConflictRecord,
    ConflictStatus,
    FieldDifference,
    RunRecord,
    RunStatus,
    SourceRow,
    StoredDeal,
)
from .schema import metadata
from .time_utils import utcnow

# Fields an automatic update or an accepted conflict may write.
_AMOUNT_COLUMNS = {"reward_amount", "min_pay_in"}
_COUNT_COLUMNS = {"required_direct_debits", "debit_card_transactions"}
_DATE_COLUMNS = {"expiry_date"}
_WRITABLE_COLUMNS = _AMOUNT_COLUMNS | _COUNT_COLUMNS | _DATE_COLUMNS

_DEAL_COLUMNS = """
    id, bank_name, reward_amount, required_direct_debits, min_pay_in,
    debit_card_transactions, expiry_date, source_name, source_url, is_active
"""
_SOURCE_COLUMNS = """
    id, name, url, priority, is_active, scraper_config,
    last_scraped_at, last_scrape_status, last_scrape_deals_found
"""
_RUN_COLUMNS = """
    id, source_id, source_name, started_at, finished_at, status, deals_found,
    deals_added, deals_updated, deals_unchanged, conflicts, defective, errors
"""
_CONFLICT_COLUMNS = """
    id, deal_id, deal_name, source_id, run_id, differences, status,
    created_at, resolved_at, resolved_by
"""


class DealDatabase:
    def __init__(self, dsn: str):
        driver_dsn = _ensure_psycopg_driver(dsn)
        self.engine: Engine = create_engine(driver_dsn, future=True, pool_pre_ping=True)
        self.Session = sessionmaker(self.engine, expire_on_commit=False, future=True)
        self._is_sqlite = self.engine.dialect.name == "sqlite"

    def dispose(self) -> None:
        self.engine.dispose()

    def create_schema(self) -> None:
        metadata.create_all(self.engine)

    # -- deals -----------------------------------------------------------

    def find_entity_by_name(self, name: str) -> Optional[StoredDeal]:
        with self.Session() as session:
            row = session.execute(
                text(f"SELECT {_DEAL_COLUMNS} FROM bank_deals WHERE bank_name = :name"),
                {"name": name},
            ).mappings().first()
            if not row:
                return None
            return self._hydrate_deal(row)

    def insert_record(self, candidate: CandidateRecord, source_name: Optional[str] = None) -> int:
        now = utcnow()
        with self.engine.begin() as conn:
            row = conn.execute(
                text(
                    """
                    INSERT INTO bank_deals (
                        bank_name, reward_amount, required_direct_debits, min_pay_in,
                        debit_card_transactions, expiry_date, source_name, source_url,
                        is_active, created_at, updated_at
                    ) VALUES (
                        :bank_name, :reward_amount, :required_direct_debits, :min_pay_in,
                        :debit_card_transactions, :expiry_date, :source_name, :source_url,
                        :is_active, :now, :now
                    )
                    RETURNING id
                    """
                ),
                self._params(
                    {
                        "bank_name": candidate.name,
                        "reward_amount": candidate.reward_amount,
                        "required_direct_debits": candidate.required_direct_debits,
                        "min_pay_in": candidate.min_pay_in,
                        "debit_card_transactions": candidate.debit_card_transactions,
                        "expiry_date": candidate.expiry_date,
                        "source_name": source_name,
                        "source_url": candidate.source_url,
                        "is_active": True,
                        "now": now,
                    }
                ),
            ).mappings().one()
            return int(row["id"])

    def update_record(
        self, name: str, fields: Dict[str, Any], source_name: Optional[str] = None
    ) -> None:
        unknown = set(fields) - _WRITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update deal columns: {', '.join(sorted(unknown))}")

        params: Dict[str, Any] = {
            column: _coerce_column(column, value) for column, value in fields.items()
        }
        assignments = [f"{column} = :{column}" for column in sorted(params)]
        if source_name is not None:
            assignments.append("source_name = :source_name")
            params["source_name"] = source_name
        assignments.append("updated_at = :updated_at")
        params["updated_at"] = utcnow()
        params["name"] = name

        with self.engine.begin() as conn:
            result = conn.execute(
                text(f"UPDATE bank_deals SET {', '.join(assignments)} WHERE bank_name = :name"),
                self._params(params),
            )
            if result.rowcount == 0:
                raise LookupError(f"Deal '{name}' not found")

    # -- conflicts -------------------------------------------------------

    def create_conflict(self, conflict: ConflictRecord) -> int:
        created_at = conflict.created_at or utcnow()
        with self.engine.begin() as conn:
            row = conn.execute(
                text(
                    """
                    INSERT INTO scraping_conflicts (
                        deal_id, deal_name, source_id, run_id, differences, status, created_at
                    ) VALUES (
                        :deal_id, :deal_name, :source_id, :run_id, :differences, :status, :created_at
                    )
                    RETURNING id
                    """
                ),
                self._params(
                    {
                        "deal_id": conflict.deal_id,
                        "deal_name": conflict.deal_name,
                        "source_id": conflict.source_id,
                        "run_id": conflict.run_id,
                        "differences": json.dumps([diff.to_dict() for diff in conflict.differences]),
                        "status": conflict.status.value,
                        "created_at": created_at,
                    }
                ),
            ).mappings().one()
        conflict.id = int(row["id"])
        conflict.created_at = created_at
        return conflict.id

    def get_conflict(self, conflict_id: int) -> Optional[ConflictRecord]:
        with self.Session() as session:
            row = session.execute(
                text(f"SELECT {_CONFLICT_COLUMNS} FROM scraping_conflicts WHERE id = :id"),
                {"id": conflict_id},
            ).mappings().first()
            if not row:
                return None
            return _hydrate_conflict(row)

    def find_pending_conflict(self, deal_id: int) -> Optional[ConflictRecord]:
        with self.Session() as session:
            row = session.execute(
                text(
                    f"SELECT {_CONFLICT_COLUMNS} FROM scraping_conflicts "
                    "WHERE deal_id = :deal_id AND status = :status "
                    "ORDER BY created_at DESC, id DESC"
                ),
                {"deal_id": deal_id, "status": ConflictStatus.PENDING.value},
            ).mappings().first()
            if not row:
                return None
            return _hydrate_conflict(row)

    def list_conflicts(
        self,
        status: Optional[ConflictStatus] = None,
        source_id: Optional[int] = None,
    ) -> List[ConflictRecord]:
        clauses: List[str] = []
        params: Dict[str, Any] = {}
        if status is not None:
            clauses.append("status = :status")
            params["status"] = ConflictStatus(status).value
        if source_id is not None:
            clauses.append("source_id = :source_id")
            params["source_id"] = source_id
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self.Session() as session:
            rows = session.execute(
                text(
                    f"SELECT {_CONFLICT_COLUMNS} FROM scraping_conflicts {where} "
                    "ORDER BY created_at DESC, id DESC"
                ),
                params,
            ).mappings()
            return [_hydrate_conflict(row) for row in rows]

    def mark_conflict(
        self,
        conflict_id: int,
        status: ConflictStatus,
        resolved_by: Optional[str],
        resolved_at: datetime,
    ) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                text(
                    """
                    UPDATE scraping_conflicts
                    SET status = :status, resolved_by = :resolved_by, resolved_at = :resolved_at
                    WHERE id = :id AND status = :pending
                    """
                ),
                self._params(
                    {
                        "id": conflict_id,
                        "status": status.value,
                        "resolved_by": resolved_by,
                        "resolved_at": resolved_at,
                        "pending": ConflictStatus.PENDING.value,
                    }
                ),
            )
            if result.rowcount == 0:
                current = conn.execute(
                    text("SELECT status FROM scraping_conflicts WHERE id = :id"),
                    {"id": conflict_id},
                ).scalar()
                if current is None:
                    raise LookupError(f"Conflict {conflict_id} not found")
                raise ConflictResolutionError(f"Conflict {conflict_id} is already {current}")

    # -- runs ------------------------------------------------------------

    def write_run_record(self, run: RunRecord) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                text(
                    """
                    INSERT INTO scraping_runs (
                        id, source_id, source_name, started_at, finished_at, status,
                        deals_found, deals_added, deals_updated, deals_unchanged,
                        conflicts, defective, errors
                    ) VALUES (
                        :id, :source_id, :source_name, :started_at, :finished_at, :status,
                        :deals_found, :deals_added, :deals_updated, :deals_unchanged,
                        :conflicts, :defective, :errors
                    )
                    """
                ),
                self._params(
                    {
                        "id": run.id,
                        "source_id": run.source_id,
                        "source_name": run.source_name,
                        "started_at": run.started_at,
                        "finished_at": run.finished_at,
                        "status": run.status.value,
                        "deals_found": run.deals_found,
                        "deals_added": run.deals_added,
                        "deals_updated": run.deals_updated,
                        "deals_unchanged": run.deals_unchanged,
                        "conflicts": run.conflicts,
                        "defective": run.defective,
                        "errors": json.dumps(run.errors),
                    }
                ),
            )

    def list_runs(
        self,
        source_id: Optional[int] = None,
        status: Optional[str] = None,
        started_after: Optional[datetime] = None,
        started_before: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[RunRecord], int]:
        clauses: List[str] = []
        params: Dict[str, Any] = {}
        if source_id is not None:
            clauses.append("source_id = :source_id")
            params["source_id"] = source_id
        if status:
            clauses.append("status = :status")
            params["status"] = RunStatus(status).value
        if started_after is not None:
            clauses.append("started_at >= :started_after")
            params["started_after"] = started_after
        if started_before is not None:
            clauses.append("started_at <= :started_before")
            params["started_before"] = started_before
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        page = max(1, page)
        page_size = max(1, page_size)
        params = self._params(params)

        with self.Session() as session:
            total = session.execute(
                text(f"SELECT COUNT(*) FROM scraping_runs {where}"), params
            ).scalar_one()
            rows = session.execute(
                text(
                    f"SELECT {_RUN_COLUMNS} FROM scraping_runs {where} "
                    "ORDER BY started_at DESC LIMIT :limit OFFSET :offset"
                ),
                {**params, "limit": page_size, "offset": (page - 1) * page_size},
            ).mappings()
            return [_hydrate_run(row) for row in rows], int(total)

    # -- sources ---------------------------------------------------------

    def get_source(self, source_id: int) -> Optional[SourceRow]:
        with self.Session() as session:
            row = session.execute(
                text(f"SELECT {_SOURCE_COLUMNS} FROM scraping_sources WHERE id = :id"),
                {"id": source_id},
            ).mappings().first()
            if not row:
                return None
            return _hydrate_source(row)

    def list_sources(self, active_only: bool = False) -> List[SourceRow]:
        where = "WHERE is_active = :active" if active_only else ""
        with self.Session() as session:
            rows = session.execute(
                text(
                    f"SELECT {_SOURCE_COLUMNS} FROM scraping_sources {where} "
                    "ORDER BY priority DESC, id"
                ),
                {"active": True} if active_only else {},
            ).mappings()
            return [_hydrate_source(row) for row in rows]

    def save_source(self, source: SourceRow) -> SourceRow:
        now = utcnow()
        params = {
            "name": source.name,
            "url": source.url,
            "priority": source.priority,
            "is_active": source.is_active,
            "scraper_config": json.dumps(source.config_tree),
            "now": now,
        }
        with self.engine.begin() as conn:
            if source.id is None:
                row = conn.execute(
                    text(
                        """
                        INSERT INTO scraping_sources (
                            name, url, priority, is_active, scraper_config,
                            last_scrape_deals_found, created_at, updated_at
                        ) VALUES (
                            :name, :url, :priority, :is_active, :scraper_config, 0, :now, :now
                        )
                        RETURNING id
                        """
                    ),
                    self._params(params),
                ).mappings().one()
                source_id = int(row["id"])
            else:
                result = conn.execute(
                    text(
                        """
                        UPDATE scraping_sources
                        SET name = :name, url = :url, priority = :priority,
                            is_active = :is_active, scraper_config = :scraper_config,
                            updated_at = :now
                        WHERE id = :id
                        """
                    ),
                    self._params({**params, "id": source.id}),
                )
                if result.rowcount == 0:
                    raise LookupError(f"Source {source.id} not found")
                source_id = source.id

        saved = self.get_source(source_id)
        if saved is None:
            raise LookupError(f"Source {source_id} not found")
        return saved

    def update_source_summary(
        self, source_id: int, status: str, deals_found: int, timestamp: datetime
    ) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                text(
                    """
                    UPDATE scraping_sources
                    SET last_scraped_at = :timestamp,
                        last_scrape_status = :status,
                        last_scrape_deals_found = :deals_found
                    WHERE id = :id
                    """
                ),
                self._params(
                    {
                        "id": source_id,
                        "status": status,
                        "deals_found": deals_found,
                        "timestamp": timestamp,
                    }
                ),
            )
            if result.rowcount == 0:
                raise LookupError(f"Source {source_id} not found")

    # -- helpers ---------------------------------------------------------

    def _params(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if not self._is_sqlite:
            return params
        # SQLite has no Decimal/date types; keep ISO strings sortable.
        converted: Dict[str, Any] = {}
        for key, value in params.items():
            if isinstance(value, Decimal):
                value = float(value)
            elif isinstance(value, datetime):
                value = value.astimezone(timezone.utc).isoformat()
            elif isinstance(value, date):
                value = value.isoformat()
            converted[key] = value
        return converted

    def _hydrate_deal(self, row) -> StoredDeal:
        return StoredDeal(
            id=int(row["id"]),
            name=row["bank_name"],
            reward_amount=_as_decimal(row["reward_amount"]),
            required_direct_debits=int(row["required_direct_debits"] or 0),
            min_pay_in=_as_decimal(row["min_pay_in"]) or Decimal("0"),
            debit_card_transactions=int(row["debit_card_transactions"] or 0),
            expiry_date=_as_date(row["expiry_date"]),
            source_name=row["source_name"],
            source_url=row["source_url"],
            is_active=bool(row["is_active"]),
        )


def _hydrate_source(row) -> SourceRow:
    return SourceRow(
        id=int(row["id"]),
        name=row["name"],
        url=row["url"],
        priority=int(row["priority"] or 0),
        is_active=bool(row["is_active"]),
        config_tree=_load_json(row["scraper_config"], {}),
        last_scraped_at=_as_datetime(row["last_scraped_at"]),
        last_scrape_status=row["last_scrape_status"],
        last_scrape_deals_found=int(row["last_scrape_deals_found"] or 0),
    )


def _hydrate_run(row) -> RunRecord:
    return RunRecord(
        id=row["id"],
        source_id=int(row["source_id"]),
        source_name=row["source_name"],
        started_at=_as_datetime(row["started_at"]),
        finished_at=_as_datetime(row["finished_at"]),
        status=RunStatus(row["status"]),
        deals_found=int(row["deals_found"]),
        deals_added=int(row["deals_added"]),
        deals_updated=int(row["deals_updated"]),
        deals_unchanged=int(row["deals_unchanged"]),
        conflicts=int(row["conflicts"]),
        defective=int(row["defective"]),
        errors=_load_json(row["errors"], []),
    )


def _hydrate_conflict(row) -> ConflictRecord:
    return ConflictRecord(
        id=int(row["id"]),
        deal_id=int(row["deal_id"]),
        deal_name=row["deal_name"],
        source_id=row["source_id"],
        run_id=row["run_id"],
        differences=[
            FieldDifference(field=item["field"], old=item.get("old"), new=item.get("new"))
            for item in _load_json(row["differences"], [])
        ],
        status=ConflictStatus(row["status"]),
        created_at=_as_datetime(row["created_at"]),
        resolved_at=_as_datetime(row["resolved_at"]),
        resolved_by=row["resolved_by"],
    )


def _coerce_column(column: str, value: Any) -> Any:
    if value is None:
        return None
    if column in _AMOUNT_COLUMNS:
        return _as_decimal(value)
    if column in _COUNT_COLUMNS:
        return int(value)
    if column in _DATE_COLUMNS:
        return _as_date(value)
    return value


def _as_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _as_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if not isinstance(value, datetime):
        value = datetime.fromisoformat(str(value))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _load_json(value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


def _ensure_psycopg_driver(dsn: str) -> str:
    if dsn.startswith("postgresql://") and "+psycopg" not in dsn:
        return dsn.replace("postgresql://", "postgresql+psycopg://", 1)
    if dsn.startswith("postgres://") and "+psycopg" not in dsn:
        return dsn.replace("postgres://", "postgresql+psycopg://", 1)
    return dsn
