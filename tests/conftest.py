from __future__ import annotations

import copy
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

from deal_scraper.errors import ConflictResolutionError
from deal_scraper.fetcher import Fetcher
from deal_scraper.models import (
    CandidateRecord,
    ConflictRecord,
    ConflictStatus,
    RunRecord,
    SourceRow,
    StoredDeal,
)
from deal_scraper.templates import template_config

FIXTURES = Path(__file__).parent / "fixtures"
SOURCE_URL = "https://deals.example.co.uk/switching"


class FakeStore:
    """In-memory record store that remembers every call made to it."""

    def __init__(self) -> None:
        self.deals: Dict[str, StoredDeal] = {}
        self.conflicts: Dict[int, ConflictRecord] = {}
        self.runs: List[RunRecord] = []
        self.sources: Dict[int, SourceRow] = {}
        self.calls: List[str] = []
        self.fail_summary = False

    def add_source(self, tree: Dict[str, Any], name: str = "Example Deals", url: str = SOURCE_URL) -> SourceRow:
        source = SourceRow(id=len(self.sources) + 1, name=name, url=url, config_tree=tree)
        self.sources[source.id] = source
        return source

    def add_deal(self, name: str, reward_amount: str, **fields: Any) -> StoredDeal:
        deal = StoredDeal(
            id=len(self.deals) + 1,
            name=name,
            reward_amount=Decimal(reward_amount),
            **fields,
        )
        self.deals[name] = deal
        return deal

    def find_entity_by_name(self, name: str) -> Optional[StoredDeal]:
        self.calls.append("find_entity_by_name")
        return self.deals.get(name)

    def insert_record(self, candidate: CandidateRecord, source_name: Optional[str] = None) -> int:
        self.calls.append("insert_record")
        deal = StoredDeal(
            id=len(self.deals) + 1,
            name=candidate.name,
            reward_amount=candidate.reward_amount,
            required_direct_debits=candidate.required_direct_debits,
            min_pay_in=candidate.min_pay_in,
            debit_card_transactions=candidate.debit_card_transactions,
            expiry_date=candidate.expiry_date,
            source_name=source_name,
            source_url=candidate.source_url,
        )
        self.deals[deal.name] = deal
        return deal.id

    def update_record(self, name: str, fields: Dict[str, Any], source_name: Optional[str] = None) -> None:
        self.calls.append("update_record")
        deal = self.deals.get(name)
        if deal is None:
            raise LookupError(f"Deal '{name}' not found")
        for key, value in fields.items():
            setattr(deal, key, value)
        if source_name is not None:
            deal.source_name = source_name

    def create_conflict(self, conflict: ConflictRecord) -> int:
        self.calls.append("create_conflict")
        conflict.id = len(self.conflicts) + 1
        conflict.created_at = conflict.created_at or datetime(2024, 6, 1, 9, 0)
        self.conflicts[conflict.id] = conflict
        return conflict.id

    def get_conflict(self, conflict_id: int) -> Optional[ConflictRecord]:
        self.calls.append("get_conflict")
        conflict = self.conflicts.get(conflict_id)
        return copy.deepcopy(conflict) if conflict else None

    def find_pending_conflict(self, deal_id: int) -> Optional[ConflictRecord]:
        self.calls.append("find_pending_conflict")
        pending = [
            conflict
            for conflict in self.conflicts.values()
            if conflict.deal_id == deal_id and conflict.status is ConflictStatus.PENDING
        ]
        return copy.deepcopy(pending[-1]) if pending else None

    def list_conflicts(
        self,
        status: Optional[ConflictStatus] = None,
        source_id: Optional[int] = None,
    ) -> List[ConflictRecord]:
        self.calls.append("list_conflicts")
        return [
            conflict
            for conflict in self.conflicts.values()
            if (status is None or conflict.status is status)
            and (source_id is None or conflict.source_id == source_id)
        ]

    def mark_conflict(
        self,
        conflict_id: int,
        status: ConflictStatus,
        resolved_by: Optional[str],
        resolved_at: datetime,
    ) -> None:
        self.calls.append("mark_conflict")
        conflict = self.conflicts[conflict_id]
        if conflict.status is not ConflictStatus.PENDING:
            raise ConflictResolutionError(f"Conflict {conflict_id} is already {conflict.status.value}")
        conflict.status = status
        conflict.resolved_by = resolved_by
        conflict.resolved_at = resolved_at

    def write_run_record(self, run: RunRecord) -> None:
        self.calls.append("write_run_record")
        self.runs.append(run)

    def list_runs(
        self,
        source_id: Optional[int] = None,
        status: Optional[str] = None,
        started_after: Optional[datetime] = None,
        started_before: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[RunRecord], int]:
        self.calls.append("list_runs")
        runs = [
            run
            for run in self.runs
            if (source_id is None or run.source_id == source_id)
            and (status is None or run.status.value == status)
            and (started_after is None or run.started_at >= started_after)
            and (started_before is None or run.started_at <= started_before)
        ]
        runs.sort(key=lambda run: run.started_at, reverse=True)
        offset = (page - 1) * page_size
        return runs[offset : offset + page_size], len(runs)

    def get_source(self, source_id: int) -> Optional[SourceRow]:
        self.calls.append("get_source")
        return self.sources.get(source_id)

    def list_sources(self, active_only: bool = False) -> List[SourceRow]:
        self.calls.append("list_sources")
        return [source for source in self.sources.values() if source.is_active or not active_only]

    def save_source(self, source: SourceRow) -> SourceRow:
        self.calls.append("save_source")
        if source.id is None:
            source.id = len(self.sources) + 1
        self.sources[source.id] = source
        return source

    def update_source_summary(self, source_id: int, status: str, deals_found: int, timestamp: datetime) -> None:
        self.calls.append("update_source_summary")
        if self.fail_summary:
            raise RuntimeError("summary table is locked")
        source = self.sources[source_id]
        source.last_scrape_status = status
        source.last_scrape_deals_found = deals_found
        source.last_scraped_at = timestamp


@pytest.fixture()
def offers_html() -> str:
    return (FIXTURES / "offers.html").read_text(encoding="utf-8")


@pytest.fixture()
def source_tree() -> Dict[str, Any]:
    tree = template_config("generic")
    tree["options"]["retryAttempts"] = 2
    return tree


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
def today() -> date:
    return date(2024, 6, 1)


def make_fetcher(handler) -> Fetcher:
    return Fetcher(transport=httpx.MockTransport(handler), sleep=lambda seconds: None)


def html_handler(html: str, calls: Optional[List[httpx.Request]] = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(200, text=html, headers={"Content-Type": "text/html; charset=utf-8"})

    return handler
