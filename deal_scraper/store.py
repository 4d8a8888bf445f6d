"""Contract between the engine and the record store."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .models import (
    CandidateRecord,
    ConflictRecord,
    ConflictStatus,
    RunRecord,
    SourceRow,
    StoredDeal,
)


class RecordStore(Protocol):
    """Every call is individually atomic; callers never span transactions."""

    # Deals
    def find_entity_by_name(self, name: str) -> Optional[StoredDeal]: ...

    def insert_record(self, candidate: CandidateRecord, source_name: Optional[str] = None) -> int: ...

    def update_record(
        self, name: str, fields: Dict[str, Any], source_name: Optional[str] = None
    ) -> None: ...

    # Conflicts
    def create_conflict(self, conflict: ConflictRecord) -> int: ...

    def get_conflict(self, conflict_id: int) -> Optional[ConflictRecord]: ...

    def find_pending_conflict(self, deal_id: int) -> Optional[ConflictRecord]: ...

    def list_conflicts(
        self,
        status: Optional[ConflictStatus] = None,
        source_id: Optional[int] = None,
    ) -> List[ConflictRecord]: ...

    def mark_conflict(
        self,
        conflict_id: int,
        status: ConflictStatus,
        resolved_by: Optional[str],
        resolved_at: datetime,
    ) -> None: ...

    # Runs
    def write_run_record(self, run: RunRecord) -> None: ...

    def list_runs(
        self,
        source_id: Optional[int] = None,
        status: Optional[str] = None,
        started_after: Optional[datetime] = None,
        started_before: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[RunRecord], int]: ...

    # Sources
    def get_source(self, source_id: int) -> Optional[SourceRow]: ...

    def list_sources(self, active_only: bool = False) -> List[SourceRow]: ...

    def save_source(self, source: SourceRow) -> SourceRow: ...

    def update_source_summary(
        self, source_id: int, status: str, deals_found: int, timestamp: datetime
    ) -> None: ...
