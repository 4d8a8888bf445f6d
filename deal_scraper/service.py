"""Operator-facing operations over the engine and the record store."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import AppConfig
from .errors import ConflictResolutionError
from .fetcher import Fetcher
from .health import HISTORY_WINDOW, HealthStatus, assess_health, overall_status
from .logging import get_logger
from .models import ConflictRecord, ConflictStatus, RunRecord, RunStatus, SourceRow
from .orchestrator import RunOrchestrator, RunTicket
from .pipeline import DryRunResult, dry_run
from .source_config import parse_source_config
from .store import RecordStore
from .templates import SourceTemplate, all_templates
from .time_utils import today_in, utcnow

logger = get_logger(__name__)

MAX_PAGE_SIZE = 200


class Decision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class DealSyncService:
    def __init__(
        self,
        config: AppConfig,
        store: RecordStore,
        fetcher: Fetcher,
        orchestrator: RunOrchestrator,
    ) -> None:
        self.config = config
        self.store = store
        self.fetcher = fetcher
        self.orchestrator = orchestrator

    # -- configuration ---------------------------------------------------

    def templates(self) -> List[SourceTemplate]:
        return all_templates()

    def test_config(self, url: str, tree: Mapping[str, Any]) -> DryRunResult:
        """Dry run of an unsaved configuration; never touches the store."""
        return dry_run(
            url,
            tree,
            self.fetcher,
            today=today_in(self.config.timezone),
            grace_days=self.config.stale_grace_days,
            default_identity=self.config.http_user_agent,
        )

    def save_source(
        self,
        name: str,
        url: str,
        tree: Mapping[str, Any],
        priority: int = 0,
        is_active: bool = True,
        source_id: Optional[int] = None,
    ) -> SourceRow:
        config = parse_source_config(
            tree,
            name=name,
            url=url,
            priority=priority,
            is_active=is_active,
            source_id=source_id,
            default_identity=self.config.http_user_agent,
        )
        saved = self.store.save_source(
            SourceRow(
                id=source_id,
                name=config.name,
                url=config.url,
                priority=config.priority,
                is_active=config.is_active,
                config_tree=config.to_tree(),
            )
        )
        logger.info("source_saved", source_id=saved.id, name=saved.name)
        return saved

    def list_sources(self, active_only: bool = False) -> List[SourceRow]:
        return self.store.list_sources(active_only=active_only)

    # -- runs ------------------------------------------------------------

    def run_source(self, source_id: int) -> RunTicket:
        return self.orchestrator.run_source(source_id)

    def cancel_run(self, source_id: int) -> bool:
        return self.orchestrator.cancel(source_id)

    def list_runs(
        self,
        source_id: Optional[int] = None,
        status: Optional[str] = None,
        started_after: Optional[datetime] = None,
        started_before: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[RunRecord], int]:
        if status is not None:
            status = RunStatus(status).value
        page_size = min(max(1, page_size), MAX_PAGE_SIZE)
        return self.store.list_runs(
            source_id=source_id,
            status=status,
            started_after=started_after,
            started_before=started_before,
            page=max(1, page),
            page_size=page_size,
        )

    # -- conflicts -------------------------------------------------------

    def list_conflicts(
        self,
        status: Optional[str] = None,
        source_id: Optional[int] = None,
    ) -> List[ConflictRecord]:
        conflict_status = ConflictStatus(status) if status else None
        return self.store.list_conflicts(status=conflict_status, source_id=source_id)

    def resolve_conflict(
        self,
        conflict_id: int,
        decision: str,
        resolved_by: Optional[str] = None,
    ) -> ConflictRecord:
        choice = Decision(decision)
        conflict = self.store.get_conflict(conflict_id)
        if conflict is None:
            raise LookupError(f"Conflict {conflict_id} not found")
        if conflict.status is not ConflictStatus.PENDING:
            raise ConflictResolutionError(
                f"Conflict {conflict_id} is already {conflict.status.value}"
            )

        if choice is Decision.ACCEPT:
            self.store.update_record(
                conflict.deal_name,
                {diff.field: diff.new for diff in conflict.differences},
            )
            new_status = ConflictStatus.ACCEPTED
        else:
            new_status = ConflictStatus.REJECTED

        resolved_at = utcnow()
        self.store.mark_conflict(conflict_id, new_status, resolved_by, resolved_at)
        conflict.status = new_status
        conflict.resolved_at = resolved_at
        conflict.resolved_by = resolved_by
        logger.info(
            "conflict_resolved",
            conflict_id=conflict_id,
            deal=conflict.deal_name,
            decision=choice.value,
            resolved_by=resolved_by,
        )
        return conflict

    # -- health ----------------------------------------------------------

    def source_health(self, source_id: int) -> HealthStatus:
        source = self.store.get_source(source_id)
        if source is None:
            raise LookupError(f"Source {source_id} not found")
        runs, _ = self.store.list_runs(source_id=source_id, page=1, page_size=HISTORY_WINDOW)
        return assess_health(source.id, source.name, runs, utcnow())

    def overall_health(self) -> Dict[str, Any]:
        statuses = [self.source_health(source.id) for source in self.store.list_sources(active_only=True)]
        issues = [
            f"{status.source_name}: {', '.join(status.issues)}" for status in statuses if status.issues
        ]
        if not statuses:
            issues.append("No active scraping sources configured")
        return {
            "overall": overall_status(statuses),
            "sources": [status.to_dict() for status in statuses],
            "issues": issues,
        }
