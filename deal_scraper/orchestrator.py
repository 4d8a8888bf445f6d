"""Sequence one source run: fetch, locate, extract, reconcile, record."""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, List, Optional, Set

from .config import DEFAULT_USER_AGENT
from .errors import FetchError, SourceConfigError
from .fetcher import Fetcher
from .locator import locate
from .logging import get_logger, run_context
from .models import (
    TERMINAL_STATUS,
    Outcome,
    RunRecord,
    RunState,
    SourceRow,
)
from .pipeline import assemble_candidates
from .reconciler import apply_reconciliation
from .source_config import SourceConfig, load_source_config
from .store import RecordStore
from .time_utils import utcnow

logger = get_logger(__name__)

ALREADY_RUNNING = "already_running"
CANCELLED = "cancelled"


class RunCancelled(Exception):
    pass


@dataclass(slots=True)
class RunTicket:
    accepted: bool
    source_id: int
    reason: Optional[str] = None
    future: Optional[Future] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"accepted": self.accepted, "source_id": self.source_id}
        if self.reason:
            payload["reason"] = self.reason
        return payload


class RunGuard:
    """In-process "is running" flags, one per source."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._running: Set[int] = set()

    def acquire(self, source_id: int) -> bool:
        with self._lock:
            if source_id in self._running:
                return False
            self._running.add(source_id)
            return True

    def release(self, source_id: int) -> None:
        with self._lock:
            self._running.discard(source_id)

    def is_running(self, source_id: int) -> bool:
        with self._lock:
            return source_id in self._running


class RunOrchestrator:
    def __init__(
        self,
        store: RecordStore,
        fetcher: Fetcher,
        today: Callable[[], date],
        grace_days: int = 0,
        default_identity: str = DEFAULT_USER_AGENT,
        max_workers: int = 4,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.today = today
        self.grace_days = grace_days
        self.default_identity = default_identity
        self.guard = RunGuard()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="source-run")
        self._cancel_events: Dict[int, threading.Event] = {}
        self._events_lock = threading.Lock()

    def close(self) -> None:
        self._executor.shutdown(wait=True, cancel_futures=True)

    def run_source(self, source_id: int) -> RunTicket:
        """Start a run in the background unless one is already in progress."""
        source = self.store.get_source(source_id)
        if source is None:
            raise LookupError(f"Source {source_id} not found")

        if not self.guard.acquire(source_id):
            logger.info("run_rejected", source_id=source_id, reason=ALREADY_RUNNING)
            return RunTicket(accepted=False, source_id=source_id, reason=ALREADY_RUNNING)

        cancel_event = threading.Event()
        with self._events_lock:
            self._cancel_events[source_id] = cancel_event
        try:
            future = self._executor.submit(self._run_guarded, source, cancel_event)
        except Exception:
            self._forget(source_id)
            raise
        return RunTicket(accepted=True, source_id=source_id, future=future)

    def run_all_active(self) -> List[RunTicket]:
        tickets = []
        for source in self.store.list_sources(active_only=True):
            tickets.append(self.run_source(source.id))
        return tickets

    def cancel(self, source_id: int) -> bool:
        with self._events_lock:
            event = self._cancel_events.get(source_id)
        if event is None:
            return False
        event.set()
        logger.info("run_cancel_requested", source_id=source_id)
        return True

    def is_running(self, source_id: int) -> bool:
        return self.guard.is_running(source_id)

    def _run_guarded(self, source: SourceRow, cancel_event: threading.Event) -> RunRecord:
        try:
            return self.execute(source, cancel_event)
        finally:
            self._forget(source.id)

    def _forget(self, source_id: int) -> None:
        with self._events_lock:
            self._cancel_events.pop(source_id, None)
        self.guard.release(source_id)

    def execute(self, source: SourceRow, cancel_event: Optional[threading.Event] = None) -> RunRecord:
        """Run the full pipeline for one source synchronously and record it."""
        run = RunRecord(source_id=source.id, source_name=source.name, started_at=utcnow())
        cancel_event = cancel_event or threading.Event()

        with run_context(run.id, source.id):
            state = RunState.IDLE
            try:
                state = self._pipeline(source, run, cancel_event)
            except RunCancelled:
                run.errors.append(CANCELLED)
                state = RunState.FAILED
            except SourceConfigError as exc:
                run.errors.append(exc.describe())
                state = RunState.FAILED
            except FetchError as exc:
                run.errors.append(exc.describe())
                state = RunState.FAILED
            except Exception as exc:
                logger.exception("run_crashed")
                run.errors.append(f"{exc.__class__.__name__}: {exc}")
                state = RunState.FAILED
            finally:
                self._finalize(run, state)
        return run

    def _pipeline(self, source: SourceRow, run: RunRecord, cancel_event: threading.Event) -> RunState:
        config: SourceConfig = load_source_config(source, default_identity=self.default_identity)

        self._checkpoint(cancel_event, RunState.FETCHING)
        html = self.fetcher.fetch(config.url, config.options)

        self._checkpoint(cancel_event, RunState.LOCATING)
        containers = locate(html, config.location)

        self._checkpoint(cancel_event, RunState.EXTRACTING)
        report = assemble_candidates(containers, config, self.today(), self.grace_days)
        run.deals_found = len(report.usable)
        run.defective = len(report.defective)
        run.errors.extend(report.problems(config.location.container))

        self._checkpoint(cancel_event, RunState.RECONCILING)
        failed_writes = 0
        for candidate in report.usable:
            try:
                result = apply_reconciliation(
                    self.store,
                    candidate,
                    source_id=source.id,
                    source_name=source.name,
                    run_id=run.id,
                )
            except Exception as exc:
                logger.exception("reconcile_failed", deal=candidate.name)
                run.errors.append(f"{candidate.name}: {exc.__class__.__name__}: {exc}")
                failed_writes += 1
                continue
            if result.outcome is Outcome.NEW:
                run.deals_added += 1
            elif result.outcome is Outcome.UPDATED:
                run.deals_updated += 1
            elif result.outcome is Outcome.UNCHANGED:
                run.deals_unchanged += 1
            else:
                run.conflicts += 1

        if not report.usable:
            run.errors.append("No usable deals extracted")
            return RunState.FAILED
        if run.defective or run.conflicts or failed_writes:
            return RunState.PARTIALLY_SUCCEEDED
        return RunState.SUCCEEDED

    def _checkpoint(self, cancel_event: threading.Event, next_state: RunState) -> None:
        if cancel_event.is_set():
            raise RunCancelled()
        logger.info("run_state", state=next_state.value)

    def _finalize(self, run: RunRecord, state: RunState) -> None:
        run.status = TERMINAL_STATUS.get(state, TERMINAL_STATUS[RunState.FAILED])
        run.finished_at = utcnow()
        logger.info(
            "run_finished",
            state=state.value,
            status=run.status.value,
            deals_found=run.deals_found,
            added=run.deals_added,
            updated=run.deals_updated,
            conflicts=run.conflicts,
            defective=run.defective,
            errors=len(run.errors),
        )
        self.store.write_run_record(run)
        try:
            self.store.update_source_summary(
                run.source_id, run.status.value, run.deals_found, run.finished_at
            )
        except Exception as exc:
            logger.error(
                "source_summary_update_failed",
                status=run.status.value,
                error=str(exc),
            )
