"""Domain models for scraped bank deals, runs and conflicts."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

FIELD_NAME = "name"
FIELD_REWARD = "rewardAmount"
FIELD_REQUIREMENTS = "requirements"
FIELD_EXPIRY = "expiry"

# Derived from the requirements fragment.
FIELD_DIRECT_DEBITS = "directDebits"
FIELD_PAY_IN = "payIn"
FIELD_DEBIT_CARD = "debitCardTransactions"

MANDATORY_FIELDS = (FIELD_NAME, FIELD_REWARD)


class ExtractionError(str, Enum):
    FIELD_NOT_FOUND = "FieldNotFound"
    INVALID_AMOUNT = "InvalidAmount"
    INVALID_DATE = "InvalidDate"


class ValidationError(str, Enum):
    MISSING_MANDATORY_FIELD = "MissingMandatoryField"
    NON_POSITIVE_AMOUNT = "NonPositiveAmount"
    STALE_EXPIRY = "StaleExpiry"


class RunState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    LOCATING = "locating"
    EXTRACTING = "extracting"
    RECONCILING = "reconciling"
    SUCCEEDED = "succeeded"
    PARTIALLY_SUCCEEDED = "partially_succeeded"
    FAILED = "failed"


class RunStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


TERMINAL_STATUS = {
    RunState.SUCCEEDED: RunStatus.SUCCESS,
    RunState.PARTIALLY_SUCCEEDED: RunStatus.PARTIAL,
    RunState.FAILED: RunStatus.FAILED,
}


class Outcome(str, Enum):
    NEW = "new"
    UNCHANGED = "unchanged"
    UPDATED = "updated"
    CONFLICT = "conflict"


class ConflictStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(slots=True)
class FieldOutcome:
    """Either a coerced value or the reason the field could not be read."""

    field: str
    value: Any = None
    error: Optional[ExtractionError] = None
    detail: Optional[str] = None
    raw: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def describe(self) -> str:
        if self.ok:
            return f"{self.field}: ok"
        suffix = f" ({self.detail})" if self.detail else ""
        return f"{self.field}: {self.error.value}{suffix}"


@dataclass(slots=True)
class ValidationIssue:
    code: ValidationError
    field: Optional[str] = None
    detail: Optional[str] = None

    def __str__(self) -> str:
        text = self.code.value
        if self.field:
            text = f"{text}: {self.field}"
        if self.detail:
            text = f"{text} ({self.detail})"
        return text


@dataclass(slots=True)
class CandidateRecord:
    """One container's extracted deal, alive only for the duration of a run."""

    container_index: int
    source_url: str
    name: Optional[str] = None
    reward_amount: Optional[Decimal] = None
    required_direct_debits: int = 0
    min_pay_in: Decimal = Decimal("0")
    debit_card_transactions: int = 0
    expiry_date: Optional[date] = None
    fields: Dict[str, FieldOutcome] = field(default_factory=dict)
    issues: List[ValidationIssue] = field(default_factory=list)
    raw: Dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def is_usable(self) -> bool:
        return not self.issues

    def diagnostics(self) -> List[str]:
        return [str(issue) for issue in self.issues]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "container_index": self.container_index,
            "name": self.name,
            "reward_amount": _decimal_str(self.reward_amount),
            "required_direct_debits": self.required_direct_debits,
            "min_pay_in": _decimal_str(self.min_pay_in),
            "debit_card_transactions": self.debit_card_transactions,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "source_url": self.source_url,
            "usable": self.is_usable,
            "issues": self.diagnostics(),
            "fields": {name: outcome.describe() for name, outcome in self.fields.items()},
            "raw": dict(self.raw),
        }


@dataclass(slots=True)
class StoredDeal:
    id: int
    name: str
    reward_amount: Decimal
    required_direct_debits: int = 0
    min_pay_in: Decimal = Decimal("0")
    debit_card_transactions: int = 0
    expiry_date: Optional[date] = None
    source_name: Optional[str] = None
    source_url: Optional[str] = None
    is_active: bool = True


@dataclass(slots=True)
class FieldDifference:
    field: str
    old: Any
    new: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "old": _jsonable(self.old), "new": _jsonable(self.new)}


@dataclass(slots=True)
class ConflictRecord:
    deal_id: int
    deal_name: str
    differences: List[FieldDifference]
    source_id: Optional[int] = None
    run_id: Optional[str] = None
    status: ConflictStatus = ConflictStatus.PENDING
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "deal_id": self.deal_id,
            "deal_name": self.deal_name,
            "source_id": self.source_id,
            "run_id": self.run_id,
            "status": self.status.value,
            "differences": [diff.to_dict() for diff in self.differences],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
        }


@dataclass(slots=True)
class RunRecord:
    """Audit entry for one execution attempt of a source."""

    source_id: int
    source_name: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    status: RunStatus = RunStatus.FAILED
    deals_found: int = 0
    deals_added: int = 0
    deals_updated: int = 0
    deals_unchanged: int = 0
    conflicts: int = 0
    defective: int = 0
    errors: List[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "source_name": self.source_name,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
            "status": self.status.value,
            "deals_found": self.deals_found,
            "deals_added": self.deals_added,
            "deals_updated": self.deals_updated,
            "deals_unchanged": self.deals_unchanged,
            "conflicts": self.conflicts,
            "defective": self.defective,
            "errors": list(self.errors),
        }


@dataclass(slots=True)
class SourceRow:
    """A scraping source as stored, with its configuration tree still untyped."""

    id: int
    name: str
    url: str
    priority: int = 0
    is_active: bool = True
    config_tree: Dict[str, Any] = field(default_factory=dict)
    last_scraped_at: Optional[datetime] = None
    last_scrape_status: Optional[str] = None
    last_scrape_deals_found: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "priority": self.priority,
            "is_active": self.is_active,
            "scraper_config": self.config_tree,
            "last_scraped_at": self.last_scraped_at.isoformat() if self.last_scraped_at else None,
            "last_scrape_status": self.last_scrape_status,
            "last_scrape_deals_found": self.last_scrape_deals_found,
        }


def _decimal_str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value
