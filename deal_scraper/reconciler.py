"""Compare extracted candidates with stored deals and decide what to write."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, List, Optional

from .logging import get_logger
from .models import (
    CandidateRecord,
    ConflictRecord,
    FieldDifference,
    Outcome,
    StoredDeal,
)
from .numeral import quantize_amount
from .store import RecordStore

logger = get_logger(__name__)

REWARD_AMOUNT = "reward_amount"

# Attribute names shared by StoredDeal and CandidateRecord.
COMPARED_FIELDS = (
    REWARD_AMOUNT,
    "required_direct_debits",
    "min_pay_in",
    "debit_card_transactions",
    "expiry_date",
)


@dataclass(slots=True)
class Reconciliation:
    outcome: Outcome
    differences: List[FieldDifference] = field(default_factory=list)
    stored: Optional[StoredDeal] = None


def diff_fields(candidate: CandidateRecord, stored: StoredDeal) -> List[FieldDifference]:
    differences: List[FieldDifference] = []
    for name in COMPARED_FIELDS:
        old = getattr(stored, name)
        new = getattr(candidate, name)
        if _normalize(old) != _normalize(new):
            differences.append(FieldDifference(field=name, old=old, new=new))
    return differences


def same_differences(left: List[FieldDifference], right: List[FieldDifference]) -> bool:
    """Compare differences in their persisted form."""
    return [diff.to_dict() for diff in left] == [diff.to_dict() for diff in right]


def auto_accept_policy(differences: List[FieldDifference]) -> bool:
    """True when the differences may be written without operator review.

    Only a single changed field is accepted, and never the reward amount:
    a changed payout must always be confirmed by an operator.
    """
    if len(differences) != 1:
        return False
    return differences[0].field != REWARD_AMOUNT


def reconcile(candidate: CandidateRecord, stored: Optional[StoredDeal]) -> Reconciliation:
    if stored is None:
        return Reconciliation(outcome=Outcome.NEW)

    differences = diff_fields(candidate, stored)
    if not differences:
        return Reconciliation(outcome=Outcome.UNCHANGED, stored=stored)
    if auto_accept_policy(differences):
        return Reconciliation(outcome=Outcome.UPDATED, differences=differences, stored=stored)
    return Reconciliation(outcome=Outcome.CONFLICT, differences=differences, stored=stored)


def apply_reconciliation(
    store: RecordStore,
    candidate: CandidateRecord,
    source_id: Optional[int] = None,
    source_name: Optional[str] = None,
    run_id: Optional[str] = None,
) -> Reconciliation:
    """Look the candidate up, classify it and perform the matching write."""
    stored = store.find_entity_by_name(candidate.name)
    result = reconcile(candidate, stored)

    if result.outcome is Outcome.NEW:
        store.insert_record(candidate, source_name=source_name)
    elif result.outcome is Outcome.UPDATED:
        store.update_record(
            candidate.name,
            {diff.field: diff.new for diff in result.differences},
            source_name=source_name,
        )
    elif result.outcome is Outcome.CONFLICT:
        pending = store.find_pending_conflict(stored.id)
        if pending is not None and same_differences(pending.differences, result.differences):
            logger.info("reconcile_conflict_pending", deal=candidate.name, conflict_id=pending.id)
        else:
            store.create_conflict(
                ConflictRecord(
                    deal_id=stored.id,
                    deal_name=stored.name,
                    differences=result.differences,
                    source_id=source_id,
                    run_id=run_id,
                )
            )
            logger.warning(
                "reconcile_conflict",
                deal=candidate.name,
                fields=[diff.field for diff in result.differences],
            )

    logger.info("reconciled", deal=candidate.name, outcome=result.outcome.value)
    return result


def _normalize(value: Any) -> Any:
    if isinstance(value, Decimal):
        return quantize_amount(value)
    if isinstance(value, float):
        return quantize_amount(Decimal(str(value)))
    return value
