"""Assemble field outcomes into candidate records and validate them."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Dict, List

from .locator import Container
from .models import (
    FIELD_DEBIT_CARD,
    FIELD_DIRECT_DEBITS,
    FIELD_EXPIRY,
    FIELD_NAME,
    FIELD_PAY_IN,
    FIELD_REWARD,
    MANDATORY_FIELDS,
    CandidateRecord,
    FieldOutcome,
    ValidationError,
    ValidationIssue,
)


def assemble(
    container: Container,
    outcomes: Dict[str, FieldOutcome],
    source_url: str,
    today: date,
    grace_days: int = 0,
) -> CandidateRecord:
    """Build a candidate from one container's outcomes and attach its issues.

    A candidate with any issue is defective; defective candidates are still
    returned so their diagnostics reach the operator. Optional fields that
    fail to coerce fall back to their defaults without an issue.
    """
    candidate = CandidateRecord(
        container_index=container.index,
        source_url=source_url,
        fields=dict(outcomes),
        raw=dict(container.fields),
    )

    for name in MANDATORY_FIELDS:
        outcome = outcomes.get(name)
        if outcome is None or not outcome.ok:
            candidate.issues.append(
                ValidationIssue(
                    code=ValidationError.MISSING_MANDATORY_FIELD,
                    field=name,
                    detail=outcome.describe() if outcome else None,
                )
            )

    # Failed optional fields stay in candidate.fields as diagnostics only.
    candidate.name = _value(outcomes, FIELD_NAME)
    candidate.reward_amount = _value(outcomes, FIELD_REWARD)
    candidate.required_direct_debits = _value(outcomes, FIELD_DIRECT_DEBITS, 0)
    candidate.min_pay_in = _value(outcomes, FIELD_PAY_IN, candidate.min_pay_in)
    candidate.debit_card_transactions = _value(outcomes, FIELD_DEBIT_CARD, 0)
    candidate.expiry_date = _value(outcomes, FIELD_EXPIRY)

    if candidate.name is not None and candidate.reward_amount is not None:
        candidate.issues.extend(secondary_issues(candidate, today, grace_days))
    return candidate


def secondary_issues(candidate: CandidateRecord, today: date, grace_days: int) -> List[ValidationIssue]:
    """Sanity rules for a structurally complete candidate."""
    issues: List[ValidationIssue] = []
    if candidate.reward_amount is None or candidate.reward_amount <= 0:
        issues.append(
            ValidationIssue(
                code=ValidationError.NON_POSITIVE_AMOUNT,
                field=FIELD_REWARD,
                detail=f"reward amount is {candidate.reward_amount}",
            )
        )
    if candidate.expiry_date is not None:
        cutoff = today - timedelta(days=grace_days)
        if candidate.expiry_date < cutoff:
            issues.append(
                ValidationIssue(
                    code=ValidationError.STALE_EXPIRY,
                    field=FIELD_EXPIRY,
                    detail=f"expired {candidate.expiry_date.isoformat()}",
                )
            )
    return issues


def _value(outcomes: Dict[str, FieldOutcome], name: str, default=None):
    outcome = outcomes.get(name)
    if outcome is None or not outcome.ok or outcome.value is None:
        return default
    return outcome.value
