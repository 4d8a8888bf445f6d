"""Apply extraction patterns to field fragments and coerce typed values."""

from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal
from functools import lru_cache
from typing import Dict, Optional

from .locator import Container
from .models import (
    FIELD_DEBIT_CARD,
    FIELD_DIRECT_DEBITS,
    FIELD_EXPIRY,
    FIELD_NAME,
    FIELD_PAY_IN,
    FIELD_REQUIREMENTS,
    FIELD_REWARD,
    ExtractionError,
    FieldOutcome,
)
from .numeral import parse_amount, parse_count
from .source_config import ExtractionPatterns

__all__ = [
    "capture",
    "extract_name",
    "extract_amount",
    "extract_optional_amount",
    "extract_count",
    "extract_expiry",
    "extract_fields",
]


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


def capture(pattern: str, text: Optional[str]) -> Optional[str]:
    """Return the first capture group of ``pattern`` in ``text``, if any."""
    if not text:
        return None
    match = _compile(pattern).search(text)
    if not match:
        return None
    value = match.group(1) if match.re.groups else match.group(0)
    if value is None:
        return None
    return value.strip()


def extract_name(text: Optional[str]) -> FieldOutcome:
    if not text:
        return _not_found(FIELD_NAME, "no text at name location")
    return FieldOutcome(field=FIELD_NAME, value=text.strip(), raw=text)


def extract_amount(field: str, text: Optional[str], pattern: str) -> FieldOutcome:
    """Currency amount that must be present."""
    if not text:
        return _not_found(field, "no text at location")
    captured = capture(pattern, text)
    if captured is None:
        return _not_found(field, f"pattern did not match '{_clip(text)}'", raw=text)
    return _coerce_amount(field, captured, text)


def extract_optional_amount(field: str, text: Optional[str], pattern: str) -> FieldOutcome:
    """Currency amount where no match means zero, e.g. a minimum pay-in."""
    captured = capture(pattern, text)
    if captured is None:
        return FieldOutcome(field=field, value=Decimal("0"), raw=text)
    return _coerce_amount(field, captured, text)


def extract_count(field: str, text: Optional[str], pattern: str) -> FieldOutcome:
    """Non-negative count where no match means zero."""
    captured = capture(pattern, text)
    if captured is None:
        return FieldOutcome(field=field, value=0, raw=text)
    try:
        value = parse_count(captured)
    except ValueError as exc:
        return FieldOutcome(
            field=field,
            error=ExtractionError.INVALID_AMOUNT,
            detail=str(exc),
            raw=text,
        )
    return FieldOutcome(field=field, value=value, raw=text)


def extract_expiry(text: Optional[str], patterns: ExtractionPatterns) -> FieldOutcome:
    """Expiry date; no text or no match means the offer has no expiry."""
    captured = capture(patterns.effective_expiry_pattern, text)
    if captured is None:
        return FieldOutcome(field=FIELD_EXPIRY, value=None, raw=text)
    normalized = re.sub(r"\s+", " ", captured)
    try:
        value = datetime.strptime(normalized, patterns.date_format).date()
    except ValueError:
        return FieldOutcome(
            field=FIELD_EXPIRY,
            error=ExtractionError.INVALID_DATE,
            detail=f"'{captured}' does not match layout {patterns.date_layout}",
            raw=text,
        )
    return FieldOutcome(field=FIELD_EXPIRY, value=value, raw=text)


def extract_fields(container: Container, patterns: ExtractionPatterns) -> Dict[str, FieldOutcome]:
    """Attempt every field of a container; one failure never stops the rest."""
    requirements = container.text(FIELD_REQUIREMENTS)
    outcomes = [
        extract_name(container.text(FIELD_NAME)),
        extract_amount(FIELD_REWARD, container.text(FIELD_REWARD), patterns.reward_amount_pattern),
        extract_count(FIELD_DIRECT_DEBITS, requirements, patterns.requirements_count_pattern),
        extract_optional_amount(FIELD_PAY_IN, requirements, patterns.pay_in_pattern),
        extract_count(FIELD_DEBIT_CARD, requirements, patterns.debit_card_pattern),
        extract_expiry(container.text(FIELD_EXPIRY), patterns),
    ]
    return {outcome.field: outcome for outcome in outcomes}


def _coerce_amount(field: str, captured: str, text: Optional[str]) -> FieldOutcome:
    try:
        value = parse_amount(captured)
    except ValueError as exc:
        return FieldOutcome(
            field=field,
            error=ExtractionError.INVALID_AMOUNT,
            detail=str(exc),
            raw=text,
        )
    return FieldOutcome(field=field, value=value, raw=text)


def _not_found(field: str, detail: str, raw: Optional[str] = None) -> FieldOutcome:
    return FieldOutcome(field=field, error=ExtractionError.FIELD_NOT_FOUND, detail=detail, raw=raw)


def _clip(text: str, limit: int = 60) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."
