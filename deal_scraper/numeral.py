"""Helpers for parsing UK formatted amounts and counts."""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

__all__ = ["parse_amount", "parse_count", "quantize_amount"]

_THOUSAND_PATTERN = re.compile(r"[,\u00a0\u202f\s]")
_CURRENCY_PATTERN = re.compile(r"[£$€]")
_PENNY = Decimal("0.01")


def parse_amount(raw: str) -> Decimal:
    """Parse a currency string such as '1,250' or '£1,250.50' into a Decimal.

    Thousands separators and currency symbols are dropped. Negative or
    non-finite values are rejected with ``ValueError``.
    """
    if raw is None:
        raise ValueError("value is required")
    value = raw.strip()
    if not value:
        raise ValueError("value is required")

    normalized = _CURRENCY_PATTERN.sub("", value)
    normalized = _THOUSAND_PATTERN.sub("", normalized)
    if not normalized:
        raise ValueError(f"unable to parse amount from '{raw}'")

    try:
        amount = Decimal(normalized)
    except InvalidOperation as exc:
        raise ValueError(f"unable to parse amount from '{raw}'") from exc

    if not amount.is_finite():
        raise ValueError(f"amount must be finite, got '{raw}'")
    if amount < 0:
        raise ValueError(f"amount must not be negative, got '{raw}'")
    return amount


def parse_count(raw: str) -> int:
    """Parse a captured count such as '2' into a non-negative integer."""
    if raw is None:
        raise ValueError("value is required")
    value = _THOUSAND_PATTERN.sub("", raw)
    if not value.isdigit():
        raise ValueError(f"unable to parse count from '{raw}'")
    return int(value)


def quantize_amount(value: Decimal) -> Decimal:
    return Decimal(value).quantize(_PENNY)
