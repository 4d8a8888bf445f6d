"""Time helpers for run bookkeeping and expiry layouts."""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

import dateparser

__all__ = [
    "utcnow",
    "today_in",
    "layout_to_strftime",
    "layout_to_regex",
    "has_date_directive",
    "parse_date_bound",
]

_LAYOUT_TOKENS = re.compile(r"YYYY|YY|MMMM|MMM|MM|M|DD|D")

_STRFTIME = {
    "YYYY": "%Y",
    "YY": "%y",
    "MMMM": "%B",
    "MMM": "%b",
    "MM": "%m",
    "M": "%m",
    "DD": "%d",
    "D": "%d",
}

_DIRECTIVE_REGEX = {
    "%Y": r"\d{4}",
    "%y": r"\d{2}",
    "%B": r"[A-Za-z]+",
    "%b": r"[A-Za-z]{3}",
    "%m": r"\d{1,2}",
    "%d": r"\d{1,2}",
    "%j": r"\d{1,3}",
    "%A": r"[A-Za-z]+",
    "%a": r"[A-Za-z]{3}",
}

_DATE_DIRECTIVES = {"%Y", "%y", "%m", "%d", "%B", "%b", "%j"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today_in(tz: ZoneInfo) -> date:
    return datetime.now(tz).date()


def layout_to_strftime(layout: str) -> str:
    """
    Translate a layout such as 'DD/MM/YYYY' or 'MMMM DD, YYYY' to strftime.

    Layouts already containing '%' directives are returned unchanged.
    """
    if "%" in layout:
        return layout
    return _LAYOUT_TOKENS.sub(lambda match: _STRFTIME[match.group(0)], layout)


def layout_to_regex(layout: str) -> str:
    """Build a one-group regex matching text written in ``layout``."""
    fmt = layout_to_strftime(layout)
    parts: list[str] = []
    index = 0
    while index < len(fmt):
        char = fmt[index]
        if char == "%" and index + 1 < len(fmt):
            directive = fmt[index : index + 2]
            parts.append(_DIRECTIVE_REGEX.get(directive, r"\S+"))
            index += 2
            continue
        parts.append(r"\s+" if char.isspace() else re.escape(char))
        index += 1
    return "(" + "".join(parts) + ")"


def has_date_directive(fmt: str) -> bool:
    return any(directive in fmt for directive in _DATE_DIRECTIVES)


def parse_date_bound(raw: Optional[str], tz: ZoneInfo) -> Optional[datetime]:
    """Parse an operator supplied bound such as '2024-05-01' or '7 days ago'."""
    if raw is None or not raw.strip():
        return None
    parsed = dateparser.parse(
        raw.strip(),
        languages=["en"],
        settings={
            "DATE_ORDER": "DMY",
            "TIMEZONE": tz.key,
            "RETURN_AS_TIMEZONE_AWARE": True,
            "PREFER_DATES_FROM": "past",
        },
    )
    if parsed is None:
        raise ValueError(f"Unable to parse date from '{raw}'")
    return parsed.astimezone(timezone.utc)
