"""Typed source configuration and its validation."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import soupsieve

from .config import DEFAULT_USER_AGENT
from .errors import SourceConfigError
from .models import SourceRow
from .time_utils import has_date_directive, layout_to_regex, layout_to_strftime

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_DATE_LAYOUT = "DD/MM/YYYY"
DEFAULT_DIRECT_DEBITS_PATTERN = r"([0-9]+)\s*(?:direct debit|DD)"
DEFAULT_PAY_IN_PATTERN = r"(?:pay in|deposit)\s*£([0-9,]+)"
DEFAULT_DEBIT_CARD_PATTERN = r"([0-9]+)\s*(?:debit card|card) (?:payment|transaction)"

_MANDATORY_LOCATIONS = ("container", "name", "rewardAmount")
_OPTIONAL_LOCATIONS = ("requirements", "expiry")


@dataclass(slots=True)
class LocationPatterns:
    container: str
    name: str
    reward_amount: str
    requirements: Optional[str] = None
    expiry: Optional[str] = None

    def field_selectors(self) -> Dict[str, Optional[str]]:
        return {
            "name": self.name,
            "rewardAmount": self.reward_amount,
            "requirements": self.requirements,
            "expiry": self.expiry,
        }


@dataclass(slots=True)
class ExtractionPatterns:
    reward_amount_pattern: str
    requirements_count_pattern: str = DEFAULT_DIRECT_DEBITS_PATTERN
    pay_in_pattern: str = DEFAULT_PAY_IN_PATTERN
    date_layout: str = DEFAULT_DATE_LAYOUT
    debit_card_pattern: str = DEFAULT_DEBIT_CARD_PATTERN
    expiry_pattern: Optional[str] = None

    @property
    def date_format(self) -> str:
        return layout_to_strftime(self.date_layout)

    @property
    def effective_expiry_pattern(self) -> str:
        return self.expiry_pattern or layout_to_regex(self.date_layout)


@dataclass(slots=True)
class RunOptions:
    identity: str = DEFAULT_USER_AGENT
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


@dataclass(slots=True)
class SourceConfig:
    name: str
    url: str
    location: LocationPatterns
    extraction: ExtractionPatterns
    options: RunOptions = field(default_factory=RunOptions)
    priority: int = 0
    is_active: bool = True
    id: Optional[int] = None

    def to_tree(self) -> Dict[str, Any]:
        tree: Dict[str, Any] = {
            "locationPatterns": {
                "container": self.location.container,
                "name": self.location.name,
                "rewardAmount": self.location.reward_amount,
                "requirements": self.location.requirements or "",
                "expiry": self.location.expiry or "",
            },
            "extractionPatterns": {
                "rewardAmountPattern": self.extraction.reward_amount_pattern,
                "requirementsCountPattern": self.extraction.requirements_count_pattern,
                "payInPattern": self.extraction.pay_in_pattern,
                "dateLayout": self.extraction.date_layout,
                "debitCardPattern": self.extraction.debit_card_pattern,
            },
            "options": {
                "identity": self.options.identity,
                "timeoutMs": self.options.timeout_ms,
                "retryAttempts": self.options.retry_attempts,
            },
        }
        if self.extraction.expiry_pattern:
            tree["extractionPatterns"]["expiryPattern"] = self.extraction.expiry_pattern
        return tree


def parse_source_config(
    tree: Mapping[str, Any],
    *,
    name: str,
    url: str,
    priority: int = 0,
    is_active: bool = True,
    source_id: Optional[int] = None,
    default_identity: str = DEFAULT_USER_AGENT,
) -> SourceConfig:
    """Validate a persisted configuration tree and build a ``SourceConfig``.

    Every problem found is collected so the operator sees the whole list
    at once, then a single ``SourceConfigError`` is raised.
    """
    problems: List[str] = []
    if not isinstance(tree, Mapping):
        raise SourceConfigError(["configuration must be an object"])

    if not (name or "").strip():
        problems.append("name is required")
    if not (url or "").strip():
        problems.append("url is required")
    elif not url.strip().lower().startswith(("http://", "https://")):
        problems.append(f"url must be http(s): {url}")

    locations = _section(tree, "locationPatterns", problems)
    parsing = _section(tree, "extractionPatterns", problems)
    options = tree.get("options") or {}
    if not isinstance(options, Mapping):
        problems.append("options must be an object")
        options = {}

    selectors: Dict[str, Optional[str]] = {}
    for key in _MANDATORY_LOCATIONS:
        value = _text(locations.get(key))
        if not value:
            problems.append(f"locationPatterns.{key} is required")
        selectors[key] = value
    for key in _OPTIONAL_LOCATIONS:
        selectors[key] = _text(locations.get(key))
    for key, selector in selectors.items():
        if selector:
            _check_selector(f"locationPatterns.{key}", selector, problems)

    reward_pattern = _text(parsing.get("rewardAmountPattern"))
    if not reward_pattern:
        problems.append("extractionPatterns.rewardAmountPattern is required")
    patterns = {
        "rewardAmountPattern": reward_pattern,
        "requirementsCountPattern": _text(parsing.get("requirementsCountPattern"))
        or DEFAULT_DIRECT_DEBITS_PATTERN,
        "payInPattern": _text(parsing.get("payInPattern")) or DEFAULT_PAY_IN_PATTERN,
        "debitCardPattern": _text(parsing.get("debitCardPattern")) or DEFAULT_DEBIT_CARD_PATTERN,
        "expiryPattern": _text(parsing.get("expiryPattern")),
    }
    for key, pattern in patterns.items():
        if pattern:
            _check_pattern(f"extractionPatterns.{key}", pattern, problems)

    date_layout = _text(parsing.get("dateLayout")) or DEFAULT_DATE_LAYOUT
    if not has_date_directive(layout_to_strftime(date_layout)):
        problems.append(f"extractionPatterns.dateLayout has no date fields: {date_layout}")

    identity = _text(options.get("identity")) or default_identity
    timeout_ms = _int_option(options, "timeoutMs", DEFAULT_TIMEOUT_MS, problems)
    retry_attempts = _int_option(options, "retryAttempts", DEFAULT_RETRY_ATTEMPTS, problems)
    if timeout_ms is not None and timeout_ms <= 0:
        problems.append("options.timeoutMs must be positive")
    if retry_attempts is not None and retry_attempts < 0:
        problems.append("options.retryAttempts must not be negative")

    if problems:
        raise SourceConfigError(problems)

    return SourceConfig(
        id=source_id,
        name=name.strip(),
        url=url.strip(),
        priority=int(priority or 0),
        is_active=bool(is_active),
        location=LocationPatterns(
            container=selectors["container"],
            name=selectors["name"],
            reward_amount=selectors["rewardAmount"],
            requirements=selectors["requirements"],
            expiry=selectors["expiry"],
        ),
        extraction=ExtractionPatterns(
            reward_amount_pattern=reward_pattern,
            requirements_count_pattern=patterns["requirementsCountPattern"],
            pay_in_pattern=patterns["payInPattern"],
            date_layout=date_layout,
            debit_card_pattern=patterns["debitCardPattern"],
            expiry_pattern=patterns["expiryPattern"],
        ),
        options=RunOptions(
            identity=identity,
            timeout_ms=timeout_ms,
            retry_attempts=retry_attempts,
        ),
    )


def load_source_config(row: SourceRow, default_identity: str = DEFAULT_USER_AGENT) -> SourceConfig:
    return parse_source_config(
        row.config_tree,
        name=row.name,
        url=row.url,
        priority=row.priority,
        is_active=row.is_active,
        source_id=row.id,
        default_identity=default_identity,
    )


def _section(tree: Mapping[str, Any], key: str, problems: List[str]) -> Mapping[str, Any]:
    value = tree.get(key)
    if value is None:
        problems.append(f"{key} is required")
        return {}
    if not isinstance(value, Mapping):
        problems.append(f"{key} must be an object")
        return {}
    return value


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _int_option(options: Mapping[str, Any], key: str, default: int, problems: List[str]) -> int:
    value = options.get(key)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        problems.append(f"options.{key} must be an integer")
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        problems.append(f"options.{key} must be an integer")
        return default


def _check_selector(label: str, selector: str, problems: List[str]) -> None:
    try:
        soupsieve.compile(selector)
    except soupsieve.SelectorSyntaxError as exc:
        problems.append(f"{label} is not a valid CSS selector: {exc}")


def _check_pattern(label: str, pattern: str, problems: List[str]) -> None:
    try:
        compiled = re.compile(pattern)
    except re.error as exc:
        problems.append(f"{label} is not a valid pattern: {exc}")
        return
    if compiled.groups != 1:
        problems.append(f"{label} must have exactly one capture group, found {compiled.groups}")
