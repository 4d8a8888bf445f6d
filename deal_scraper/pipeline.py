"""Locate, extract and assemble over fetched text, and the dry-run entrypoint."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Union

from .config import DEFAULT_USER_AGENT
from .errors import FetchError, SourceConfigError
from .extractor import extract_fields
from .fetcher import Fetcher
from .locator import Container, locate
from .logging import get_logger
from .models import CandidateRecord
from .source_config import SourceConfig, parse_source_config
from .validator import assemble

logger = get_logger(__name__)


@dataclass(slots=True)
class ExtractionReport:
    candidates: List[CandidateRecord] = field(default_factory=list)
    containers: int = 0

    @property
    def usable(self) -> List[CandidateRecord]:
        return [candidate for candidate in self.candidates if candidate.is_usable]

    @property
    def defective(self) -> List[CandidateRecord]:
        return [candidate for candidate in self.candidates if not candidate.is_usable]

    def problems(self, container_selector: str) -> List[str]:
        """Operator-facing messages for an empty page and each defective candidate."""
        messages: List[str] = []
        if self.containers == 0:
            messages.append(f"No containers matched selector '{container_selector}'")
        for candidate in self.defective:
            label = candidate.name or f"container #{candidate.container_index}"
            messages.extend(f"{label}: {issue}" for issue in candidate.diagnostics())
        return messages


@dataclass(slots=True)
class DryRunResult:
    success: bool
    candidates: List[CandidateRecord] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "deals_found": sum(1 for candidate in self.candidates if candidate.is_usable),
            "candidates": [candidate.to_dict() for candidate in self.candidates],
            "errors": list(self.errors),
        }


def extract_candidates(
    html: str,
    config: SourceConfig,
    today: date,
    grace_days: int = 0,
) -> ExtractionReport:
    """Pure transformation of page text into validated candidates."""
    return assemble_candidates(locate(html, config.location), config, today, grace_days)


def assemble_candidates(
    containers: List[Container],
    config: SourceConfig,
    today: date,
    grace_days: int = 0,
) -> ExtractionReport:
    report = ExtractionReport(containers=len(containers))
    for container in containers:
        outcomes = extract_fields(container, config.extraction)
        candidate = assemble(container, outcomes, config.url, today, grace_days)
        if not candidate.is_usable:
            logger.info(
                "candidate_defective",
                index=container.index,
                name=candidate.name,
                issues=candidate.diagnostics(),
            )
        report.candidates.append(candidate)
    return report


def dry_run(
    url: str,
    config: Union[SourceConfig, Mapping[str, Any]],
    fetcher: Fetcher,
    today: date,
    grace_days: int = 0,
    default_identity: str = DEFAULT_USER_AGENT,
) -> DryRunResult:
    """Run fetch, locate, extract and assemble without any store access.

    Config and fetch problems are returned in the result, never raised.
    """
    if not isinstance(config, SourceConfig):
        try:
            config = parse_source_config(
                config, name="dry-run", url=url, default_identity=default_identity
            )
        except SourceConfigError as exc:
            return DryRunResult(success=False, errors=[exc.describe()])

    try:
        html = fetcher.fetch(url, config.options)
    except FetchError as exc:
        return DryRunResult(success=False, errors=[exc.describe()])

    report = extract_candidates(html, config, today, grace_days)
    result = DryRunResult(
        success=bool(report.usable),
        candidates=report.candidates,
        errors=report.problems(config.location.container),
    )
    logger.info(
        "dry_run_finished",
        url=url,
        success=result.success,
        containers=report.containers,
        usable=len(report.usable),
    )
    return result
