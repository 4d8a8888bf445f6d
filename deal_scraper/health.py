"""Source health derived from recent run history."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from .models import RunRecord, RunStatus

HEALTHY = "healthy"
WARNING = "warning"
CRITICAL = "critical"

HISTORY_WINDOW = 10
STALE_AFTER = timedelta(hours=48)

_SEVERITY = {HEALTHY: 0, WARNING: 1, CRITICAL: 2}


@dataclass(slots=True)
class HealthStatus:
    source_id: int
    source_name: str
    status: str
    success_rate: float = 0.0
    average_deals_found: float = 0.0
    last_success_at: Optional[datetime] = None
    consecutive_failures: int = 0
    issues: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "source_name": self.source_name,
            "status": self.status,
            "success_rate": round(self.success_rate, 1),
            "average_deals_found": round(self.average_deals_found, 2),
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "consecutive_failures": self.consecutive_failures,
            "issues": list(self.issues),
        }


def assess_health(
    source_id: int,
    source_name: str,
    recent_runs: Sequence[RunRecord],
    now: datetime,
) -> HealthStatus:
    """Classify a source from its runs, newest first."""
    runs = list(recent_runs)[:HISTORY_WINDOW]
    if not runs:
        return HealthStatus(
            source_id=source_id,
            source_name=source_name,
            status=WARNING,
            issues=["No scraping history available"],
        )

    succeeded = [run for run in runs if run.status in (RunStatus.SUCCESS, RunStatus.PARTIAL)]
    success_rate = len(succeeded) / len(runs) * 100
    average_deals = sum(run.deals_found for run in runs) / len(runs)

    consecutive_failures = 0
    for run in runs:
        if run.status is not RunStatus.FAILED:
            break
        consecutive_failures += 1

    status = HEALTHY
    issues: List[str] = []

    if consecutive_failures >= 3:
        status = CRITICAL
        issues.append(f"Source has failed {consecutive_failures} consecutive times")
    elif consecutive_failures >= 2:
        status = WARNING
        issues.append(f"Source has failed {consecutive_failures} consecutive times")

    if success_rate < 50:
        status = _worst(status, WARNING)
        issues.append(f"Low success rate: {success_rate:.1f}%")

    if len(runs) > 3:
        recent = runs[:3]
        older = runs[3:6]
        recent_avg = sum(run.deals_found for run in recent) / len(recent)
        older_avg = sum(run.deals_found for run in older) / len(older)
        if older_avg > 0 and recent_avg < older_avg * 0.5:
            status = _worst(status, WARNING)
            issues.append("Deal count dropped significantly - site structure may have changed")

    if now - runs[0].started_at > STALE_AFTER:
        hours = int((now - runs[0].started_at).total_seconds() // 3600)
        status = _worst(status, WARNING)
        issues.append(f"Last scrape was {hours} hours ago")

    return HealthStatus(
        source_id=source_id,
        source_name=source_name,
        status=status,
        success_rate=success_rate,
        average_deals_found=average_deals,
        last_success_at=succeeded[0].started_at if succeeded else None,
        consecutive_failures=consecutive_failures,
        issues=issues,
    )


def overall_status(statuses: Sequence[HealthStatus]) -> str:
    if not statuses:
        return WARNING
    worst = HEALTHY
    for item in statuses:
        worst = _worst(worst, item.status)
    return worst


def _worst(current: str, candidate: str) -> str:
    return candidate if _SEVERITY[candidate] > _SEVERITY[current] else current
