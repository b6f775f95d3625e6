"""
stats.py — Summary figures for the "Active Disasters" panel.

Derived purely from the current, unfiltered Snapshot:

    counts per severity, total, most recent timestamp as relative text,
    and whether the system is actively reporting anything.

Relative time buckets
=====================
    Δ < 1 min     → "just now"
    Δ < 60 min    → "{m}m ago"
    otherwise     → "{h}h ago"            (stats panel)
    Δ < 24 h      → "{h}h ago"            (cards / popups, `time_ago`)
    otherwise     → "{d}d ago"

Timestamps in the future (clock skew between feed and host) read "just now".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Sequence

from reliefwatch.alerts.models import Alert, Severity, SEVERITIES_BY_URGENCY

NO_DATA_TEXT = "No data"
ACTIVE_LABEL = "System Active - Monitoring Data"
INACTIVE_LABEL = "No Active Disasters"


def _minutes_between(ts: datetime, now: datetime) -> int:
    return int((now - ts).total_seconds() // 60)


def last_updated_text(ts: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Minute/hour-bucketed relative time for the stats panel."""
    if ts is None:
        return NO_DATA_TEXT
    now = now or datetime.now(timezone.utc)
    minutes = _minutes_between(ts, now)
    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes}m ago"
    return f"{minutes // 60}h ago"


def time_ago(ts: datetime, now: Optional[datetime] = None) -> str:
    """Relative time with a day bucket, for alert cards and map popups."""
    now = now or datetime.now(timezone.utc)
    minutes = _minutes_between(ts, now)
    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"


@dataclass
class AlertStats:
    total: int
    by_severity: Dict[Severity, int] = field(default_factory=dict)
    latest_timestamp: Optional[datetime] = None
    last_updated_text: str = NO_DATA_TEXT

    @property
    def system_active(self) -> bool:
        return self.total > 0

    @property
    def status_label(self) -> str:
        return ACTIVE_LABEL if self.system_active else INACTIVE_LABEL

    def count(self, severity: Severity) -> int:
        return self.by_severity.get(severity, 0)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "by_severity": {s.value: self.count(s) for s in SEVERITIES_BY_URGENCY},
            "critical": self.count(Severity.CRITICAL),
            "high": self.count(Severity.HIGH),
            "latest_timestamp": (
                self.latest_timestamp.isoformat() if self.latest_timestamp else None
            ),
            "last_updated_text": self.last_updated_text,
            "system_active": self.system_active,
            "status_label": self.status_label,
        }


def count_by_severity(alerts: Iterable[Alert]) -> Dict[Severity, int]:
    counts = {s: 0 for s in SEVERITIES_BY_URGENCY}
    for alert in alerts:
        counts[alert.severity] = counts.get(alert.severity, 0) + 1
    return counts


def compute_stats(alerts: Sequence[Alert], now: Optional[datetime] = None) -> AlertStats:
    """Aggregate a Snapshot into panel figures."""
    latest = max((a.timestamp for a in alerts), default=None)
    return AlertStats(
        total=len(alerts),
        by_severity=count_by_severity(alerts),
        latest_timestamp=latest,
        last_updated_text=last_updated_text(latest, now),
    )
