"""
display.py — Severity/type → display attribute lookup tables.

Every table is keyed by the closed Severity / AlertType enumerations and
every accessor has an explicit default branch, so an unexpected value from
the feed degrades to the LOW styling or the generic warning icon instead
of raising.

    Severity    colour     light      marker px   impact km   pulse
    ────────    ───────    ───────    ─────────   ─────────   ─────────────────
    CRITICAL    #dc2626    #fee2e2    18          60          600 ms, 0.5↔0.95
    HIGH        #ea580c    #ffedd5    14          50          1000 ms, 0.7↔0.95
    MEDIUM      #eab308    #fef3c7    11          40          —
    LOW         #16a34a    #f0fdf4    8           30          —
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from reliefwatch.alerts.models import AlertType, Severity


@dataclass(frozen=True)
class SeverityStyle:
    primary: str
    light: str
    badge: str
    marker_radius_px: int
    impact_radius_km: float


@dataclass(frozen=True)
class PulseTiming:
    """Marker opacity alternation for pulsing severities."""
    period_seconds: float
    low_opacity: float
    high_opacity: float


SEVERITY_STYLES: Dict[Severity, SeverityStyle] = {
    Severity.CRITICAL: SeverityStyle("#dc2626", "#fee2e2", "🔴", 18, 60.0),
    Severity.HIGH:     SeverityStyle("#ea580c", "#ffedd5", "🟠", 14, 50.0),
    Severity.MEDIUM:   SeverityStyle("#eab308", "#fef3c7", "🟡", 11, 40.0),
    Severity.LOW:      SeverityStyle("#16a34a", "#f0fdf4", "🟢", 8, 30.0),
}

PULSE_TIMINGS: Dict[Severity, PulseTiming] = {
    Severity.CRITICAL: PulseTiming(0.6, 0.5, 0.95),
    Severity.HIGH:     PulseTiming(1.0, 0.7, 0.95),
}

TYPE_ICONS: Dict[AlertType, str] = {
    AlertType.EARTHQUAKE: "🌍",
    AlertType.FLOOD:      "💧",
    AlertType.CYCLONE:    "🌪️",
    AlertType.LANDSLIDE:  "⛏️",
    AlertType.TSUNAMI:    "🌊",
    AlertType.HEATWAVE:   "🔥",
    AlertType.DROUGHT:    "☀️",
}

DEFAULT_ICON = "⚠️"


def severity_style(severity: Any) -> SeverityStyle:
    """Style for a severity; LOW styling for anything unrecognised."""
    return SEVERITY_STYLES.get(Severity.parse(severity), SEVERITY_STYLES[Severity.LOW])


def pulse_timing(severity: Any) -> Optional[PulseTiming]:
    """Pulse parameters, or None for severities that do not pulse."""
    return PULSE_TIMINGS.get(Severity.parse(severity))


def type_icon(alert_type: Any) -> str:
    parsed = AlertType.parse(alert_type)
    if parsed is None:
        return DEFAULT_ICON
    return TYPE_ICONS.get(parsed, DEFAULT_ICON)


def marker_radius(severity: Any) -> int:
    return severity_style(severity).marker_radius_px


def impact_radius_km(severity: Any) -> float:
    return severity_style(severity).impact_radius_km
