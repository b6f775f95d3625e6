"""
models.py — Shared data structures for the alert monitoring pipeline.

Defines:
    • AlertType            — closed set of disaster categories
    • Severity             — urgency tiers, ordered CRITICAL > HIGH > MEDIUM > LOW
    • Alert                — the canonical, normalized disaster record
    • Campaign             — fundraising campaign returned by the backend
    • CampaignCreatedEvent — notification emitted after a successful escalation

═══════════════════════════════════════════════════════════════════════════
ALERT IDENTITY
═══════════════════════════════════════════════════════════════════════════

Every alert has a stable `key`:

    key = id         if the feed supplied a non-empty id
        = location   otherwise

The key scopes map layers (one marker per key) and is how an escalation
result is matched back into the freshly published snapshot. Two feed
records sharing a location and lacking ids therefore share a key.

═══════════════════════════════════════════════════════════════════════════
SEVERITY ORDERING
═══════════════════════════════════════════════════════════════════════════

    Severity    rank    Escalated    Pulsing marker
    ────────    ────    ─────────    ──────────────
    CRITICAL    4       yes          600 ms
    HIGH        3       yes          1000 ms
    MEDIUM      2       no           no
    LOW         1       no           no

Anything the feed sends outside this set normalizes to LOW.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from reliefwatch.spatial.geo import Coordinate


# ═══════════════════════════════════════════════════════════════════════════
# Enumerations
# ═══════════════════════════════════════════════════════════════════════════

class AlertType(str, Enum):
    """Disaster categories the feed is known to produce."""
    EARTHQUAKE = "EARTHQUAKE"
    FLOOD      = "FLOOD"
    CYCLONE    = "CYCLONE"
    HEATWAVE   = "HEATWAVE"
    TSUNAMI    = "TSUNAMI"
    LANDSLIDE  = "LANDSLIDE"
    DROUGHT    = "DROUGHT"

    @classmethod
    def parse(cls, value: Any) -> Optional["AlertType"]:
        """Case-insensitive lookup; None for unknown values."""
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


_SEVERITY_RANK = {
    "LOW": 1,
    "MEDIUM": 2,
    "HIGH": 3,
    "CRITICAL": 4,
}


class Severity(str, Enum):
    """Urgency tiers. Comparison operators follow urgency, not spelling."""
    CRITICAL = "CRITICAL"
    HIGH     = "HIGH"
    MEDIUM   = "MEDIUM"
    LOW      = "LOW"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self.value]

    @classmethod
    def parse(cls, value: Any, default: "Severity" = None) -> "Severity":
        """Case-insensitive lookup falling back to `default` (LOW)."""
        fallback = default if default is not None else cls.LOW
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return fallback
        try:
            return cls(value.strip().upper())
        except ValueError:
            return fallback

    def __lt__(self, other: Any) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: Any) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: Any) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: Any) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


# Highest first; stats and legends render in this order
SEVERITIES_BY_URGENCY = (
    Severity.CRITICAL,
    Severity.HIGH,
    Severity.MEDIUM,
    Severity.LOW,
)


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Alert:
    """
    A normalized disaster-event record.

    Attributes
    ----------
    type : str
        Upper-cased category. Usually an AlertType value, but unknown
        categories are preserved as-is so nothing downstream crashes.
    severity : Severity
        Urgency tier (LOW when the feed sent nothing usable).
    location : str
        Free-text place label.
    timestamp : datetime
        Aware UTC time the event was reported.
    id : str | None
        Feed-supplied identifier, if any.
    coordinates : Coordinate | None
        Absent or invalid coordinates keep the alert off the map only.
    campaign_id : str | None
        Set by the escalation trigger once a campaign exists.
    """
    type: str
    severity: Severity
    location: str
    description: str = ""
    source: str = ""
    timestamp: datetime = field(default_factory=_now)
    id: Optional[str] = None
    magnitude: Optional[float] = None
    coordinates: Optional[Coordinate] = None
    campaign_id: Optional[str] = None
    affected_area: Optional[str] = None
    estimated_damage: Optional[str] = None

    @property
    def key(self) -> str:
        """Stable identity: feed id when present, else the location."""
        if self.id:
            return self.id
        return self.location

    @property
    def alert_type(self) -> Optional[AlertType]:
        return AlertType.parse(self.type)

    @property
    def has_coordinates(self) -> bool:
        return self.coordinates is not None

    def to_dict(self) -> Dict[str, Any]:
        """Wire record (camelCase, ISO timestamp)."""
        d: Dict[str, Any] = {
            "type": self.type,
            "severity": self.severity.value,
            "location": self.location,
            "description": self.description,
            "source": self.source,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.id is not None:
            d["id"] = self.id
        if self.magnitude is not None:
            d["magnitude"] = self.magnitude
        if self.coordinates is not None:
            d["coordinates"] = self.coordinates.to_dict()
        if self.campaign_id is not None:
            d["campaignId"] = self.campaign_id
        if self.affected_area:
            d["affectedArea"] = self.affected_area
        if self.estimated_damage:
            d["estimatedDamage"] = self.estimated_damage
        return d


@dataclass
class Campaign:
    """Fundraising campaign as returned by the campaign backend."""
    id: str
    title: str = ""
    goal_amount: float = 0.0
    category: str = ""
    image: str = ""
    description: str = ""

    @classmethod
    def from_dict(cls, raw: Any) -> "Campaign":
        """
        Parse a campaign body, bare or wrapped as ``{"data": {...}}``.

        Raises ValueError when no campaign id can be found.
        """
        body = raw
        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            body = body["data"]
        if not isinstance(body, dict):
            raise ValueError("Campaign body is not an object")

        campaign_id = body.get("id")
        if campaign_id is None or campaign_id == "":
            raise ValueError("Campaign body has no id")

        goal = body.get("goalAmount", body.get("goal_amount", 0.0))
        try:
            goal_amount = float(goal)
        except (TypeError, ValueError):
            goal_amount = 0.0

        return cls(
            id=str(campaign_id),
            title=str(body.get("title") or ""),
            goal_amount=goal_amount,
            category=str(body.get("category") or ""),
            image=str(body.get("image") or ""),
            description=str(body.get("description") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "goalAmount": self.goal_amount,
            "category": self.category,
            "image": self.image,
            "description": self.description,
        }


@dataclass
class CampaignCreatedEvent:
    """Emitted once per successful escalation, for the UI to present."""
    alert: Alert
    campaign_id: Optional[str]
    campaign: Optional[Campaign] = None
    duplicate: bool = False
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_key": self.alert.key,
            "alert": self.alert.to_dict(),
            "campaign_id": self.campaign_id,
            "campaign": self.campaign.to_dict() if self.campaign else None,
            "duplicate": self.duplicate,
            "created_at": self.created_at.isoformat(),
        }
