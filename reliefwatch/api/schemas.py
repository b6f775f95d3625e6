"""
Pydantic schemas for the alert and map API.

Separated from the route handlers so they are reusable across
the codebase (routers, tests). Alert fields use the camelCase wire names
as aliases; Python attribute names stay snake_case.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class DemoModeRequest(BaseModel):
    """Body for PUT /api/v1/alerts/demo-mode."""
    enabled: bool = Field(..., description="Serve the demo dataset", examples=[True])


class FilterRequest(BaseModel):
    """Body for PUT /api/v1/map/filters."""
    type: str = Field("all", description="'all' or an alert type", examples=["FLOOD"])
    severity: str = Field("all", description="'all' or a severity", examples=["CRITICAL"])


class HoverRequest(BaseModel):
    active: bool = Field(True, description="True on mouse-over, False on mouse-out")


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class CoordinateOut(BaseModel):
    latitude: float
    longitude: float


class AlertOut(BaseModel):
    """A single alert card."""
    model_config = ConfigDict(populate_by_name=True)

    key: str
    id: Optional[str] = None
    type: str
    severity: str
    location: str
    description: str = ""
    source: str = ""
    timestamp: str
    magnitude: Optional[float] = None
    coordinates: Optional[CoordinateOut] = None
    campaign_id: Optional[str] = Field(None, alias="campaignId")
    affected_area: Optional[str] = Field(None, alias="affectedArea")
    estimated_damage: Optional[str] = Field(None, alias="estimatedDamage")
    time_ago: str = Field("", alias="timeAgo")
    donate_url: str = Field("/donate", alias="donateUrl")


class FilterOut(BaseModel):
    type: str
    severity: str


class StoreStateOut(BaseModel):
    demo_mode: bool
    loading: bool
    error: Optional[str] = None
    degraded: bool
    last_update: Optional[str] = None
    alert_count: int
    polling: bool
    detection_strategy: str
    pending_escalations: int
    feed_demo_mode: Optional[bool] = None


class AlertListResponse(BaseModel):
    """Filtered snapshot plus store state."""
    filters: FilterOut
    alerts: List[AlertOut]
    visible_count: int
    total_count: int
    selected: Optional[str] = None
    store: StoreStateOut


class StatsResponse(BaseModel):
    """Active Disasters panel."""
    total: int
    by_severity: Dict[str, int]
    critical: int
    high: int
    latest_timestamp: Optional[str] = None
    last_updated_text: str
    system_active: bool
    status_label: str


class EscalationOut(BaseModel):
    attempted: List[str]
    created: List[str]
    duplicates: List[str]
    failed: List[str]
    retried: List[str]


class RefreshResponse(BaseModel):
    alert_count: int
    demo_mode: bool
    new_alert_keys: List[str]
    escalation: Optional[EscalationOut] = None
    degraded: bool
    error: Optional[str] = None
    completed_at: str
    duration_ms: float
    feed_demo_mode: Optional[bool] = None


class NotificationOut(BaseModel):
    """A "campaign created" toast."""
    alert_key: str
    alert: Dict[str, Any]
    campaign_id: Optional[str] = None
    campaign: Optional[Dict[str, Any]] = None
    duplicate: bool
    created_at: str


class NotificationsResponse(BaseModel):
    notifications: List[NotificationOut]
    count: int


class DonateResponse(BaseModel):
    alert_key: str
    campaign_id: Optional[str] = None
    url: str


class MapStateResponse(BaseModel):
    """Visualizer state: viewport, markers with their circles, pulses."""
    filters: FilterOut
    viewport: Dict[str, Any]
    markers: List[Dict[str, Any]]
    pulse_count: int
    disposed: bool
    selected: Optional[str] = None


class MarkerOut(BaseModel):
    key: str
    hovered: bool
    marker: Dict[str, Any]
    circle: Dict[str, Any]


class SelectionResponse(BaseModel):
    selected: AlertOut
