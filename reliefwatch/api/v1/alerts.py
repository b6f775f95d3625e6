"""
FastAPI route: live alert feed, stats, refresh and demo mode.

Provides endpoints to:
    GET  /api/v1/alerts                  — filtered snapshot + store state
    GET  /api/v1/alerts/stats            — Active Disasters panel
    POST /api/v1/alerts/refresh          — manual refresh
    PUT  /api/v1/alerts/demo-mode        — switch datasets
    GET  /api/v1/alerts/notifications    — drain campaign-created notices
    GET  /api/v1/alerts/{key}/donate     — donation target for an alert
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from reliefwatch.alerts.filters import FilterSelection
from reliefwatch.alerts.store import AlertStore
from reliefwatch.api.dependencies import get_dashboard, get_store
from reliefwatch.api.schemas import (
    AlertListResponse,
    DemoModeRequest,
    DonateResponse,
    NotificationsResponse,
    RefreshResponse,
    StatsResponse,
)
from reliefwatch.core.errors import NotFoundError
from reliefwatch.visualization.dashboard import AlertDashboard, donate_target

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


@router.get(
    "",
    response_model=AlertListResponse,
    summary="Current alerts",
    description=(
        "Returns the current snapshot filtered by type and severity. "
        "Without query parameters the dashboard's own filter selection applies."
    ),
)
async def list_alerts(
    type: Optional[str] = Query(None, description="'all' or an alert type", examples=["FLOOD"]),
    severity: Optional[str] = Query(None, description="'all' or a severity", examples=["HIGH"]),
    dashboard: AlertDashboard = Depends(get_dashboard),
):
    state = dashboard.state()
    if type is not None or severity is not None:
        selection = FilterSelection.parse(
            type or dashboard.selection.type,
            severity or dashboard.selection.severity,
        )
        visible = selection.apply(dashboard.store.alerts)
        state["filters"] = selection.to_dict()
        state["alerts"] = [dashboard.alert_card(a) for a in visible]
        state["visible_count"] = len(visible)
    return AlertListResponse.model_validate(state)


@router.get("/stats", response_model=StatsResponse, summary="Active Disasters panel")
async def alert_stats(dashboard: AlertDashboard = Depends(get_dashboard)):
    """Severity counts over the unfiltered snapshot."""
    return StatsResponse.model_validate(dashboard.stats().to_dict())


@router.post(
    "/refresh",
    response_model=RefreshResponse,
    summary="Refresh now",
    description="Runs the fetch → detect → escalate pipeline without touching the polling timer.",
)
async def refresh_alerts(store: AlertStore = Depends(get_store)):
    result = await store.refresh()
    return RefreshResponse.model_validate(result.to_dict())


@router.put("/demo-mode", response_model=RefreshResponse, summary="Switch demo dataset")
async def set_demo_mode(body: DemoModeRequest, store: AlertStore = Depends(get_store)):
    """Re-baselines new-alert detection and refreshes immediately."""
    result = await store.set_demo_mode(body.enabled)
    return RefreshResponse.model_validate(result.to_dict())


@router.get("/notifications", response_model=NotificationsResponse)
async def drain_notifications(dashboard: AlertDashboard = Depends(get_dashboard)):
    events = [e.to_dict() for e in dashboard.drain_notifications()]
    return NotificationsResponse.model_validate({"notifications": events, "count": len(events)})


@router.get("/{key:path}/donate", response_model=DonateResponse, summary="Donation target")
async def donate(key: str, store: AlertStore = Depends(get_store)):
    alert = store.find(key)
    if alert is None:
        raise NotFoundError("Alert", key=key)
    return DonateResponse(
        alert_key=alert.key,
        campaign_id=alert.campaign_id,
        url=donate_target(alert),
    )
