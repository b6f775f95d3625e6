"""
FastAPI route: map state and marker interaction.

    GET  /api/v1/map                         — viewport, markers, circles, pulses
    PUT  /api/v1/map/filters                 — change the dashboard filters
    POST /api/v1/map/markers/{key}/hover     — hover emphasis on/off
    POST /api/v1/map/markers/{key}/select    — open the alert (marker click)

Handlers are async so pulse timers are armed on the serving event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from reliefwatch.api.dependencies import get_dashboard, get_visualizer
from reliefwatch.api.schemas import (
    FilterRequest,
    HoverRequest,
    MapStateResponse,
    MarkerOut,
    SelectionResponse,
)
from reliefwatch.visualization.dashboard import AlertDashboard
from reliefwatch.visualization.geo_visualizer import GeoVisualizer

router = APIRouter(prefix="/api/v1/map", tags=["map"])


def _map_state(dashboard: AlertDashboard) -> MapStateResponse:
    viz = dashboard.visualizer
    state = viz.state()
    viewport = getattr(viz.backend, "viewport", None)
    return MapStateResponse(
        filters=dashboard.selection.to_dict(),
        viewport=viewport.to_dict() if viewport is not None else {},
        markers=state["markers"],
        pulse_count=state["pulse_count"],
        disposed=state["disposed"],
        selected=dashboard.selected_alert.key if dashboard.selected_alert else None,
    )


@router.get("", response_model=MapStateResponse, summary="Map state")
async def map_state(dashboard: AlertDashboard = Depends(get_dashboard)):
    return _map_state(dashboard)


@router.put("/filters", response_model=MapStateResponse, summary="Set filters")
async def set_filters(body: FilterRequest, dashboard: AlertDashboard = Depends(get_dashboard)):
    """Re-renders the map with the new selection; 422 on unknown values."""
    dashboard.set_filters(body.type, body.severity)
    return _map_state(dashboard)


@router.post("/markers/{key:path}/hover", response_model=MarkerOut)
async def hover_marker(
    key: str,
    body: HoverRequest,
    visualizer: GeoVisualizer = Depends(get_visualizer),
):
    entry = visualizer.hover(key, body.active)
    return MarkerOut(
        key=key,
        hovered=entry.hovered,
        marker=entry.marker.to_dict(),
        circle=entry.circle.to_dict(),
    )


@router.post("/markers/{key:path}/select", response_model=SelectionResponse)
async def select_marker(
    key: str,
    dashboard: AlertDashboard = Depends(get_dashboard),
    visualizer: GeoVisualizer = Depends(get_visualizer),
):
    alert = visualizer.click(key)
    return SelectionResponse.model_validate({"selected": dashboard.alert_card(alert)})
