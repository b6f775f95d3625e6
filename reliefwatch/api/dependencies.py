"""FastAPI dependencies resolving the long-lived services from app state."""

from __future__ import annotations

from fastapi import Request

from reliefwatch.alerts.store import AlertStore
from reliefwatch.services import Services
from reliefwatch.visualization.dashboard import AlertDashboard
from reliefwatch.visualization.geo_visualizer import GeoVisualizer


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_store(request: Request) -> AlertStore:
    return get_services(request).store


def get_dashboard(request: Request) -> AlertDashboard:
    return get_services(request).dashboard


def get_visualizer(request: Request) -> GeoVisualizer:
    return get_services(request).visualizer
