"""
Service wiring — builds the object graph the HTTP app serves.

    AlertFeedClient ─┐
    detector ────────┼─▶ AlertStore ─▶ AlertDashboard ─▶ GeoVisualizer
    CampaignClient ──▶ EscalationTrigger ─┘         (MapBackend, TimerService)

Transports, timers and the map backend are injectable so tests can run the
whole graph against `httpx.MockTransport` and a manual timer service.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from reliefwatch.alerts.campaign_client import CampaignClient
from reliefwatch.alerts.detector import build_detector
from reliefwatch.alerts.escalation import EscalationTrigger
from reliefwatch.alerts.store import AlertStore
from reliefwatch.core.config import settings
from reliefwatch.ingestion.feed_client import AlertFeedClient
from reliefwatch.spatial.geo import Coordinate
from reliefwatch.visualization.dashboard import AlertDashboard
from reliefwatch.visualization.geo_visualizer import GeoVisualizer
from reliefwatch.visualization.map_backend import InMemoryMapBackend, MapBackend
from reliefwatch.visualization.timers import AsyncioTimerService, TimerService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    feed_client: AlertFeedClient
    campaign_client: CampaignClient
    trigger: EscalationTrigger
    store: AlertStore
    backend: MapBackend
    visualizer: GeoVisualizer
    dashboard: AlertDashboard

    async def start(self, polling_enabled: Optional[bool] = None) -> None:
        enabled = settings.POLLING_ENABLED if polling_enabled is None else polling_enabled
        if enabled:
            await self.store.start()
        else:
            logger.info("Polling disabled; alerts refresh on demand only")

    async def shutdown(self) -> None:
        """Stop polling, release map resources, close HTTP clients."""
        await self.store.stop()
        self.dashboard.dispose()
        await self.feed_client.close()
        await self.campaign_client.close()


def default_backend() -> InMemoryMapBackend:
    return InMemoryMapBackend(
        center=Coordinate(settings.MAP_DEFAULT_CENTER_LAT, settings.MAP_DEFAULT_CENTER_LON),
        zoom=settings.MAP_DEFAULT_ZOOM,
    )


def build_services(
    *,
    feed_transport: Optional[httpx.AsyncBaseTransport] = None,
    campaign_transport: Optional[httpx.AsyncBaseTransport] = None,
    timers: Optional[TimerService] = None,
    backend: Optional[MapBackend] = None,
    detection_strategy: Optional[str] = None,
    demo_mode: Optional[bool] = None,
    feed_max_retries: Optional[int] = None,
) -> Services:
    """Assemble every long-lived component from settings."""
    feed_client = AlertFeedClient(transport=feed_transport, max_retries=feed_max_retries)
    campaign_client = CampaignClient(transport=campaign_transport)
    trigger = EscalationTrigger(campaign_client)
    store = AlertStore(
        feed_client,
        build_detector(detection_strategy),
        trigger,
        demo_mode=demo_mode,
    )
    backend = backend or default_backend()
    visualizer = GeoVisualizer(backend, timers or AsyncioTimerService())
    dashboard = AlertDashboard(store, visualizer, trigger)

    logger.debug(
        "Services built (feed=%s, campaigns=%s, detector=%s)",
        feed_client.url, campaign_client.url, store.detector.strategy,
    )
    return Services(
        feed_client=feed_client,
        campaign_client=campaign_client,
        trigger=trigger,
        store=store,
        backend=backend,
        visualizer=visualizer,
        dashboard=dashboard,
    )
