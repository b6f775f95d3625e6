"""
feed_client.py — Polls the aggregated disaster-alert feed.

The upstream aggregator (USGS, Open-Meteo, GDACS …) is treated as one
opaque endpoint:

    GET {FEED_BASE_URL}/emergency/alerts            live data
    GET {FEED_BASE_URL}/emergency/alerts?demo=true  synthetic demo data

Error Handling Strategy
=======================
    Level 1 — Transport errors (timeout, DNS, connection refused)
        → Retry up to FEED_MAX_RETRIES times with exponential backoff
    Level 2 — HTTP errors
        → 429 / 5xx: retry
        → other 4xx: fail immediately
    Level 3 — Body is not JSON
        → FetchError (the payload is unusable)
    Level 4 — JSON of an unknown shape
        → empty Snapshot, handled by the normalizer

Every failure surfaces as FetchError. The caller (AlertStore) swaps in
`fallback_snapshot()` so the dashboard stays populated in degraded mode.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import httpx

from reliefwatch.alerts.models import Alert, Severity
from reliefwatch.core.config import settings
from reliefwatch.core.errors import FetchError
from reliefwatch.ingestion.normalizer import extract_demo_flag, normalize_payload
from reliefwatch.spatial.geo import Coordinate

logger = logging.getLogger(__name__)

ALERTS_PATH = "/emergency/alerts"
FEED_SERVICE_NAME = "alert-feed"


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


@dataclass
class FeedSnapshot:
    """Normalized alerts plus the ``demoMode`` the feed reported, if any."""
    alerts: List[Alert]
    reported_demo_mode: Optional[bool] = None


class AlertFeedClient:
    """
    Async client for the alert feed endpoint.

    Usage:
        client = AlertFeedClient()
        try:
            alerts = await client.fetch(demo_mode=False)
        except FetchError:
            alerts = fallback_snapshot()
        finally:
            await client.close()
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.FEED_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.FEED_TIMEOUT_SECONDS
        self.max_retries = (
            max_retries if max_retries is not None else settings.FEED_MAX_RETRIES
        )
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None
            else settings.FEED_RETRY_BACKOFF_SECONDS
        )
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def url(self) -> str:
        return f"{self.base_url}{ALERTS_PATH}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def fetch_raw(self, demo_mode: bool = False) -> Any:
        """Fetch the decoded JSON body, retrying transient failures."""
        params = {"demo": "true"} if demo_mode else None
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                wait = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Feed retry %d/%d after %.1fs — %s",
                    attempt, self.max_retries, wait, last_error,
                    extra={"attempt": attempt},
                )
                await asyncio.sleep(wait)

            client = await self._get_client()
            try:
                response = await client.get(self.url, params=params)
            except httpx.HTTPError as e:
                last_error = e
                continue

            if response.is_success:
                try:
                    return response.json()
                except ValueError as e:
                    raise FetchError(
                        FEED_SERVICE_NAME, f"invalid JSON body: {e}",
                        url=self.url,
                    ) from e

            last_error = FetchError(
                FEED_SERVICE_NAME, f"HTTP {response.status_code}",
                url=self.url, status=response.status_code,
            )
            if not _is_retryable_status(response.status_code):
                raise last_error

        if isinstance(last_error, FetchError):
            raise last_error
        raise FetchError(
            FEED_SERVICE_NAME,
            f"failed after {self.max_retries + 1} attempts: {last_error}",
            url=self.url,
        ) from last_error

    async def fetch_snapshot(self, demo_mode: bool = False) -> FeedSnapshot:
        """
        Fetch and normalize one Snapshot, keeping the envelope's demo flag.

        Raises
        ------
        FetchError
            On network failure, timeout, non-2xx status or non-JSON body.
        """
        start = time.monotonic()
        raw = await self.fetch_raw(demo_mode)
        snapshot = FeedSnapshot(
            alerts=normalize_payload(raw),
            reported_demo_mode=extract_demo_flag(raw),
        )
        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(
            "Fetched %d alerts (demo=%s) in %.0fms",
            len(snapshot.alerts), demo_mode, elapsed_ms,
            extra={
                "alert_count": len(snapshot.alerts),
                "demo_mode": demo_mode,
                "duration_ms": elapsed_ms,
            },
        )
        return snapshot

    async def fetch(self, demo_mode: bool = False) -> List[Alert]:
        """Fetch and normalize one Snapshot."""
        return (await self.fetch_snapshot(demo_mode)).alerts


# ---------------------------------------------------------------------------
# Degraded-mode fixture
# ---------------------------------------------------------------------------

def fallback_snapshot(now: Optional[datetime] = None) -> List[Alert]:
    """Three illustrative alerts shown while the feed is unreachable."""
    now = now or datetime.now(timezone.utc)
    return [
        Alert(
            id="1",
            type="EARTHQUAKE",
            location="Islamabad Region",
            severity=Severity.HIGH,
            magnitude=5.2,
            description="Magnitude 5.2 earthquake detected in Islamabad region. Depth: 15km",
            timestamp=now - timedelta(hours=2),
            coordinates=Coordinate(33.6844, 73.0479),
            source="USGS Earthquake Hazards Program",
        ),
        Alert(
            id="2",
            type="FLOOD",
            location="Sindh Province",
            severity=Severity.CRITICAL,
            description="Severe flooding reported in low-lying areas of Sindh Province",
            timestamp=now - timedelta(minutes=30),
            coordinates=Coordinate(25.8, 68.5),
            source="Open-Meteo Weather API",
        ),
        Alert(
            id="3",
            type="HEATWAVE",
            location="Karachi",
            severity=Severity.MEDIUM,
            description="Extreme heat warning in Karachi. Temperature: 42°C",
            timestamp=now - timedelta(hours=1),
            coordinates=Coordinate(24.8607, 67.0011),
            source="Open-Meteo Weather API",
        ),
    ]
