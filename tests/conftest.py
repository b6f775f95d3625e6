"""
Shared test doubles: a manually driven timer service and mock HTTP servers
for the alert feed and the campaign backend (served via httpx.MockTransport).
"""

from __future__ import annotations

import json
from typing import Callable, Dict, List, Optional

import httpx
import pytest

from reliefwatch.spatial.geo import Coordinate
from reliefwatch.visualization.map_backend import InMemoryMapBackend
from reliefwatch.visualization.timers import TimerHandle, TimerService

PAKISTAN_CENTER = Coordinate(30.3753, 69.3451)


# ═══════════════════════════════════════════════════════════════════════════
# Timers
# ═══════════════════════════════════════════════════════════════════════════

class FakeTimerHandle(TimerHandle):
    def __init__(self, service: "FakeTimerService", period: float, callback: Callable[[], None]):
        self.service = service
        self.period = period
        self.callback = callback
        self.elapsed = 0.0
        self.fired = 0
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True
        if self in self.service.handles:
            self.service.handles.remove(self)

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class FakeTimerService(TimerService):
    """Timer service advanced by hand."""

    def __init__(self):
        self.handles: List[FakeTimerHandle] = []
        self.scheduled = 0

    def schedule_interval(self, period, callback):
        handle = FakeTimerHandle(self, period, callback)
        self.handles.append(handle)
        self.scheduled += 1
        return handle

    @property
    def active_count(self) -> int:
        return len(self.handles)

    def advance(self, seconds: float) -> None:
        for handle in list(self.handles):
            before = int(handle.elapsed / handle.period + 1e-9)
            handle.elapsed += seconds
            after = int(handle.elapsed / handle.period + 1e-9)
            for _ in range(after - before):
                if handle.cancelled:
                    break
                handle.fired += 1
                handle.callback()


# ═══════════════════════════════════════════════════════════════════════════
# HTTP servers
# ═══════════════════════════════════════════════════════════════════════════

class FeedServer:
    """Mock GET /emergency/alerts serving one record list per demo flag."""

    def __init__(self):
        self.records: Dict[bool, list] = {False: [], True: []}
        self.requests: List[httpx.Request] = []
        self.fail_status: Optional[int] = None
        self.unreachable = False
        self.reported_demo: Optional[bool] = None  # overrides the echoed demoMode

    def set_records(self, records: list, *, demo: bool = False) -> None:
        self.records[demo] = list(records)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"message": "unavailable"})
        demo = request.url.params.get("demo") == "true"
        return httpx.Response(200, json={
            "success": True,
            "data": {
                "alerts": self.records[demo],
                "demoMode": demo if self.reported_demo is None else self.reported_demo,
            },
        })

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class CampaignServer:
    """Mock POST /campaigns/emergency/auto-create with idempotency keys."""

    def __init__(self):
        self.calls: List[dict] = []
        self.keys: List[str] = []
        self.by_key: Dict[str, str] = {}
        self.fail_status: Optional[int] = None
        self.fail_locations: set = set()
        self._next_id = 100

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        key = request.headers.get("Idempotency-Key", "")
        self.calls.append(body)
        self.keys.append(key)

        if self.fail_status is not None or body.get("location") in self.fail_locations:
            return httpx.Response(self.fail_status or 503, json={"message": "down"})
        if key in self.by_key:
            return httpx.Response(409, json={"data": {"id": self.by_key[key]}})

        campaign_id = f"camp-{self._next_id}"
        self._next_id += 1
        self.by_key[key] = campaign_id
        return httpx.Response(201, json={
            "success": True,
            "data": {
                "id": campaign_id,
                "title": f"Emergency Relief: {body.get('location')}",
                "goalAmount": 500000,
                "category": "emergency",
            },
        })

    @property
    def locations(self) -> List[str]:
        return [c.get("location") for c in self.calls]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def timers() -> FakeTimerService:
    return FakeTimerService()


@pytest.fixture
def backend() -> InMemoryMapBackend:
    return InMemoryMapBackend(center=PAKISTAN_CENTER, zoom=6)


@pytest.fixture
def feed_server() -> FeedServer:
    return FeedServer()


@pytest.fixture
def campaign_server() -> CampaignServer:
    return CampaignServer()
