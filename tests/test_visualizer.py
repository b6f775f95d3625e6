"""
test_visualizer.py — Map markers, impact zones, pulse timers, dashboard.

Covers:
    • Marker/pulse counts after every render
    • Styling by severity, hover emphasis, click selection
    • Viewport fitting (padded bounds, untouched when empty)
    • dispose() releasing every timer and layer
    • AlertDashboard wiring (filters, notifications, donate target)

Run with:
    pytest tests/test_visualizer.py -v
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from reliefwatch.alerts.models import Alert, CampaignCreatedEvent, Severity
from reliefwatch.core.errors import InvalidFilterError, NotFoundError, VisualizerDisposedError
from reliefwatch.spatial.geo import Coordinate
from reliefwatch.visualization.dashboard import AlertDashboard, donate_target
from reliefwatch.visualization.geo_visualizer import GeoVisualizer, build_popup
from reliefwatch.visualization.map_backend import InMemoryMapBackend
from reliefwatch.visualization.timers import AsyncioTimerService

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _make_alert(
    location: str,
    severity: Severity = Severity.LOW,
    coords: tuple = (30.0, 70.0),
    alert_type: str = "FLOOD",
    alert_id: str = None,
) -> Alert:
    return Alert(
        id=alert_id,
        type=alert_type,
        severity=severity,
        location=location,
        timestamp=NOW,
        coordinates=Coordinate(*coords) if coords else None,
        source="Test Feed",
    )


MIXED = [
    _make_alert("Karachi", Severity.CRITICAL, (24.86, 67.00), "HEATWAVE"),
    _make_alert("Lahore", Severity.HIGH, (31.55, 74.34)),
    _make_alert("Islamabad", Severity.MEDIUM, (33.68, 73.05), "EARTHQUAKE"),
    _make_alert("Quetta", Severity.LOW, (30.18, 66.99), "EARTHQUAKE"),
    _make_alert("Unknown Village", Severity.CRITICAL, None),
]


@pytest.fixture
def viz(backend, timers) -> GeoVisualizer:
    return GeoVisualizer(backend, timers, fit_padding=0.15)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Render consistency
# ═══════════════════════════════════════════════════════════════════════════

class TestRender:

    def test_counts_match_alerts_with_coordinates(self, viz, backend, timers):
        assert viz.render(MIXED) == 4
        assert len(viz.markers) == 4
        assert viz.active_pulse_count == 2
        assert timers.active_count == 2
        assert len(backend.layers("marker")) == 4
        assert len(backend.layers("circle")) == 4

    def test_rerender_replaces_everything(self, viz, backend, timers):
        viz.render(MIXED)
        viz.render(MIXED[2:4])
        assert len(viz.markers) == 2
        assert viz.active_pulse_count == 0
        assert timers.active_count == 0
        assert backend.layer_count == 4

    def test_repeated_renders_do_not_leak_timers(self, viz, timers):
        for _ in range(5):
            viz.render(MIXED)
        assert timers.active_count == 2
        assert timers.scheduled == 10

    def test_empty_render(self, viz, backend):
        viz.render(MIXED)
        viz.render([])
        assert viz.markers == {}
        assert backend.layer_count == 0

    def test_duplicate_keys_last_wins(self, viz, timers):
        first = _make_alert("Sindh", Severity.CRITICAL, alert_id="F-1")
        second = _make_alert("Sindh", Severity.LOW, alert_id="F-1")
        viz.render([first, second])
        assert viz.entry("F-1").alert is second
        assert timers.active_count == 0

    def test_styling_by_severity(self, viz):
        viz.render(MIXED)
        critical = viz.entry("Karachi")
        low = viz.entry("Quetta")
        assert critical.marker.radius == 18
        assert critical.circle.radius == 60_000
        assert critical.marker.style["fillColor"] == "#dc2626"
        assert critical.marker.style["color"] == "white"
        assert critical.marker.style["weight"] == 3
        assert low.marker.radius == 8
        assert low.circle.radius == 30_000
        assert low.circle.style["fillOpacity"] == pytest.approx(0.05)

    def test_popup(self):
        popup = build_popup(_make_alert("Karachi", Severity.CRITICAL, (24.8607, 67.0011), "HEATWAVE"), NOW)
        assert popup["icon"] == "🔥"
        assert popup["coordinates"] == "24.86°, 67.00°"
        assert popup["reported"] == "just now"
        assert "magnitude" not in popup


class TestPulse:

    def test_critical_pulses_every_600ms(self, viz, timers):
        viz.render([MIXED[0]])
        marker = viz.entry("Karachi").marker
        timers.advance(0.6)
        assert marker.style["fillOpacity"] == pytest.approx(0.5)
        timers.advance(0.6)
        assert marker.style["fillOpacity"] == pytest.approx(0.95)

    def test_high_pulses_every_second(self, viz, timers):
        viz.render([MIXED[1]])
        marker = viz.entry("Lahore").marker
        timers.advance(0.6)
        assert marker.style["fillOpacity"] == pytest.approx(0.95)
        timers.advance(0.4)
        assert marker.style["fillOpacity"] == pytest.approx(0.7)

    def test_cancelled_pulse_stops(self, viz, timers):
        viz.render([MIXED[0]])
        handle = viz.entry("Karachi").pulse
        viz.render([])
        timers.advance(5)
        assert handle.cancelled
        assert handle.fired == 0


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Viewport & interaction
# ═══════════════════════════════════════════════════════════════════════════

class TestViewport:

    def test_fit_to_padded_bounds(self, viz, backend):
        viz.render(MIXED)
        bounds = backend.viewport.bounds
        assert bounds.south < 24.86 and bounds.north > 33.68
        assert bounds.west < 66.99 and bounds.east > 74.34
        assert bounds.south == pytest.approx(24.86 - (33.68 - 24.86) * 0.15)

    def test_no_markers_leaves_viewport(self, viz, backend):
        before = backend.viewport
        viz.render([MIXED[4]])
        assert backend.viewport is before
        assert backend.fit_count == 0


class TestInteraction:

    def test_hover_on_and_off(self, viz):
        viz.render(MIXED)
        entry = viz.hover("Lahore", True)
        assert entry.marker.style["weight"] == 4
        assert entry.marker.style["fillOpacity"] == pytest.approx(1.0)
        assert entry.circle.style["opacity"] == pytest.approx(0.3)
        assert entry.circle.style["fillOpacity"] == pytest.approx(0.15)

        viz.hover("Lahore", False)
        assert entry.marker.style["weight"] == 3
        assert entry.circle.style["opacity"] == pytest.approx(0.1)
        assert not entry.hovered

    def test_click_emits_selection(self, viz):
        viz.render(MIXED)
        selected = []
        viz.on_select(selected.append)
        viz.click("Islamabad")
        assert [a.location for a in selected] == ["Islamabad"]

    def test_unknown_marker(self, viz):
        viz.render(MIXED)
        with pytest.raises(NotFoundError):
            viz.hover("Atlantis")


class _FlakyBackend(InMemoryMapBackend):
    """Backend whose first remove_layer call fails."""

    def __init__(self):
        super().__init__(center=Coordinate(30.3753, 69.3451), zoom=6)
        self.remove_calls = 0

    def remove_layer(self, layer):
        self.remove_calls += 1
        if self.remove_calls == 1:
            raise RuntimeError("map detached")
        super().remove_layer(layer)


class TestDispose:

    def test_dispose_releases_everything(self, viz, backend, timers):
        viz.render(MIXED)
        viz.dispose()
        assert timers.active_count == 0
        assert backend.layer_count == 0
        assert viz.disposed

    def test_dispose_idempotent_and_final(self, viz):
        viz.render(MIXED)
        viz.dispose()
        viz.dispose()
        with pytest.raises(VisualizerDisposedError):
            viz.render(MIXED)


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Dashboard
# ═══════════════════════════════════════════════════════════════════════════

class _StubStore:
    """Just enough of AlertStore for the dashboard."""

    def __init__(self):
        self.alerts = []
        self._listeners = []

    def subscribe(self, listener):
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def publish(self, alerts):
        self.alerts = alerts
        for listener in list(self._listeners):
            listener(alerts)

    def find(self, key):
        return next((a for a in self.alerts if a.key == key), None)

    def state(self):
        return {}


class _StubTrigger:
    def __init__(self):
        self.listeners = []

    def subscribe(self, listener):
        self.listeners.append(listener)
        return lambda: self.listeners.remove(listener)


class TestDashboard:

    def test_snapshot_renders_filtered_view(self, viz):
        store = _StubStore()
        dashboard = AlertDashboard(store, viz)
        dashboard.set_filters("EARTHQUAKE", "all")
        store.publish(MIXED)
        assert set(viz.markers) == {"Islamabad", "Quetta"}
        assert dashboard.stats().total == 5

    def test_changing_filters_rerenders(self, viz, timers):
        store = _StubStore()
        dashboard = AlertDashboard(store, viz)
        store.publish(MIXED)
        dashboard.set_filters("all", "CRITICAL")
        assert list(viz.markers) == ["Karachi"]
        assert timers.active_count == 1
        dashboard.clear_filters()
        assert len(viz.markers) == 4

    def test_invalid_filter(self, viz):
        dashboard = AlertDashboard(_StubStore(), viz)
        with pytest.raises(InvalidFilterError):
            dashboard.set_filters("VOLCANO")

    def test_click_selects_and_snapshot_refreshes_selection(self, viz):
        store = _StubStore()
        dashboard = AlertDashboard(store, viz)
        store.publish(MIXED)
        viz.click("Lahore")
        assert dashboard.selected_alert.location == "Lahore"
        store.publish(MIXED[2:])
        assert dashboard.selected_alert is None

    def test_notifications_drain(self, viz):
        trigger = _StubTrigger()
        dashboard = AlertDashboard(_StubStore(), viz, trigger)
        event = CampaignCreatedEvent(alert=MIXED[0], campaign_id="camp-1")
        trigger.listeners[0](event)
        assert dashboard.pending_notifications == 1
        assert dashboard.drain_notifications() == [event]
        assert dashboard.drain_notifications() == []

    def test_donate_target(self):
        alert = _make_alert("Sindh")
        assert donate_target(alert) == "/donate"
        alert.campaign_id = "camp-9"
        assert donate_target(alert) == "/donate/camp-9"

    def test_dispose_unsubscribes(self, viz, timers):
        store = _StubStore()
        trigger = _StubTrigger()
        dashboard = AlertDashboard(store, viz, trigger)
        store.publish(MIXED)
        dashboard.dispose()
        assert store._listeners == []
        assert trigger.listeners == []
        assert timers.active_count == 0
        store.publish(MIXED)


class TestTeardownFailures:

    def test_backend_failure_still_cancels_every_pulse(self, timers):
        flaky = _FlakyBackend()
        viz = GeoVisualizer(flaky, timers, fit_padding=0.15)
        viz.render(MIXED)
        assert timers.active_count == 2

        with pytest.raises(RuntimeError):
            viz.render([])

        assert timers.active_count == 0
        assert viz.markers == {}
        assert viz.render(MIXED[:2]) == 2

    def test_dispose_after_backend_failure_is_final(self, timers):
        flaky = _FlakyBackend()
        viz = GeoVisualizer(flaky, timers, fit_padding=0.15)
        viz.render(MIXED)

        with pytest.raises(RuntimeError):
            viz.dispose()

        assert viz.disposed
        assert timers.active_count == 0


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Event-loop timers
# ═══════════════════════════════════════════════════════════════════════════

class TestAsyncioTimers:

    def test_pulses_alternate_and_release_on_rerender_and_dispose(self, backend):
        seen = set()
        counts = []

        async def go():
            timers = AsyncioTimerService()
            viz = GeoVisualizer(backend, timers, fit_padding=0.15)
            viz.render(MIXED[:4])
            counts.append(timers.active_count)
            critical = viz.entry("Karachi").marker
            for _ in range(15):
                await asyncio.sleep(0.1)
                seen.add(critical.style["fillOpacity"])

            viz.render(MIXED[1:4])
            counts.append(timers.active_count)
            viz.dispose()
            counts.append(timers.active_count)
            await asyncio.sleep(0.7)

        asyncio.run(go())
        assert counts == [2, 1, 0]
        assert seen == {0.5, 0.95}
        assert backend.layer_count == 0

    def test_failing_callback_cancels_its_timer(self):
        calls = []

        def boom():
            calls.append(1)
            raise RuntimeError("layer gone")

        async def go():
            timers = AsyncioTimerService()
            handle = timers.schedule_interval(0.01, boom)
            await asyncio.sleep(0.1)
            return timers, handle

        timers, handle = asyncio.run(go())
        assert calls == [1]
        assert handle.cancelled
        assert timers.active_count == 0

    def test_cancel_stops_rearming(self):
        ticks = []

        async def go():
            timers = AsyncioTimerService()
            handle = timers.schedule_interval(0.01, lambda: ticks.append(1))
            await asyncio.sleep(0.05)
            handle.cancel()
            handle.cancel()
            fired = len(ticks)
            await asyncio.sleep(0.05)
            return timers, fired

        timers, fired = asyncio.run(go())
        assert fired >= 1
        assert len(ticks) == fired
        assert timers.active_count == 0

    def test_rejects_non_positive_period(self):
        async def go():
            AsyncioTimerService().schedule_interval(0, lambda: None)

        with pytest.raises(ValueError):
            asyncio.run(go())
