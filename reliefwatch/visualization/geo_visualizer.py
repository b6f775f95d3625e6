"""
geo_visualizer.py — Marker, impact-zone and pulse lifecycle for the alert map.

═══════════════════════════════════════════════════════════════════════════
OWNERSHIP
═══════════════════════════════════════════════════════════════════════════

A GeoVisualizer is a single owned value. It holds its map backend, its
timer service and a registry:

    alert key → MarkerEntry(marker layer, impact-circle layer, pulse timer | None)

Nothing else touches those layers or timers. `dispose()` releases all of
them; a disposed visualizer refuses further renders.

═══════════════════════════════════════════════════════════════════════════
RENDER CYCLE
═══════════════════════════════════════════════════════════════════════════

    render(filtered alerts)
        1. teardown   — remove every marker and circle, cancel every pulse
        2. rebuild    — one entry per alert that has coordinates
        3. viewport   — fit to marker bounds padded by MAP_FIT_PADDING,
                        untouched when there are no markers

After any render:

    len(markers)      == number of distinct keys with coordinates
    len(pulse timers) == how many of those are CRITICAL or HIGH

Styling (see alerts.display):

    marker        radius by severity, white 3 px outline, fill opacity 0.95
    impact circle radius_km × 1000 m, opacity 0.1 / fill 0.05
    hover         marker weight 4 / fill 1.0, circle 0.3 / fill 0.15
    pulse         fill opacity alternates low↔high each period
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from reliefwatch.alerts.display import (
    impact_radius_km,
    marker_radius,
    pulse_timing,
    severity_style,
    type_icon,
)
from reliefwatch.alerts.models import Alert
from reliefwatch.alerts.stats import time_ago
from reliefwatch.core.config import settings
from reliefwatch.core.errors import NotFoundError, VisualizerDisposedError
from reliefwatch.spatial.geo import BoundingBox
from reliefwatch.visualization.map_backend import MapBackend, MapLayer
from reliefwatch.visualization.timers import TimerHandle, TimerService

logger = logging.getLogger(__name__)

SelectionListener = Callable[[Alert], None]

MARKER_BASE_STYLE = {"color": "white", "weight": 3, "opacity": 1.0, "fillOpacity": 0.95}
MARKER_HOVER_STYLE = {"weight": 4, "fillOpacity": 1.0}
CIRCLE_BASE_STYLE = {"weight": 1, "opacity": 0.1, "fillOpacity": 0.05}
CIRCLE_HOVER_STYLE = {"opacity": 0.3, "fillOpacity": 0.15}


@dataclass
class MarkerEntry:
    alert: Alert
    marker: MapLayer
    circle: MapLayer
    pulse: Optional[TimerHandle] = None
    hovered: bool = False


class _Pulse:
    """Alternates a marker's fill opacity between two values."""

    def __init__(self, backend: MapBackend, marker: MapLayer, low: float, high: float):
        self._backend = backend
        self._marker = marker
        self._low = low
        self._high = high
        self._dimmed = False

    def __call__(self) -> None:
        self._dimmed = not self._dimmed
        self._backend.set_style(
            self._marker,
            fillOpacity=self._low if self._dimmed else self._high,
        )


def build_popup(alert: Alert, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Popup content shown when a marker is opened."""
    style = severity_style(alert.severity)
    popup: Dict[str, Any] = {
        "icon": type_icon(alert.type),
        "type": alert.type,
        "location": alert.location,
        "severity": alert.severity.value,
        "color": style.primary,
        "background": style.light,
        "description": alert.description,
        "reported": time_ago(alert.timestamp, now),
        "source": alert.source,
    }
    if alert.magnitude is not None:
        popup["magnitude"] = alert.magnitude
    if alert.coordinates is not None:
        popup["coordinates"] = (
            f"{alert.coordinates.latitude:.2f}°, {alert.coordinates.longitude:.2f}°"
        )
    return popup


class GeoVisualizer:
    """
    Owns every map layer and pulse timer for the alert map.

    Usage:
        viz = GeoVisualizer(InMemoryMapBackend(center, 6), AsyncioTimerService())
        viz.on_select(lambda alert: print(alert.key))
        viz.render(filtered_alerts)
        ...
        viz.dispose()
    """

    def __init__(
        self,
        backend: MapBackend,
        timers: TimerService,
        *,
        fit_padding: Optional[float] = None,
    ):
        self.backend = backend
        self.timers = timers
        self.fit_padding = fit_padding if fit_padding is not None else settings.MAP_FIT_PADDING
        self._registry: Dict[str, MarkerEntry] = {}
        self._listeners: List[SelectionListener] = []
        self._disposed = False
        self.render_count = 0

    # ── Introspection ──

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def markers(self) -> Dict[str, MarkerEntry]:
        return dict(self._registry)

    @property
    def active_pulse_count(self) -> int:
        return sum(
            1 for e in self._registry.values()
            if e.pulse is not None and not e.pulse.cancelled
        )

    def entry(self, key: str) -> MarkerEntry:
        try:
            return self._registry[key]
        except KeyError:
            raise NotFoundError("Marker", key=key) from None

    # ── Events ──

    def on_select(self, listener: SelectionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def hover(self, key: str, active: bool = True) -> MarkerEntry:
        """Toggle hover emphasis on a marker and its impact circle."""
        self._ensure_alive("hover")
        entry = self.entry(key)
        entry.hovered = active
        if active:
            self.backend.set_style(entry.marker, **MARKER_HOVER_STYLE)
            self.backend.set_style(entry.circle, **CIRCLE_HOVER_STYLE)
        else:
            self.backend.set_style(
                entry.marker,
                weight=MARKER_BASE_STYLE["weight"],
                fillOpacity=MARKER_BASE_STYLE["fillOpacity"],
            )
            self.backend.set_style(entry.circle, **CIRCLE_BASE_STYLE)
        return entry

    def click(self, key: str) -> Alert:
        """Emit a selection event for the marker's alert."""
        self._ensure_alive("select")
        alert = self.entry(key).alert
        for listener in list(self._listeners):
            try:
                listener(alert)
            except Exception:
                logger.exception(
                    "Selection listener failed for %s", key,
                    extra={"alert_key": key},
                )
        return alert

    # ── Lifecycle ──

    def render(self, alerts: Sequence[Alert]) -> int:
        """Tear down and rebuild all layers. Returns the marker count."""
        self._ensure_alive("render")
        self._teardown()

        now = datetime.now(timezone.utc)
        for alert in alerts:
            if alert.coordinates is None:
                continue
            if alert.key in self._registry:
                logger.warning(
                    "Duplicate map key %s; keeping the later alert", alert.key,
                    extra={"alert_key": alert.key},
                )
                self._remove_entry(self._registry.pop(alert.key))
            self._registry[alert.key] = self._build_entry(alert, now)

        self._fit_viewport()
        self.render_count += 1
        logger.debug(
            "Rendered %d markers, %d pulsing",
            len(self._registry), self.active_pulse_count,
            extra={"alert_count": len(self._registry)},
        )
        return len(self._registry)

    def dispose(self) -> None:
        """Cancel every timer and remove every layer. Idempotent."""
        if self._disposed:
            return
        try:
            self._teardown()
        finally:
            self._listeners.clear()
            self._disposed = True
        logger.debug("Visualizer disposed")

    # ── Internals ──

    def _ensure_alive(self, operation: str) -> None:
        if self._disposed:
            raise VisualizerDisposedError(operation)

    def _build_entry(self, alert: Alert, now: datetime) -> MarkerEntry:
        style = severity_style(alert.severity)
        center = alert.coordinates

        circle = self.backend.add_circle(
            center,
            impact_radius_km(alert.severity) * 1000,
            {"color": style.primary, "fillColor": style.primary, **CIRCLE_BASE_STYLE},
        )
        marker = self.backend.add_marker(
            center,
            marker_radius(alert.severity),
            {"fillColor": style.primary, **MARKER_BASE_STYLE},
            popup=build_popup(alert, now),
        )

        pulse: Optional[TimerHandle] = None
        timing = pulse_timing(alert.severity)
        if timing is not None:
            pulse = self.timers.schedule_interval(
                timing.period_seconds,
                _Pulse(self.backend, marker, timing.low_opacity, timing.high_opacity),
            )

        return MarkerEntry(alert=alert, marker=marker, circle=circle, pulse=pulse)

    def _remove_entry(self, entry: MarkerEntry) -> None:
        if entry.pulse is not None:
            entry.pulse.cancel()
        self.backend.remove_layer(entry.marker)
        self.backend.remove_layer(entry.circle)

    def _teardown(self) -> None:
        entries = list(self._registry.values())
        # Pulses stop even if the backend fails to remove a layer
        for entry in entries:
            if entry.pulse is not None:
                entry.pulse.cancel()
        try:
            for entry in entries:
                self._remove_entry(entry)
        finally:
            self._registry.clear()

    def _fit_viewport(self) -> None:
        bounds = BoundingBox.from_points(
            e.marker.center for e in self._registry.values()
        )
        if bounds is None:
            return
        self.backend.fit_bounds(bounds.pad(self.fit_padding))

    def state(self) -> Dict[str, Any]:
        """JSON-friendly view of the current markers."""
        return {
            "markers": [
                {
                    "key": key,
                    "alert": entry.alert.to_dict(),
                    "marker": entry.marker.to_dict(),
                    "circle": entry.circle.to_dict(),
                    "pulsing": entry.pulse is not None and not entry.pulse.cancelled,
                    "hovered": entry.hovered,
                }
                for key, entry in self._registry.items()
            ],
            "pulse_count": self.active_pulse_count,
            "disposed": self._disposed,
        }
