"""
map_backend.py — The map surface the visualizer draws on.

`MapBackend` is the narrow set of operations the GeoVisualizer needs from a
slippy-map widget (Leaflet, MapLibre …): add a circle marker, add a
metre-radius circle, restyle or remove a layer, fit the viewport.

`InMemoryMapBackend` keeps every layer as plain data. The HTTP API renders
it as JSON for the browser, which owns the actual tiles and drawing.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from reliefwatch.spatial.geo import BoundingBox, Coordinate


@dataclass
class MapLayer:
    """One drawable layer. `style` follows Leaflet path option names."""
    layer_id: int
    kind: str  # "marker" | "circle"
    center: Coordinate
    radius: float  # px for markers, metres for circles
    style: Dict[str, Any] = field(default_factory=dict)
    popup: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "id": self.layer_id,
            "kind": self.kind,
            "center": self.center.to_dict(),
            "radius": self.radius,
            "style": dict(self.style),
        }
        if self.popup is not None:
            d["popup"] = self.popup
        return d


@dataclass
class Viewport:
    center: Coordinate
    zoom: int
    bounds: Optional[BoundingBox] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "center": self.center.to_dict(),
            "zoom": self.zoom,
            "bounds": self.bounds.to_dict() if self.bounds else None,
        }


class MapBackend:
    """Operations the visualizer performs on a map."""

    def add_marker(
        self,
        center: Coordinate,
        radius_px: float,
        style: Dict[str, Any],
        popup: Optional[Dict[str, Any]] = None,
    ) -> MapLayer:
        raise NotImplementedError

    def add_circle(self, center: Coordinate, radius_m: float, style: Dict[str, Any]) -> MapLayer:
        raise NotImplementedError

    def set_style(self, layer: MapLayer, **style: Any) -> None:
        raise NotImplementedError

    def remove_layer(self, layer: MapLayer) -> None:
        raise NotImplementedError

    def fit_bounds(self, bounds: BoundingBox) -> None:
        raise NotImplementedError


class InMemoryMapBackend(MapBackend):
    """Map backend holding layers and viewport as data."""

    def __init__(self, center: Coordinate, zoom: int):
        self.viewport = Viewport(center=center, zoom=zoom)
        self.fit_count = 0
        self._layers: Dict[int, MapLayer] = {}
        self._ids = itertools.count(1)

    def _add(self, layer: MapLayer) -> MapLayer:
        self._layers[layer.layer_id] = layer
        return layer

    def add_marker(self, center, radius_px, style, popup=None) -> MapLayer:
        return self._add(MapLayer(next(self._ids), "marker", center, radius_px, dict(style), popup))

    def add_circle(self, center, radius_m, style) -> MapLayer:
        return self._add(MapLayer(next(self._ids), "circle", center, radius_m, dict(style)))

    def set_style(self, layer: MapLayer, **style: Any) -> None:
        layer.style.update(style)

    def remove_layer(self, layer: MapLayer) -> None:
        self._layers.pop(layer.layer_id, None)

    def fit_bounds(self, bounds: BoundingBox) -> None:
        lat, lon = bounds.center
        self.viewport = Viewport(
            center=Coordinate(lat, lon),
            zoom=self.viewport.zoom,
            bounds=bounds,
        )
        self.fit_count += 1

    def has_layer(self, layer: MapLayer) -> bool:
        return layer.layer_id in self._layers

    def layers(self, kind: Optional[str] = None) -> List[MapLayer]:
        return [l for l in self._layers.values() if kind is None or l.kind == kind]

    @property
    def layer_count(self) -> int:
        return len(self._layers)
