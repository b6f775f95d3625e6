"""
geo.py — Geographic primitives for the alert map.

Provides:
    - Coordinate: validated (lat, lon) point in decimal degrees
    - parse_coordinate: tolerant builder used by the feed normalizer
    - BoundingBox: min/max envelope of a point set, with proportional padding

Padding semantics
=================
`BoundingBox.pad(ratio)` grows each side by `ratio` times the box's own
span on that axis, the same rule Leaflet's `LatLngBounds.pad()` uses:

    Δlat = (north − south) × ratio
    Δlon = (east − west) × ratio

    padded = (south − Δlat, west − Δlon, north + Δlat, east + Δlon)

A single-point box has zero span and therefore stays a point; the map
backend decides what zoom level to use for it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple


@dataclass(frozen=True)
class Coordinate:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValueError(
                f"Latitude must be in [-90, 90], got {self.latitude}"
            )
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValueError(
                f"Longitude must be in [-180, 180], got {self.longitude}"
            )

    def as_tuple(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def parse_coordinate(raw: Any) -> Optional[Coordinate]:
    """
    Build a Coordinate from a wire value, or None if it is unusable.

    Accepts ``{"latitude": .., "longitude": ..}`` (also ``lat``/``lon``
    and ``lng``) or a ``[lat, lon]`` pair. Never raises.
    """
    lat: Any = None
    lon: Any = None

    if isinstance(raw, dict):
        lat = raw.get("latitude", raw.get("lat"))
        lon = raw.get("longitude", raw.get("lon", raw.get("lng")))
    elif isinstance(raw, (list, tuple)) and len(raw) >= 2:
        lat, lon = raw[0], raw[1]
    else:
        return None

    lat_f = _as_float(lat)
    lon_f = _as_float(lon)
    if lat_f is None or lon_f is None:
        return None

    try:
        return Coordinate(lat_f, lon_f)
    except ValueError:
        return None


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned lat/lon envelope."""
    south: float
    west: float
    north: float
    east: float

    @classmethod
    def from_points(cls, points: Iterable[Coordinate]) -> Optional["BoundingBox"]:
        """Envelope of the given points, or None for an empty iterable."""
        lats = []
        lons = []
        for p in points:
            lats.append(p.latitude)
            lons.append(p.longitude)
        if not lats:
            return None
        return cls(min(lats), min(lons), max(lats), max(lons))

    def pad(self, ratio: float) -> "BoundingBox":
        d_lat = (self.north - self.south) * ratio
        d_lon = (self.east - self.west) * ratio
        return BoundingBox(
            south=self.south - d_lat,
            west=self.west - d_lon,
            north=self.north + d_lat,
            east=self.east + d_lon,
        )

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.south + self.north) / 2, (self.west + self.east) / 2)

    def contains(self, point: Coordinate) -> bool:
        return (
            self.south <= point.latitude <= self.north
            and self.west <= point.longitude <= self.east
        )

    def to_dict(self) -> dict:
        return {
            "south": self.south,
            "west": self.west,
            "north": self.north,
            "east": self.east,
        }
