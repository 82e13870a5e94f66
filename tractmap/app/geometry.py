"""Coordinate repair for GeoJSON Polygon / MultiPolygon geometries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .config import Settings


@dataclass(frozen=True)
class BoundingBox:
    min_lon: float
    max_lon: float
    min_lat: float
    max_lat: float

    @classmethod
    def from_settings(cls, settings: Settings) -> "BoundingBox":
        return cls(
            min_lon=settings.BOUNDS_MIN_LON,
            max_lon=settings.BOUNDS_MAX_LON,
            min_lat=settings.BOUNDS_MIN_LAT,
            max_lat=settings.BOUNDS_MAX_LAT,
        )

    def contains(self, lon: float, lat: float) -> bool:
        return self.min_lon <= lon <= self.max_lon and self.min_lat <= lat <= self.max_lat

    def clamp(self, lon: float, lat: float) -> tuple[float, float]:
        return (
            min(self.max_lon, max(self.min_lon, lon)),
            min(self.max_lat, max(self.min_lat, lat)),
        )


NYC_BOUNDS = BoundingBox(min_lon=-74.5, max_lon=-73.5, min_lat=40.4, max_lat=41.0)


@dataclass(frozen=True)
class SwapHeuristic:
    """When a [lon, lat] pair is treated as an upstream [lat, lon] mix-up.

    The window is tuned to malformed NYC sources, not a general geodetic rule.
    """

    lon_window: float = 10.0
    lat_below: float = -70.0
    swap_into_bounds: bool = True

    def should_swap(self, lon: float, lat: float, bounds: BoundingBox) -> bool:
        if -self.lon_window < lon < self.lon_window and lat < self.lat_below:
            return True
        if abs(lon) > 180 or abs(lat) > 90:
            return True
        if self.swap_into_bounds and not bounds.contains(lon, lat):
            return bounds.contains(lat, lon)
        return False


DEFAULT_SWAP = SwapHeuristic()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_position(value: Any) -> bool:
    return (
        isinstance(value, (list, tuple))
        and len(value) >= 2
        and _is_number(value[0])
        and _is_number(value[1])
    )


def sanitize_position(
    position: list[float],
    bounds: BoundingBox = NYC_BOUNDS,
    swap: SwapHeuristic = DEFAULT_SWAP,
) -> list[float]:
    lon, lat = float(position[0]), float(position[1])
    if swap.should_swap(lon, lat, bounds):
        lon, lat = lat, lon
    lon, lat = bounds.clamp(lon, lat)
    return [lon, lat, *position[2:]]


def sanitize_coordinates(
    coordinates: Any,
    bounds: BoundingBox = NYC_BOUNDS,
    swap: SwapHeuristic = DEFAULT_SWAP,
) -> Any:
    """Recursively repair positions while keeping the nesting shape."""
    if _is_position(coordinates):
        return sanitize_position(coordinates, bounds, swap)
    if isinstance(coordinates, (list, tuple)):
        return [sanitize_coordinates(item, bounds, swap) for item in coordinates]
    return coordinates


def sanitize_geometry(
    geometry: dict[str, Any] | None,
    bounds: BoundingBox = NYC_BOUNDS,
    swap: SwapHeuristic = DEFAULT_SWAP,
) -> dict[str, Any] | None:
    if not geometry or not geometry.get("coordinates"):
        return geometry
    return {**geometry, "coordinates": sanitize_coordinates(geometry["coordinates"], bounds, swap)}


def has_coordinates(geometry: dict[str, Any] | None) -> bool:
    if not isinstance(geometry, dict):
        return False
    coordinates = geometry.get("coordinates")
    return isinstance(coordinates, (list, tuple)) and len(coordinates) > 0


def ring_area(ring: Any) -> float:
    """Planar shoelace area of one ring, in square degrees."""
    if not isinstance(ring, (list, tuple)) or len(ring) < 3:
        return 0.0
    total = 0.0
    for current, following in zip(ring, ring[1:]):
        if not _is_position(current) or not _is_position(following):
            continue
        total += current[0] * following[1]
        total -= following[0] * current[1]
    return abs(total) / 2.0


def outer_ring_area(geometry: dict[str, Any] | None) -> float:
    """Sum of outer-ring areas; holes are not subtracted."""
    if not has_coordinates(geometry):
        return 0.0
    geometry_type = geometry.get("type")
    coordinates = geometry["coordinates"]
    if geometry_type == "Polygon":
        return ring_area(coordinates[0])
    if geometry_type == "MultiPolygon":
        return sum(ring_area(polygon[0]) for polygon in coordinates if polygon)
    return 0.0
