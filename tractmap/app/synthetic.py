"""Placeholder tract polygons laid out on a per-borough grid.

Used only when no boundary source is reachable, so the map still shows one
shape per tract that has statistics.
"""

from __future__ import annotations

import math
from collections import Counter
from typing import Any

from .geometry import BoundingBox
from .schemas import BoundaryFeature, StatisticRecord

SYNTHETIC_SOURCE = "synthetic"

# county -> (columns per row, origin lon, origin lat, grid step)
COUNTY_GRIDS: dict[str, tuple[int, float, float, float]] = {
    "061": (25, -73.98, 40.76, 0.006),
    "047": (35, -74.05, 40.56, 0.005),
    "081": (40, -73.95, 40.63, 0.004),
    "005": (30, -73.92, 40.80, 0.005),
    "085": (20, -74.25, 40.50, 0.006),
}
DEFAULT_GRID = (50, -74.0060, 40.7128, 0.008)

SYNTHETIC_BOUNDS = BoundingBox(min_lon=-74.26, max_lon=-73.70, min_lat=40.47, max_lat=40.92)


def _tract_number(record: StatisticRecord, fallback: int) -> int:
    try:
        return int(record.tract)
    except ValueError:
        return fallback


def octagon(center_lon: float, center_lat: float, size: float, angle: float) -> list[list[float]]:
    ring = [
        [
            center_lon + size * math.cos(angle + i * math.pi / 4),
            center_lat + size * math.sin(angle + i * math.pi / 4),
        ]
        for i in range(8)
    ]
    ring.append(list(ring[0]))
    return ring


def synthetic_geometry(county: str, position: int, tract_number: int) -> dict[str, Any]:
    columns, origin_lon, origin_lat, step = COUNTY_GRIDS.get(county, DEFAULT_GRID)
    lon = origin_lon + (position % columns) * step
    lat = origin_lat - (position // columns) * step
    lon, lat = SYNTHETIC_BOUNDS.clamp(lon, lat)

    size = 0.003 + (tract_number % 4) * 0.0015
    angle = (tract_number % 8) * (math.pi / 4)
    return {"type": "Polygon", "coordinates": [octagon(lon, lat, size, angle)]}


def generate_synthetic_boundaries(records: list[StatisticRecord]) -> list[BoundaryFeature]:
    positions: Counter = Counter()
    features: list[BoundaryFeature] = []
    for index, record in enumerate(records):
        county = record.county.zfill(3)
        # Unknown counties share one city-wide grid keyed by input order.
        position = positions[county] if county in COUNTY_GRIDS else index
        positions[county] += 1

        features.append(
            BoundaryFeature(
                geoid=record.geoid,
                name=record.name or f"Tract {record.tract}",
                county=county,
                state=record.state,
                geometry=synthetic_geometry(county, position, _tract_number(record, index)),
                source=SYNTHETIC_SOURCE,
            )
        )
    return features
