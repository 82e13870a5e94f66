"""Heuristic detection of open-water census tracts."""

from __future__ import annotations

from typing import Any

from .geometry import outer_ring_area
from .schemas import BoundaryFeature

# Tract-code suffixes read as a decimal fraction (0.<last three digits>).
WATER_TRACT_FRACTIONS = (0.0, 0.01, 0.98, 0.99)
WATER_AREA_THRESHOLD = 0.00001
WATER_NAME_MARKERS = ("water", "marine", "ocean")


def tract_suffix_fraction(geoid: str) -> float | None:
    if len(geoid) < 11:
        return None
    suffix = geoid[8:11]
    if not suffix.isdigit():
        return None
    return float(f"0.{suffix}")


def has_water_code(geoid: str) -> bool:
    return tract_suffix_fraction(geoid) in WATER_TRACT_FRACTIONS


def has_water_name(name: str | None) -> bool:
    lowered = (name or "").lower()
    return any(marker in lowered for marker in WATER_NAME_MARKERS)


def is_water_tract(
    geoid: str | None,
    name: str | None,
    geometry: dict[str, Any] | None,
    *,
    area_threshold: float = WATER_AREA_THRESHOLD,
) -> bool:
    if geoid and has_water_code(geoid) and geometry:
        if outer_ring_area(geometry) < area_threshold:
            return True
    return has_water_name(name)


def is_water_feature(feature: BoundaryFeature) -> bool:
    return is_water_tract(feature.geoid, feature.name, feature.geometry)
