from __future__ import annotations

import pytest

from tractmap.app.geometry import (
    NYC_BOUNDS,
    BoundingBox,
    SwapHeuristic,
    has_coordinates,
    outer_ring_area,
    ring_area,
    sanitize_geometry,
    sanitize_position,
)


def test_in_bounds_position_is_unchanged() -> None:
    assert sanitize_position([-73.95, 40.75]) == [-73.95, 40.75]


def test_swapped_pair_is_repaired() -> None:
    assert sanitize_position([40.71, -74.00]) == [-74.00, 40.71]


def test_legacy_window_swaps_then_clamps() -> None:
    # (5.0, -73.9) swaps to (-73.9, 5.0); the latitude is then clamped.
    assert sanitize_position([5.0, -73.9]) == [-73.9, 40.4]


def test_out_of_bounds_pair_is_clamped_without_swap() -> None:
    assert sanitize_position([-75.2, 40.7]) == [-74.5, 40.7]
    assert sanitize_position([-73.9, 41.6]) == [-73.9, 41.0]


def test_extra_dimensions_are_preserved() -> None:
    assert sanitize_position([-73.95, 40.75, 12.5]) == [-73.95, 40.75, 12.5]


def test_swap_into_bounds_can_be_disabled() -> None:
    strict = SwapHeuristic(swap_into_bounds=False)
    # Without the bounds-aware rule the pair is only clamped.
    assert sanitize_position([40.71, -74.00], NYC_BOUNDS, strict) == [-73.5, 40.4]


def test_sanitize_multipolygon_keeps_shape() -> None:
    geometry = {
        "type": "MultiPolygon",
        "coordinates": [
            [[[40.70, -74.00], [40.70, -73.99], [40.71, -73.99], [40.70, -74.00]]],
            [[[-73.90, 40.80], [-73.89, 40.80], [-73.89, 40.81], [-73.90, 40.80]]],
        ],
    }
    cleaned = sanitize_geometry(geometry)
    assert cleaned["type"] == "MultiPolygon"
    assert cleaned["coordinates"][0][0][0] == [-74.00, 40.70]
    assert cleaned["coordinates"][1][0][0] == [-73.90, 40.80]
    assert all(
        NYC_BOUNDS.contains(lon, lat)
        for polygon in cleaned["coordinates"]
        for ring in polygon
        for lon, lat in ring
    )
    # The input is not mutated.
    assert geometry["coordinates"][0][0][0] == [40.70, -74.00]


@pytest.mark.parametrize("geometry", [None, {}, {"type": "Polygon", "coordinates": []}])
def test_sanitize_geometry_passes_empty_through(geometry) -> None:
    assert sanitize_geometry(geometry) == geometry


def test_custom_bounds_from_values() -> None:
    bounds = BoundingBox(min_lon=-74.1, max_lon=-73.9, min_lat=40.6, max_lat=40.8)
    assert sanitize_position([-74.3, 40.9], bounds) == [-74.1, 40.8]


def test_has_coordinates() -> None:
    assert has_coordinates({"type": "Polygon", "coordinates": [[[0, 0]]]})
    assert not has_coordinates({"type": "Polygon", "coordinates": []})
    assert not has_coordinates(None)


def test_ring_area_is_shoelace() -> None:
    ring = [[0.0, 0.0], [0.1, 0.0], [0.1, 0.1], [0.0, 0.1], [0.0, 0.0]]
    assert ring_area(ring) == pytest.approx(0.01)
    assert ring_area([[0.0, 0.0], [1.0, 1.0]]) == 0.0


def test_outer_ring_area_ignores_holes() -> None:
    outer = [[0.0, 0.0], [0.1, 0.0], [0.1, 0.1], [0.0, 0.1], [0.0, 0.0]]
    hole = [[0.02, 0.02], [0.04, 0.02], [0.04, 0.04], [0.02, 0.04], [0.02, 0.02]]
    polygon = {"type": "Polygon", "coordinates": [outer, hole]}
    multi = {"type": "MultiPolygon", "coordinates": [[outer, hole], [outer]]}
    assert outer_ring_area(polygon) == pytest.approx(0.01)
    assert outer_ring_area(multi) == pytest.approx(0.02)
    assert outer_ring_area({"type": "Point", "coordinates": [0, 0]}) == 0.0
