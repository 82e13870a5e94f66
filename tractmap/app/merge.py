from __future__ import annotations

import logging

from .schemas import BoundaryFeature, MergedFeature, StatisticRecord

logger = logging.getLogger(__name__)


def index_statistics(statistics: list[StatisticRecord]) -> dict[str, StatisticRecord]:
    lookup: dict[str, StatisticRecord] = {}
    for record in statistics:
        # Last write wins on duplicate GEOIDs.
        lookup[record.geoid] = record
    return lookup


def merge_features(
    boundaries: list[BoundaryFeature],
    statistics: list[StatisticRecord],
) -> list[MergedFeature]:
    """One merged feature per boundary, statistics joined on exact GEOID."""
    lookup = index_statistics(statistics)
    merged = [
        MergedFeature(
            geoid=boundary.geoid,
            name=boundary.name,
            county=boundary.county,
            state=boundary.state,
            geometry=boundary.geometry,
            source=boundary.source,
            statistics=lookup.get(boundary.geoid),
        )
        for boundary in boundaries
    ]

    matched = sum(1 for feature in merged if feature.statistics is not None)
    boundary_ids = {boundary.geoid for boundary in boundaries}
    unmatched_statistics = sum(1 for geoid in lookup if geoid not in boundary_ids)
    logger.info(
        "Merged %d boundaries with %d statistic records (%d matched, %d statistics without boundary)",
        len(boundaries),
        len(lookup),
        matched,
        unmatched_statistics,
    )
    return merged
