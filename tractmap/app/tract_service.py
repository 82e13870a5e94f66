from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx

from .boundary_sources import (
    BoundaryFilterOptions,
    BoundaryResolver,
    BoundarySource,
    ResolvedBoundaries,
    default_sources,
)
from .census_api import (
    CensusStatisticsService,
    RequestJsonFn,
    StatisticsUnavailableError,
    UpstreamAPIError,
)
from .config import Settings
from .geoid import is_canonical, normalize_geoid
from .merge import merge_features
from .schemas import MergedFeature, StatisticRecord
from .synthetic import SYNTHETIC_SOURCE, generate_synthetic_boundaries

logger = logging.getLogger(__name__)


class DataLoadError(RuntimeError):
    """Neither boundaries nor statistics could be loaded."""


class InvalidGeoidError(ValueError):
    pass


@dataclass
class LoadResult:
    year: str
    boundary_source: str
    features: list[MergedFeature]
    statistics_count: int
    generation: int
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    warnings: list[str] = field(default_factory=list)
    boundary_attempts: list[dict] = field(default_factory=list)

    def find(self, geoid: str) -> MergedFeature | None:
        for feature in self.features:
            if feature.geoid == geoid:
                return feature
        return None


class TractDataService:
    """Runs load cycles and keeps the most recent non-stale result."""

    def __init__(
        self,
        settings: Settings,
        *,
        statistics: CensusStatisticsService | None = None,
        sources: list[BoundarySource] | None = None,
        options: BoundaryFilterOptions | None = None,
        requester: RequestJsonFn | None = None,
    ) -> None:
        self.settings = settings
        self.statistics = statistics or CensusStatisticsService(settings, requester=requester)
        self.sources = sources if sources is not None else default_sources(settings, requester=requester)
        self.options = options or BoundaryFilterOptions.from_settings(settings)
        self.current: LoadResult | None = None
        self._generation = 0
        self._lock = asyncio.Lock()
        self._latest: asyncio.Task | None = None

    @property
    def generation(self) -> int:
        return self._generation

    async def _resolve(self, client: httpx.AsyncClient) -> ResolvedBoundaries | None:
        resolver = BoundaryResolver(
            self.sources,
            self.options,
            timeout=self.settings.SOURCE_TIMEOUT_SECONDS,
        )
        return await resolver.resolve(client)

    async def _fetch_statistics(
        self,
        client: httpx.AsyncClient,
        year: str,
    ) -> list[StatisticRecord] | None:
        try:
            return await self.statistics.fetch_statistics(
                client, year, list(self.options.county_codes)
            )
        except StatisticsUnavailableError as exc:
            logger.error("Statistics unavailable: %s", exc)
            return None

    async def load(self, year: str | None = None) -> LoadResult | None:
        """Run one load cycle.

        Returns None when a newer cycle started before this one finished; the
        stale result is discarded and ``current`` keeps the newer data.
        Raises DataLoadError when both boundaries and statistics failed.
        """
        year = year or self.settings.ACS_YEAR
        self._generation += 1
        task = asyncio.ensure_future(self._run_cycle(self._generation, year))
        self._latest = task
        return await task

    async def _run_cycle(self, generation: int, year: str) -> LoadResult | None:
        logger.info("Starting load cycle %d for ACS %s", generation, year)

        async with httpx.AsyncClient(follow_redirects=True) as client:
            resolved, statistics = await asyncio.gather(
                self._resolve(client),
                self._fetch_statistics(client, year),
            )

        if generation != self._generation:
            logger.info("Discarding superseded load cycle %d", generation)
            return None

        warnings: list[str] = []
        if resolved is None and statistics is None:
            raise DataLoadError(
                "Failed to load census data: no boundary source and no statistics were available."
            )

        if statistics is None:
            warnings.append("Census statistics unavailable; showing boundaries only.")
            statistics = []

        if resolved is None:
            logger.info("Using synthetic boundaries for %d tracts", len(statistics))
            warnings.append("No boundary source reachable; tract shapes are approximate.")
            boundaries = generate_synthetic_boundaries(statistics)
            boundary_source = SYNTHETIC_SOURCE
            attempts: list[dict] = []
        else:
            boundaries = resolved.features
            boundary_source = resolved.source
            attempts = resolved.attempts

        result = LoadResult(
            year=year,
            boundary_source=boundary_source,
            features=merge_features(boundaries, statistics),
            statistics_count=len(statistics),
            generation=generation,
            warnings=warnings,
            boundary_attempts=attempts,
        )
        self.current = result
        return result

    async def ensure_loaded(self) -> LoadResult:
        """Return the current map, loading it first when none exists.

        When a newer cycle supersedes the one started here, waits for that
        cycle instead of failing.
        """
        async with self._lock:
            if self.current is not None:
                return self.current
            result = await self.load()
            while result is None and self._latest is not None:
                result = await asyncio.shield(self._latest)
        if result is None:
            raise DataLoadError("No completed load cycle is available.")
        return result

    async def get_tract(self, geoid: str) -> MergedFeature | StatisticRecord | None:
        """Inspect one tract, fetching its detail record when not yet present.

        Returns the displayed feature (enriched in place) when the tract is on
        the map, the bare statistics record when it is not, or None.
        """
        canonical = normalize_geoid(geoid)
        if not is_canonical(canonical):
            raise InvalidGeoidError(f"Unexpected tract GEOID format: {geoid!r}")

        result = self.current
        feature = result.find(canonical) if result else None
        if feature is not None and feature.statistics is not None:
            if feature.statistics.total_population is not None:
                return feature

        year = result.year if result else self.settings.ACS_YEAR
        async with httpx.AsyncClient(follow_redirects=True) as client:
            try:
                record = await self.statistics.fetch_tract(client, canonical, year)
            except UpstreamAPIError:
                if feature is not None:
                    logger.warning("Detail lookup failed for %s; returning cached feature", canonical)
                    return feature
                raise

        if feature is not None:
            if record is not None:
                feature.enrich(record)
            return feature
        return record
