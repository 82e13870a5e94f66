"""Tract boundary providers tried in priority order.

Each provider pairs a fetcher (local file or HTTP endpoint) with a schema
adapter that maps its property names onto ``BoundaryFeature``. The resolver
falls through to the next provider on any failure or on an empty result and
returns ``None`` once every provider is exhausted, so callers can switch to
synthetic geometry.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import httpx

from . import census_api
from .config import BOROUGH_TO_COUNTY, NYC_COUNTIES, Settings
from .geoid import build_geoid, county_of, lookup_field, normalize_geoid, tract_of
from .geometry import NYC_BOUNDS, BoundingBox, has_coordinates, sanitize_geometry
from .schemas import BoundaryFeature
from .water import is_water_feature

logger = logging.getLogger(__name__)


class BoundarySourceError(RuntimeError):
    pass


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _geometry_of(raw_feature: dict[str, Any]) -> dict[str, Any]:
    geometry = raw_feature.get("geometry")
    return geometry if isinstance(geometry, dict) else {}


class SchemaAdapter:
    name = "generic"

    def normalize(self, raw_feature: dict[str, Any]) -> BoundaryFeature | None:
        raise NotImplementedError


class NycOpenDataAdapter(SchemaAdapter):
    """NYC Department of City Planning 2020 tracts (geoid, ct2020, borocode)."""

    name = "nyc-open-data"

    def normalize(self, raw_feature: dict[str, Any]) -> BoundaryFeature | None:
        props = raw_feature.get("properties") or {}
        borough = _text(lookup_field(props, "borocode", "boro_code"))
        borough_county = BOROUGH_TO_COUNTY.get(borough.split(".")[0], "")

        geoid = normalize_geoid(lookup_field(props, "GEOID", "GEOID20"))
        if geoid is None:
            geoid = normalize_geoid(
                build_geoid(county=borough_county, tract=lookup_field(props, "ct2020", "tractce"))
            )
        if geoid is None:
            return None

        label = _text(lookup_field(props, "ctlabel"))
        name = (
            _text(lookup_field(props, "NAME"))
            or (f"Census Tract {label}" if label else "")
            or f"Tract {tract_of(geoid)}"
        )
        return BoundaryFeature(
            geoid=geoid,
            name=name,
            county=county_of(geoid),
            state=geoid[0:2],
            geometry=_geometry_of(raw_feature),
            source=self.name,
            properties=dict(props),
        )


class TigerWebAdapter(SchemaAdapter):
    """Census TIGERweb tract layer (GEOID/GEOID20, COUNTY/COUNTY_FIPS, TRACT/TRACTCE)."""

    name = "tigerweb"

    def normalize(self, raw_feature: dict[str, Any]) -> BoundaryFeature | None:
        props = raw_feature.get("properties") or {}
        county_raw = _text(lookup_field(props, "COUNTY_FIPS", "COUNTY", "COUNTYFP", "COUNTYFP20"))
        county = county_raw.zfill(3) if county_raw else ""
        tract = lookup_field(props, "TRACT", "TRACTCE", "TRACTCE20")

        geoid = normalize_geoid(lookup_field(props, "GEOID", "GEOID20"))
        if geoid is None:
            geoid = normalize_geoid(
                build_geoid(
                    state=lookup_field(props, "STATE", "STATEFP", "STATEFP20"),
                    county=county,
                    tract=tract,
                )
            )
        if geoid is None:
            return None

        name = _text(lookup_field(props, "NAME", "NAME20", "BASENAME")) or f"Tract {_text(tract) or tract_of(geoid)}"
        return BoundaryFeature(
            geoid=geoid,
            name=name,
            county=county or county_of(geoid),
            state=geoid[0:2],
            geometry=_geometry_of(raw_feature),
            source=self.name,
            properties=dict(props),
        )


class BoundarySource:
    name = "source"

    def __init__(self, adapter: SchemaAdapter) -> None:
        self.adapter = adapter

    async def fetch(self, client: httpx.AsyncClient, county_codes: tuple[str, ...]) -> Any:
        raise NotImplementedError


class LocalFileSource(BoundarySource):
    name = "local-file"

    def __init__(self, path: str | Path, adapter: SchemaAdapter | None = None) -> None:
        super().__init__(adapter or NycOpenDataAdapter())
        self.path = Path(path)

    def _read(self) -> Any:
        with self.path.open(encoding="utf-8") as f:
            return json.load(f)

    async def fetch(self, client: httpx.AsyncClient, county_codes: tuple[str, ...]) -> Any:
        return await asyncio.to_thread(self._read)


class HttpSource(BoundarySource):
    def __init__(
        self,
        name: str,
        url: str,
        adapter: SchemaAdapter,
        *,
        params: Callable[[tuple[str, ...]], census_api.Params] | None = None,
        config: census_api.ApiConfig | None = None,
        requester: census_api.RequestJsonFn | None = None,
    ) -> None:
        super().__init__(adapter)
        self.name = name
        self.url = url
        self._params = params
        self.config = config or census_api.ApiConfig()
        self._requester = requester

    async def fetch(self, client: httpx.AsyncClient, county_codes: tuple[str, ...]) -> Any:
        requester = self._requester or census_api.request_json
        params = self._params(county_codes) if self._params else None
        return await requester(
            client,
            self.url,
            params=params,
            stage=f"boundaries:{self.name}",
            config=self.config,
        )


def tigerweb_params(state_fips: str) -> Callable[[tuple[str, ...]], dict[str, str]]:
    def build(county_codes: tuple[str, ...]) -> dict[str, str]:
        county_filter = " OR ".join(f"COUNTY='{code}'" for code in county_codes)
        where = f"STATE='{state_fips}'" + (f" AND ({county_filter})" if county_filter else "")
        return {
            "where": where,
            "outFields": "GEOID,NAME,STATE,COUNTY,TRACT",
            "outSR": "4326",
            "f": "geojson",
            "resultRecordCount": "10000",
        }

    return build


def open_data_params(county_codes: tuple[str, ...]) -> dict[str, str]:
    return {"$limit": "5000"}


def default_sources(
    settings: Settings,
    *,
    requester: census_api.RequestJsonFn | None = None,
) -> list[BoundarySource]:
    config = census_api.ApiConfig.from_settings(settings)
    sources: list[BoundarySource] = []
    if settings.LOCAL_BOUNDARY_PATH:
        sources.append(LocalFileSource(settings.LOCAL_BOUNDARY_PATH))
    sources.append(
        HttpSource(
            "nyc-open-data",
            settings.NYC_OPEN_DATA_TRACTS_URL,
            NycOpenDataAdapter(),
            params=open_data_params,
            config=config,
            requester=requester,
        )
    )
    sources.append(
        HttpSource(
            "tigerweb",
            settings.TIGERWEB_TRACTS_URL,
            TigerWebAdapter(),
            params=tigerweb_params(settings.STATE_FIPS),
            config=config,
            requester=requester,
        )
    )
    return sources


@dataclass(frozen=True)
class BoundaryFilterOptions:
    county_codes: tuple[str, ...] = tuple(NYC_COUNTIES.keys())
    bounds: BoundingBox = NYC_BOUNDS
    restrict_to_counties: bool = True
    exclude_water: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "BoundaryFilterOptions":
        return cls(
            county_codes=tuple(settings.COUNTY_CODES),
            bounds=BoundingBox.from_settings(settings),
            restrict_to_counties=settings.RESTRICT_TO_COUNTIES,
            exclude_water=settings.EXCLUDE_WATER_TRACTS,
        )


def normalize_collection(
    payload: Any,
    adapter: SchemaAdapter,
    options: BoundaryFilterOptions,
) -> tuple[list[BoundaryFeature], Counter]:
    if not isinstance(payload, dict) or not isinstance(payload.get("features"), list):
        raise BoundarySourceError("Payload is not a GeoJSON FeatureCollection.")

    kept: list[BoundaryFeature] = []
    dropped: Counter = Counter()
    for raw_feature in payload["features"]:
        if not isinstance(raw_feature, dict) or not isinstance(
            raw_feature.get("properties") or {}, dict
        ):
            dropped["malformed"] += 1
            continue
        try:
            feature = adapter.normalize(raw_feature)
        except (ValueError, TypeError, AttributeError):
            # pydantic validation errors subclass ValueError
            dropped["malformed"] += 1
            continue
        if feature is None:
            dropped["no_identifier"] += 1
            continue

        feature.geometry = sanitize_geometry(feature.geometry, options.bounds) or {}
        if options.restrict_to_counties and feature.county not in options.county_codes:
            dropped["outside_counties"] += 1
            continue
        if not has_coordinates(feature.geometry):
            dropped["no_geometry"] += 1
            continue
        if options.exclude_water and is_water_feature(feature):
            dropped["water"] += 1
            continue
        kept.append(feature)
    return kept, dropped


@dataclass
class ResolvedBoundaries:
    source: str
    features: list[BoundaryFeature]
    attempts: list[dict[str, Any]] = field(default_factory=list)


def _log_coverage(features: list[BoundaryFeature]) -> None:
    by_county = Counter(feature.county for feature in features)
    for code, count in sorted(by_county.items()):
        logger.info("  %s: %d tracts", NYC_COUNTIES.get(code, code), count)


class BoundaryResolver:
    def __init__(
        self,
        sources: list[BoundarySource],
        options: BoundaryFilterOptions | None = None,
        *,
        timeout: float = 60.0,
    ) -> None:
        self.sources = sources
        self.options = options or BoundaryFilterOptions()
        self.timeout = timeout

    async def resolve(self, client: httpx.AsyncClient) -> ResolvedBoundaries | None:
        attempts: list[dict[str, Any]] = []
        for source in self.sources:
            logger.info("Loading tract boundaries from %s", source.name)
            try:
                payload = await asyncio.wait_for(
                    source.fetch(client, self.options.county_codes),
                    timeout=self.timeout,
                )
                features, dropped = normalize_collection(payload, source.adapter, self.options)
            except Exception as exc:  # broad to allow failover
                reason = str(exc) or type(exc).__name__
                logger.warning("Boundary source %s failed: %s", source.name, reason)
                attempts.append({"source": source.name, "status": "failed", "error": reason})
                continue

            if not features:
                logger.warning("Boundary source %s returned no usable tracts", source.name)
                attempts.append(
                    {"source": source.name, "status": "empty", "dropped": dict(dropped)}
                )
                continue

            for feature in features:
                feature.source = source.name
            attempts.append(
                {
                    "source": source.name,
                    "status": "selected",
                    "kept": len(features),
                    "dropped": dict(dropped),
                }
            )
            logger.info(
                "Loaded %d tract boundaries from %s (dropped %s)",
                len(features),
                source.name,
                dict(dropped) or "none",
            )
            _log_coverage(features)
            return ResolvedBoundaries(source=source.name, features=features, attempts=attempts)

        logger.warning("No boundary source produced tracts; synthetic geometry required")
        return None


async def resolve_boundaries(
    client: httpx.AsyncClient,
    sources: list[BoundarySource],
    options: BoundaryFilterOptions | None = None,
    *,
    timeout: float = 60.0,
) -> list[BoundaryFeature] | None:
    resolved = await BoundaryResolver(sources, options, timeout=timeout).resolve(client)
    return resolved.features if resolved else None
