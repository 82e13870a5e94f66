from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from .census_api import UpstreamAPIError
from .config import settings
from .filters import FILTER_VARIABLES, build_range_filters, matches_filters
from .metrics import DERIVED_METRICS, VARIABLES
from .schemas import (
    CollectionMeta,
    FilterInfo,
    StatisticRecord,
    TractFeatureCollection,
    VariableInfo,
    VariablesResponse,
)
from .tract_service import DataLoadError, InvalidGeoidError, LoadResult, TractDataService

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.PROJECT_NAME, version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache
def get_tract_service() -> TractDataService:
    return TractDataService(settings)


def _collection(
    result: LoadResult,
    bounds: dict[str, tuple[float | None, float | None]],
    matching_only: bool,
) -> TractFeatureCollection:
    filters = build_range_filters(bounds)

    features = []
    matched = 0
    for feature in result.features:
        matches = matches_filters(feature, filters)
        matched += int(matches)
        if matching_only and not matches:
            continue
        features.append(feature.to_geojson(matches_filters=matches))

    return TractFeatureCollection(
        features=features,
        meta=CollectionMeta(
            year=result.year,
            boundary_source=result.boundary_source,
            feature_count=len(result.features),
            matched_count=matched,
            with_statistics_count=sum(1 for f in result.features if f.has_statistics),
            loaded_at=result.loaded_at,
            warnings=result.warnings,
        ),
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/tracts", response_model=TractFeatureCollection)
async def list_tracts(
    carfree_min: float | None = Query(None, ge=0, le=100),
    carfree_max: float | None = Query(None, ge=0, le=100),
    income_min: float | None = Query(None, ge=0),
    income_max: float | None = Query(None, ge=0),
    transit_min: float | None = Query(None, ge=0, le=100),
    transit_max: float | None = Query(None, ge=0, le=100),
    vulnerable_min: float | None = Query(None, ge=0, le=100),
    vulnerable_max: float | None = Query(None, ge=0, le=100),
    matching_only: bool = Query(False),
    service: TractDataService = Depends(get_tract_service),
) -> TractFeatureCollection:
    """Merged tract FeatureCollection, each feature flagged with ``matchesFilters``."""
    try:
        result = await service.ensure_loaded()
    except DataLoadError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    bounds = {
        "carfree": (carfree_min, carfree_max),
        "income": (income_min, income_max),
        "transit": (transit_min, transit_max),
        "vulnerable": (vulnerable_min, vulnerable_max),
    }
    return _collection(result, bounds, matching_only)


@app.get("/api/tracts/{geoid}")
async def tract_detail(
    geoid: str,
    service: TractDataService = Depends(get_tract_service),
) -> dict:
    """Single tract with its statistics, fetched on demand when missing."""
    try:
        await service.ensure_loaded()
    except DataLoadError as exc:
        # Off-map lookups still go to the single-tract endpoint.
        logger.warning("Tract map unavailable for detail lookup: %s", exc)

    try:
        found = await service.get_tract(geoid)
    except InvalidGeoidError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except UpstreamAPIError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    if found is None:
        raise HTTPException(status_code=404, detail=f"No census tract found for GEOID {geoid}.")
    if isinstance(found, StatisticRecord):
        return {
            "type": "Feature",
            "geometry": None,
            "properties": {
                "GEOID": found.geoid,
                "NAME": found.name,
                "state": found.state,
                "county": found.county,
                "tract": found.tract,
                "hasStatistics": True,
                **found.values_by_alias(),
                **found.metrics.model_dump(by_alias=True),
            },
        }
    return found.to_geojson()


@app.post("/api/tracts/refresh", response_model=CollectionMeta)
async def refresh_tracts(
    service: TractDataService = Depends(get_tract_service),
) -> CollectionMeta:
    try:
        result = await service.load()
    except DataLoadError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if result is None:
        # A newer refresh started while this one ran.
        raise HTTPException(status_code=409, detail="Load cycle was superseded by a newer refresh.")

    return CollectionMeta(
        year=result.year,
        boundary_source=result.boundary_source,
        feature_count=len(result.features),
        matched_count=sum(1 for f in result.features if matches_filters(f, [])),
        with_statistics_count=sum(1 for f in result.features if f.has_statistics),
        loaded_at=result.loaded_at,
        warnings=result.warnings,
    )


@app.get("/api/variables", response_model=VariablesResponse)
def list_variables() -> VariablesResponse:
    return VariablesResponse(
        year=settings.ACS_YEAR,
        variables=[
            VariableInfo(key=key, code=code, label=label)
            for key, (_, code, label) in VARIABLES.items()
        ],
        derived_metrics={name: metric.label for name, metric in DERIVED_METRICS.items()},
        filters=[
            FilterInfo(
                id=variable.id,
                name=variable.name,
                min=variable.min,
                max=variable.max,
                definition=variable.definition,
            )
            for variable in FILTER_VARIABLES.values()
        ],
    )
