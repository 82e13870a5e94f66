from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Number = int | float


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorResponse(BaseModel):
    detail: str


class BoundaryFeature(BaseModel):
    """One tract polygon after schema normalization and coordinate repair."""

    geoid: str = Field(..., min_length=11, max_length=11)
    name: str
    county: str = Field(..., min_length=3, max_length=3)
    state: str = "36"
    geometry: dict[str, Any]
    source: str
    properties: dict[str, Any] = Field(default_factory=dict)


class DerivedMetrics(CamelModel):
    car_free_percent: str | None = None
    transit_score: str | None = None
    vulnerable_percent: str | None = None


class StatisticRecord(CamelModel):
    """ACS values for one tract. None means suppressed or not reported."""

    geoid: str = Field(..., min_length=11, max_length=11)
    name: str | None = None
    state: str
    county: str
    tract: str

    total_population: Number | None = None
    total_housing_units: Number | None = None
    no_car_households: Number | None = None
    no_car_households_renter: Number | None = None
    median_household_income: Number | None = None
    public_transit_commuters: Number | None = None
    total_commuters: Number | None = None
    population_under18: Number | None = None
    population_under18_female: Number | None = None
    population65_plus: Number | None = None
    population65_plus_female: Number | None = None
    disabled_population: Number | None = None
    high_school_graduate: Number | None = None
    bachelors_degree: Number | None = None
    owner_occupied: Number | None = None
    renter_occupied: Number | None = None

    metrics: DerivedMetrics = Field(default_factory=DerivedMetrics)

    def values_by_alias(self) -> dict[str, Any]:
        return self.model_dump(
            by_alias=True,
            exclude={"geoid", "name", "state", "county", "tract", "metrics"},
        )


class MergedFeature(BaseModel):
    geoid: str
    name: str
    county: str
    state: str = "36"
    geometry: dict[str, Any]
    source: str
    statistics: StatisticRecord | None = None

    @property
    def has_statistics(self) -> bool:
        return self.statistics is not None

    def enrich(self, record: StatisticRecord) -> None:
        """Attach a freshly fetched record to an already displayed feature."""
        self.statistics = record
        if record.name and self.name.startswith("Tract "):
            self.name = record.name

    def to_geojson(self, *, matches_filters: bool | None = None) -> dict[str, Any]:
        properties: dict[str, Any] = {
            "GEOID": self.geoid,
            "NAME": self.name,
            "state": self.state,
            "county": self.county,
            "tract": self.geoid[5:11],
            "source": self.source,
            "hasStatistics": self.has_statistics,
        }
        if self.statistics is not None:
            properties.update(self.statistics.values_by_alias())
            properties.update(self.statistics.metrics.model_dump(by_alias=True))
        if matches_filters is not None:
            properties["matchesFilters"] = matches_filters
        return {"type": "Feature", "geometry": self.geometry, "properties": properties}


class CollectionMeta(BaseModel):
    year: str
    boundary_source: str
    feature_count: int = Field(..., ge=0)
    matched_count: int = Field(..., ge=0)
    with_statistics_count: int = Field(..., ge=0)
    loaded_at: datetime
    warnings: list[str] = Field(default_factory=list)


class TractFeatureCollection(BaseModel):
    type: Literal["FeatureCollection"] = "FeatureCollection"
    features: list[dict[str, Any]]
    meta: CollectionMeta


class VariableInfo(BaseModel):
    key: str
    code: str
    label: str


class FilterInfo(BaseModel):
    id: str
    name: str
    min: float
    max: float
    definition: str


class VariablesResponse(BaseModel):
    year: str
    variables: list[VariableInfo]
    derived_metrics: dict[str, str]
    filters: list[FilterInfo]
