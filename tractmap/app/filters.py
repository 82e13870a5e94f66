from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from .schemas import MergedFeature, StatisticRecord


def _as_float(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class FilterVariable:
    id: str
    name: str
    min: float
    max: float
    definition: str
    value_of: Callable[[StatisticRecord], float | None]


FILTER_VARIABLES: dict[str, FilterVariable] = {
    "carfree": FilterVariable(
        id="carfree",
        name="Percent Car-Free Households",
        min=0,
        max=100,
        definition=(
            "Car-free households are those that do not own any motor vehicles. "
            "Calculated from ACS table B25044."
        ),
        value_of=lambda record: _as_float(record.metrics.car_free_percent),
    ),
    "income": FilterVariable(
        id="income",
        name="Median Household Income",
        min=0,
        max=200000,
        definition="The median income of all households in the census tract (ACS table B19013).",
        value_of=lambda record: _as_float(record.median_household_income),
    ),
    "transit": FilterVariable(
        id="transit",
        name="Transit Access Score",
        min=0,
        max=100,
        definition=(
            "Percent of people who use public transit to commute. "
            "Calculated from ACS table B08301 (Means of Transportation to Work)."
        ),
        value_of=lambda record: _as_float(record.metrics.transit_score),
    ),
    "vulnerable": FilterVariable(
        id="vulnerable",
        name="Percent Vulnerable Residents",
        min=0,
        max=100,
        definition=(
            "Combined metric: children (under 18), seniors (65+), and individuals with "
            "disabilities. Calculated from ACS tables B01001 (age) and B18101 (disability)."
        ),
        value_of=lambda record: _as_float(record.metrics.vulnerable_percent),
    ),
}


@dataclass(frozen=True)
class RangeFilter:
    variable_id: str
    low: float
    high: float

    def contains(self, value: float) -> bool:
        return self.low <= value <= self.high


def build_range_filters(bounds: dict[str, tuple[float | None, float | None]]) -> list[RangeFilter]:
    """Fill missing ends of each requested range from the variable defaults."""
    filters: list[RangeFilter] = []
    for variable_id, (low, high) in bounds.items():
        if low is None and high is None:
            continue
        variable = FILTER_VARIABLES.get(variable_id)
        if variable is None:
            raise ValueError(f"Unknown filter variable: {variable_id}")
        filters.append(
            RangeFilter(
                variable_id=variable_id,
                low=variable.min if low is None else low,
                high=variable.max if high is None else high,
            )
        )
    return filters


def matches_filters(feature: MergedFeature, filters: list[RangeFilter]) -> bool:
    """AND over all ranges; a tract missing a filtered value never matches."""
    if feature.statistics is None:
        return False
    for range_filter in filters:
        variable = FILTER_VARIABLES.get(range_filter.variable_id)
        if variable is None:
            continue
        value = variable.value_of(feature.statistics)
        if value is None or not range_filter.contains(value):
            return False
    return True
