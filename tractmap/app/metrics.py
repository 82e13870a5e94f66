from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable

from .schemas import DerivedMetrics, Number, StatisticRecord

# Semantic key -> (record field, ACS 5-year variable code, display name).
VARIABLES: dict[str, tuple[str, str, str]] = {
    "totalPopulation": ("total_population", "B01001_001E", "Total Population"),
    # B25044 tenure by vehicles available
    "totalHousingUnits": ("total_housing_units", "B25044_001E", "Total Housing Units"),
    "noCarHouseholds": ("no_car_households", "B25044_003E", "Car-Free Households (Owner)"),
    "noCarHouseholdsRenter": (
        "no_car_households_renter",
        "B25044_010E",
        "Car-Free Households (Renter)",
    ),
    "medianHouseholdIncome": (
        "median_household_income",
        "B19013_001E",
        "Median Household Income",
    ),
    "publicTransitCommuters": (
        "public_transit_commuters",
        "B08301_010E",
        "Public Transit Commuters",
    ),
    "totalCommuters": ("total_commuters", "B08301_001E", "Total Commuters"),
    "populationUnder18": ("population_under18", "B01001_003E", "Population Under 18"),
    "populationUnder18Female": (
        "population_under18_female",
        "B01001_027E",
        "Population Under 18 (Female)",
    ),
    "population65Plus": ("population65_plus", "B01001_020E", "Population 65+"),
    "population65PlusFemale": (
        "population65_plus_female",
        "B01001_044E",
        "Population 65+ (Female)",
    ),
    "disabledPopulation": (
        "disabled_population",
        "B18101_004E",
        "Population with Disabilities",
    ),
    "highSchoolGraduate": ("high_school_graduate", "B15003_017E", "High School Graduates"),
    "bachelorsDegree": ("bachelors_degree", "B15003_022E", "Bachelor's Degree Holders"),
    "ownerOccupied": ("owner_occupied", "B25003_002E", "Owner-Occupied Units"),
    "renterOccupied": ("renter_occupied", "B25003_003E", "Renter-Occupied Units"),
}

# ACS annotation values for suppressed, not applicable or unreliable estimates.
CENSUS_SENTINELS = frozenset(
    {
        -111111111,
        -222222222,
        -333333333,
        -555555555,
        -666666666,
        -888888888,
        -999999999,
    }
)
SENTINEL_FLOOR = -100000000


def variable_codes() -> list[str]:
    return [code for _, code, _ in VARIABLES.values()]


def is_sentinel(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return value in CENSUS_SENTINELS or value <= SENTINEL_FLOOR


def clean_value(value: Any) -> Number | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            value = float(stripped)
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    if value != value or is_sentinel(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _sum_all(*parts: Number | None) -> float | None:
    if any(part is None for part in parts):
        return None
    return float(sum(parts))


def _percent(numerator: float | None, denominator: Number | None, decimals: int) -> str | None:
    if numerator is None or denominator is None or denominator == 0:
        return None
    # Half-up, so 44.5 shows as "45" and 12.25 as "12.3".
    value = Decimal(repr(numerator * 100 / float(denominator)))
    return str(value.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP))


def car_free_percent(record: StatisticRecord) -> str | None:
    no_car = _sum_all(record.no_car_households, record.no_car_households_renter)
    return _percent(no_car, record.total_housing_units, 1)


def transit_score(record: StatisticRecord) -> str | None:
    return _percent(
        _sum_all(record.public_transit_commuters),
        record.total_commuters,
        0,
    )


def vulnerable_percent(record: StatisticRecord) -> str | None:
    vulnerable = _sum_all(
        record.population_under18,
        record.population_under18_female,
        record.population65_plus,
        record.population65_plus_female,
        record.disabled_population,
    )
    return _percent(vulnerable, record.total_population, 1)


@dataclass(frozen=True)
class DerivedMetric:
    label: str
    compute: Callable[[StatisticRecord], str | None]


DERIVED_METRICS: dict[str, DerivedMetric] = {
    "carFreePercent": DerivedMetric("Car-Free Households (%)", car_free_percent),
    "transitScore": DerivedMetric("Transit Access Score", transit_score),
    "vulnerablePercent": DerivedMetric("Vulnerable Residents (%)", vulnerable_percent),
}


def compute_derived_metrics(record: StatisticRecord) -> DerivedMetrics:
    return DerivedMetrics(**{name: metric.compute(record) for name, metric in DERIVED_METRICS.items()})


def build_statistic_record(row: dict[str, Any]) -> StatisticRecord | None:
    """Map one parsed Census row (keyed by variable code) to a typed record."""
    geoid = row.get("GEOID")
    if not geoid:
        return None

    values = {field: clean_value(row.get(code)) for field, code, _ in VARIABLES.values()}
    record = StatisticRecord(
        geoid=geoid,
        name=row.get("NAME") or None,
        state=str(row.get("state") or geoid[0:2]),
        county=str(row.get("county") or geoid[2:5]).zfill(3),
        tract=str(row.get("tract") or geoid[5:11]).zfill(6),
        **values,
    )
    record.metrics = compute_derived_metrics(record)
    return record
