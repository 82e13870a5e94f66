from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from .cache import TTLCache
from .config import Settings
from .geoid import build_geoid, county_of, normalize_geoid, state_of, tract_of
from .metrics import build_statistic_record, variable_codes
from .schemas import StatisticRecord

logger = logging.getLogger(__name__)

ACS_BASE_URL = "https://api.census.gov/data"
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
GEOGRAPHY_FIELDS = ("state", "county", "tract")

Params = dict[str, Any] | list[tuple[str, str]] | None
RequestJsonFn = Callable[..., Any]


@dataclass(frozen=True)
class ApiConfig:
    timeout: float = 20.0
    retries: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> "ApiConfig":
        return cls(timeout=settings.HTTP_TIMEOUT_SECONDS, retries=settings.HTTP_RETRIES)


class UpstreamAPIError(RuntimeError):
    def __init__(self, stage: str, message: str):
        super().__init__(f"[{stage}] {message}")
        self.stage = stage
        self.message = message


class StatisticsUnavailableError(RuntimeError):
    """Raised when no county statistics request succeeded."""


def _backoff_seconds(attempt: int) -> float:
    return min(8.0, 0.5 * (2**attempt))


def _short_error_text(text: str, limit: int = 240) -> str:
    one_line = " ".join(text.split())
    if len(one_line) <= limit:
        return one_line
    return one_line[:limit] + "..."


async def request_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: Params,
    stage: str,
    config: ApiConfig,
) -> Any:
    last_error: Exception | None = None
    headers = {"User-Agent": "tractmap/0.1"}
    for attempt in range(config.retries + 1):
        try:
            response = await client.get(url, params=params, timeout=config.timeout, headers=headers)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            last_error = exc
            if attempt < config.retries:
                await asyncio.sleep(_backoff_seconds(attempt))
                continue
            raise UpstreamAPIError(stage, f"Network error after retries: {exc!s}") from exc

        status = response.status_code
        if status in RETRYABLE_STATUS_CODES:
            last_error = UpstreamAPIError(
                stage, f"HTTP {status}: {_short_error_text(response.text)}"
            )
            if attempt < config.retries:
                await asyncio.sleep(_backoff_seconds(attempt))
                continue
            raise last_error

        if 400 <= status < 500:
            raise UpstreamAPIError(stage, f"HTTP {status}: {_short_error_text(response.text)}")

        # The Census API answers 204 for geographies with no rows.
        if status == 204 or not response.content:
            return []

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamAPIError(
                stage, f"Invalid JSON in upstream response (HTTP {status})"
            ) from exc

    if last_error is not None:
        raise UpstreamAPIError(stage, f"Failed request after retries: {last_error!s}")
    raise UpstreamAPIError(stage, "Failed request after retries.")


def build_acs_params(
    *,
    variables: list[str],
    state: str,
    county: str | None = None,
    tract: str | None = None,
    api_key: str | None = None,
) -> list[tuple[str, str]]:
    params = [
        ("get", ",".join([*variables, "NAME"])),
        ("for", f"tract:{tract}" if tract else "tract:*"),
        ("in", f"state:{state}"),
    ]
    if county:
        params.append(("in", f"county:{county}"))
    if api_key:
        params.append(("key", api_key))
    return params


def _coerce_cell(value: Any) -> Any:
    if isinstance(value, (int, float)) or value is None:
        return value
    text = str(value).strip()
    if not text:
        return value
    try:
        number = float(text)
    except ValueError:
        return value
    return int(number) if number.is_integer() else number


def parse_census_table(table: Any) -> list[dict[str, Any]]:
    """Turn the header-row-plus-value-rows payload into keyed rows."""
    if not isinstance(table, list) or len(table) < 2 or not isinstance(table[0], list):
        return []

    headers = [str(header) for header in table[0]]
    rows: list[dict[str, Any]] = []
    for raw_row in table[1:]:
        if not isinstance(raw_row, list):
            continue
        row: dict[str, Any] = {}
        for index, header in enumerate(headers):
            value = raw_row[index] if index < len(raw_row) else None
            if header in GEOGRAPHY_FIELDS:
                row[header] = "" if value is None else str(value)
            elif header == "NAME":
                row[header] = value
            else:
                row[header] = _coerce_cell(value)

        if row.get("state") and "county" in row and "tract" in row:
            row["GEOID"] = normalize_geoid(
                build_geoid(state=row["state"], county=row["county"], tract=row["tract"])
            )
        if not row.get("NAME") and row.get("GEOID") and row.get("tract"):
            row["NAME"] = f"Tract {row['tract']}"
        rows.append(row)
    return rows


def parse_statistic_records(table: Any) -> list[StatisticRecord]:
    records: list[StatisticRecord] = []
    for row in parse_census_table(table):
        record = build_statistic_record(row)
        if record is not None:
            records.append(record)
    return records


class CensusStatisticsService:
    """ACS tract statistics with an explicit, session-scoped cache."""

    def __init__(
        self,
        settings: Settings,
        *,
        cache: TTLCache | None = None,
        requester: RequestJsonFn | None = None,
    ) -> None:
        self.settings = settings
        self.cache = cache or TTLCache(default_ttl=settings.STATISTICS_CACHE_TTL_SECONDS)
        self.config = ApiConfig.from_settings(settings)
        self._requester = requester

    def _request(self) -> RequestJsonFn:
        return self._requester or request_json

    def _url(self, year: str) -> str:
        return f"{ACS_BASE_URL}/{year}/acs/acs5"

    async def fetch_county(
        self,
        client: httpx.AsyncClient,
        *,
        year: str,
        county: str,
    ) -> list[StatisticRecord]:
        params = build_acs_params(
            variables=variable_codes(),
            state=self.settings.STATE_FIPS,
            county=county,
            api_key=self.settings.CENSUS_API_KEY,
        )
        table = await self._request()(
            client,
            self._url(year),
            params=params,
            stage=f"acs:{county}",
            config=self.config,
        )
        return parse_statistic_records(table)

    async def _fetch_counties(
        self,
        client: httpx.AsyncClient,
        year: str,
        counties: list[str],
    ) -> list[StatisticRecord]:
        results = await asyncio.gather(
            *(self.fetch_county(client, year=year, county=county) for county in counties),
            return_exceptions=True,
        )

        records: list[StatisticRecord] = []
        succeeded = 0
        for county, result in zip(counties, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.warning("Statistics fetch failed for county %s: %s", county, result)
                continue
            succeeded += 1
            records.extend(result)

        if counties and succeeded == 0:
            raise StatisticsUnavailableError(
                f"All {len(counties)} county statistics requests failed for ACS {year}."
            )
        logger.info(
            "Fetched %d tract statistics from %d/%d counties (ACS %s)",
            len(records),
            succeeded,
            len(counties),
            year,
        )
        return records

    async def fetch_statistics(
        self,
        client: httpx.AsyncClient,
        year: str | None = None,
        counties: list[str] | None = None,
    ) -> list[StatisticRecord]:
        """All tracts for the target counties; partial when some counties fail."""
        year = year or self.settings.ACS_YEAR
        counties = list(counties or self.settings.COUNTY_CODES)
        key = f"nyc-tracts-{year}-{','.join(counties)}"
        return await self.cache.get_or_fetch(
            key,
            lambda: self._fetch_counties(client, year, counties),
            ttl=self.settings.STATISTICS_CACHE_TTL_SECONDS,
        )

    async def _fetch_tract(
        self,
        client: httpx.AsyncClient,
        geoid: str,
        year: str,
    ) -> StatisticRecord | None:
        tract_code = tract_of(geoid)
        params = build_acs_params(
            variables=variable_codes(),
            state=state_of(geoid),
            county=county_of(geoid),
            tract=str(int(tract_code)) if tract_code.isdigit() else tract_code,
            api_key=self.settings.CENSUS_API_KEY,
        )
        table = await self._request()(
            client,
            self._url(year),
            params=params,
            stage=f"acs_tract:{geoid}",
            config=self.config,
        )
        records = parse_statistic_records(table)
        return records[0] if records else None

    async def fetch_tract(
        self,
        client: httpx.AsyncClient,
        geoid: str,
        year: str | None = None,
    ) -> StatisticRecord | None:
        year = year or self.settings.ACS_YEAR
        key = f"tract-{geoid}-{year}"
        return await self.cache.get_or_fetch(
            key,
            lambda: self._fetch_tract(client, geoid, year),
            ttl=self.settings.TRACT_CACHE_TTL_SECONDS,
            cache_none=False,
        )
