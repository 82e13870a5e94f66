from __future__ import annotations

import asyncio

import httpx
import pytest

import tractmap.app.census_api as census_api
from fakes import FakeUpstream, acs_row, acs_table
from tractmap.app.census_api import (
    ApiConfig,
    CensusStatisticsService,
    StatisticsUnavailableError,
    UpstreamAPIError,
    build_acs_params,
    parse_census_table,
    parse_statistic_records,
    request_json,
)

# ---------------------------------------------------------------------------
# request_json
# ---------------------------------------------------------------------------


def _run_request(handler, *, retries: int = 2):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await request_json(
                client,
                "https://api.census.gov/data/2023/acs/acs5",
                params=[("get", "NAME")],
                stage="acs:061",
                config=ApiConfig(timeout=5, retries=retries),
            )

    return asyncio.run(run())


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(census_api, "_backoff_seconds", lambda attempt: 0)


def test_request_json_retries_on_5xx() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json=[["NAME"], ["Tract 1"]])

    assert _run_request(handler) == [["NAME"], ["Tract 1"]]
    assert calls["n"] == 3


def test_request_json_does_not_retry_4xx() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(400, text="error: unknown variable 'B99999_001E'")

    with pytest.raises(UpstreamAPIError) as exc_info:
        _run_request(handler)
    assert calls["n"] == 1
    assert exc_info.value.stage == "acs:061"
    assert "HTTP 400" in str(exc_info.value)


def test_request_json_gives_up_after_retries() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamAPIError, match="Network error after retries"):
        _run_request(handler, retries=1)


def test_request_json_no_content_is_empty() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(204)

    assert _run_request(handler) == []


def test_request_json_invalid_json() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    with pytest.raises(UpstreamAPIError, match="Invalid JSON"):
        _run_request(handler)


# ---------------------------------------------------------------------------
# Parameters and parsing
# ---------------------------------------------------------------------------


def test_build_acs_params_county_query() -> None:
    params = build_acs_params(
        variables=["B01001_001E", "B25044_001E"],
        state="36",
        county="061",
        api_key="secret",
    )
    assert params == [
        ("get", "B01001_001E,B25044_001E,NAME"),
        ("for", "tract:*"),
        ("in", "state:36"),
        ("in", "county:061"),
        ("key", "secret"),
    ]


def test_build_acs_params_single_tract_without_key() -> None:
    params = build_acs_params(variables=["B01001_001E"], state="36", county="061", tract="100")
    assert ("for", "tract:100") in params
    assert all(name != "key" for name, _ in params)


def test_parse_census_table_builds_geoid_and_types() -> None:
    table = [
        ["B01001_001E", "B19013_001E", "NAME", "state", "county", "tract"],
        ["1500", "72500.5", "Census Tract 1; New York County; New York", "36", "61", "100"],
        ["800", "", None, "36", "061", "000200"],
    ]
    rows = parse_census_table(table)
    assert rows[0]["GEOID"] == "36061000100"
    assert rows[0]["B01001_001E"] == 1500
    assert rows[0]["B19013_001E"] == 72500.5
    assert rows[0]["county"] == "61"
    assert rows[1]["GEOID"] == "36061000200"
    assert rows[1]["NAME"] == "Tract 000200"
    assert rows[1]["B19013_001E"] == ""


@pytest.mark.parametrize("table", [None, [], [["NAME"]], {"error": "bad"}])
def test_parse_census_table_without_rows(table) -> None:
    assert parse_census_table(table) == []


def test_parse_statistic_records_skips_rows_without_geography() -> None:
    table = [
        ["B01001_001E", "NAME"],
        ["1500", "New York"],
    ]
    assert parse_statistic_records(table) == []


# ---------------------------------------------------------------------------
# CensusStatisticsService
# ---------------------------------------------------------------------------


def _service(settings, upstream: FakeUpstream) -> CensusStatisticsService:
    return CensusStatisticsService(settings, requester=upstream)


def test_fetch_statistics_combines_counties(settings, upstream) -> None:
    records = asyncio.run(_service(settings, upstream).fetch_statistics(None))
    assert {record.geoid for record in records} == {
        "36061000100",
        "36061000200",
        "36047000300",
    }
    assert sorted(upstream.calls) == ["acs:047", "acs:061"]
    params = upstream.params["acs:061"]
    assert ("in", "county:061") in params
    assert ("for", "tract:*") in params


def test_fetch_statistics_partial_failure_keeps_other_counties(settings, upstream) -> None:
    upstream.fail("acs:047")
    records = asyncio.run(_service(settings, upstream).fetch_statistics(None))
    assert {record.county for record in records} == {"061"}


def test_fetch_statistics_all_counties_failed(settings, upstream) -> None:
    upstream.fail("acs:061")
    upstream.fail("acs:047")
    with pytest.raises(StatisticsUnavailableError):
        asyncio.run(_service(settings, upstream).fetch_statistics(None))


def test_fetch_statistics_empty_success_is_not_failure(settings, upstream) -> None:
    upstream.responses["acs:061"] = []
    upstream.responses["acs:047"] = []
    assert asyncio.run(_service(settings, upstream).fetch_statistics(None)) == []


def test_fetch_statistics_is_cached_per_year(settings, upstream) -> None:
    service = _service(settings, upstream)

    async def run():
        await service.fetch_statistics(None, "2023")
        await service.fetch_statistics(None, "2023")
        await service.fetch_statistics(None, "2022")

    asyncio.run(run())
    assert upstream.calls.count("acs:061") == 2
    assert service.cache.has("nyc-tracts-2023-061,047")
    assert service.cache.has("nyc-tracts-2022-061,047")


def test_failed_fetch_is_not_cached(settings, upstream) -> None:
    upstream.fail("acs:061")
    upstream.fail("acs:047")
    service = _service(settings, upstream)
    with pytest.raises(StatisticsUnavailableError):
        asyncio.run(service.fetch_statistics(None))
    assert len(service.cache) == 0


def test_fetch_tract_uses_unpadded_tract_code(settings, upstream) -> None:
    upstream.responses["acs_tract:36061000100"] = acs_table(acs_row("061", "000100"))
    service = _service(settings, upstream)

    record = asyncio.run(service.fetch_tract(None, "36061000100"))
    assert record.geoid == "36061000100"
    assert record.metrics.car_free_percent == "15.0"
    assert ("for", "tract:100") in upstream.params["acs_tract:36061000100"]

    asyncio.run(service.fetch_tract(None, "36061000100"))
    assert upstream.calls.count("acs_tract:36061000100") == 1


def test_fetch_tract_unknown_is_not_cached(settings, upstream) -> None:
    upstream.responses["acs_tract:36061999900"] = []
    service = _service(settings, upstream)
    assert asyncio.run(service.fetch_tract(None, "36061999900")) is None
    assert asyncio.run(service.fetch_tract(None, "36061999900")) is None
    assert upstream.calls.count("acs_tract:36061999900") == 2
