#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections import Counter
from pathlib import Path

from tractmap.app.census_api import request_json
from tractmap.app.config import NYC_COUNTIES, Settings, settings
from tractmap.app.tract_service import DataLoadError, LoadResult, TractDataService

EXIT_INVALID_ARGS = 2
EXIT_LOAD_FAILED = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Build the merged NYC census tract FeatureCollection (boundaries plus ACS "
            "statistics) and write it to a GeoJSON file."
        )
    )
    parser.add_argument(
        "--year",
        type=str,
        default=settings.ACS_YEAR,
        help=f"ACS 5-year vintage (default: {settings.ACS_YEAR}).",
    )
    parser.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Output GeoJSON path. Defaults to scripts/out/nyc_tracts_<year>.geojson",
    )
    parser.add_argument(
        "--boundary-file",
        type=Path,
        default=None,
        help="Pre-downloaded tract GeoJSON tried before the remote sources.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=settings.HTTP_TIMEOUT_SECONDS,
        help="HTTP timeout in seconds (default: 20).",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=settings.HTTP_RETRIES,
        help="Retry count for timeout/429/5xx failures (default: 2).",
    )
    parser.add_argument(
        "--include-water",
        action="store_true",
        help="Keep tracts classified as open water.",
    )
    parser.add_argument(
        "--all-counties",
        action="store_true",
        help="Keep boundaries outside the five borough counties.",
    )
    parser.add_argument(
        "--pretty",
        action="store_true",
        help="Pretty-print output JSON with indentation.",
    )
    return parser


def default_output_path(year: str) -> Path:
    return Path("scripts/out") / f"nyc_tracts_{year}.geojson"


def validate_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    if not (len(args.year) == 4 and args.year.isdigit()):
        parser.error("--year must be a four-digit year.")
    if args.timeout <= 0:
        parser.error("--timeout must be > 0.")
    if args.retries < 0:
        parser.error("--retries must be >= 0.")
    if args.boundary_file is not None and not args.boundary_file.is_file():
        parser.error(f"--boundary-file does not exist: {args.boundary_file}")


def settings_from_args(args: argparse.Namespace) -> Settings:
    return settings.model_copy(
        update={
            "ACS_YEAR": args.year,
            "HTTP_TIMEOUT_SECONDS": args.timeout,
            "HTTP_RETRIES": args.retries,
            "LOCAL_BOUNDARY_PATH": str(args.boundary_file) if args.boundary_file else None,
            "EXCLUDE_WATER_TRACTS": not args.include_water,
            "RESTRICT_TO_COUNTIES": not args.all_counties,
        }
    )


def export_tracts(args: argparse.Namespace) -> LoadResult:
    service = TractDataService(settings_from_args(args), requester=request_json)
    result = asyncio.run(service.load(args.year))
    if result is None:
        raise DataLoadError("Load cycle was superseded before it finished.")
    return result


def build_payload(result: LoadResult) -> dict[str, object]:
    return {
        "type": "FeatureCollection",
        "features": [feature.to_geojson() for feature in result.features],
        "meta": {
            "year": result.year,
            "boundary_source": result.boundary_source,
            "feature_count": len(result.features),
            "with_statistics_count": sum(1 for f in result.features if f.has_statistics),
            "loaded_at": result.loaded_at.isoformat(),
            "warnings": result.warnings,
        },
    }


def write_output(payload: dict[str, object], output_path: Path, pretty: bool) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        if pretty:
            json.dump(payload, f, indent=2, ensure_ascii=True)
            f.write("\n")
        else:
            json.dump(payload, f, ensure_ascii=True)


def print_summary(result: LoadResult, output_path: Path) -> None:
    print(f"Saved: {output_path}")
    print(f"ACS year: {result.year}")
    print(f"Boundary source: {result.boundary_source}")
    print(f"Tracts: {len(result.features)}")
    print("")
    print("Coverage by borough:")
    by_county = Counter(feature.county for feature in result.features)
    with_stats = Counter(feature.county for feature in result.features if feature.has_statistics)
    for code, count in sorted(by_county.items()):
        name = NYC_COUNTIES.get(code, f"County {code}")
        print(f"- {name}: {count} tracts ({with_stats[code]} with statistics)")
    for warning in result.warnings:
        print(f"Warning: {warning}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    validate_args(parser, args)

    output_path = args.out or default_output_path(args.year)

    try:
        result = export_tracts(args)
        write_output(build_payload(result), output_path, pretty=args.pretty)
        print_summary(result, output_path)
        return 0
    except DataLoadError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_LOAD_FAILED
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_INVALID_ARGS


if __name__ == "__main__":
    raise SystemExit(main())
