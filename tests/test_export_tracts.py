from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "scripts"))
import export_tracts as ex  # noqa: E402

from fakes import collection, open_data_feature  # noqa: E402


def test_cli_smoke_valid_run_writes_output(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, upstream, capsys
) -> None:
    monkeypatch.setattr(ex, "request_json", upstream)
    monkeypatch.setattr(ex, "settings", ex.settings.model_copy(update={"COUNTY_CODES": ["061", "047"]}))
    out_file = tmp_path / "tracts.geojson"

    exit_code = ex.main(["--out", str(out_file), "--pretty"])

    assert exit_code == 0
    payload = json.loads(out_file.read_text(encoding="utf-8"))
    assert payload["type"] == "FeatureCollection"
    assert payload["meta"]["boundary_source"] == "nyc-open-data"
    assert {f["properties"]["GEOID"] for f in payload["features"]} == {
        "36061000100",
        "36061000200",
        "36047000300",
    }
    output = capsys.readouterr().out
    assert "Manhattan: 2 tracts (2 with statistics)" in output
    assert "Brooklyn: 1 tracts (1 with statistics)" in output


def test_cli_load_failure_returns_exit_3(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, upstream
) -> None:
    upstream.responses.clear()
    monkeypatch.setattr(ex, "request_json", upstream)
    out_file = tmp_path / "tracts.geojson"

    exit_code = ex.main(["--out", str(out_file), "--retries", "0"])

    assert exit_code == 3
    assert not out_file.exists()


def test_cli_boundary_file_is_tried_first(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, upstream
) -> None:
    boundary_file = tmp_path / "local.geojson"
    boundary_file.write_text(
        json.dumps(collection(open_data_feature("36061000100", -73.99, 40.75))),
        encoding="utf-8",
    )
    monkeypatch.setattr(ex, "request_json", upstream)
    out_file = tmp_path / "tracts.geojson"

    exit_code = ex.main(["--boundary-file", str(boundary_file), "--out", str(out_file)])

    assert exit_code == 0
    payload = json.loads(out_file.read_text(encoding="utf-8"))
    assert payload["meta"]["boundary_source"] == "local-file"
    assert "boundaries:nyc-open-data" not in upstream.calls


def test_cli_flags_map_to_settings() -> None:
    args = ex.build_parser().parse_args(
        ["--year", "2022", "--include-water", "--all-counties", "--timeout", "5", "--retries", "1"]
    )
    configured = ex.settings_from_args(args)
    assert configured.ACS_YEAR == "2022"
    assert configured.EXCLUDE_WATER_TRACTS is False
    assert configured.RESTRICT_TO_COUNTIES is False
    assert configured.HTTP_TIMEOUT_SECONDS == 5
    assert configured.HTTP_RETRIES == 1
    assert configured.LOCAL_BOUNDARY_PATH is None


@pytest.mark.parametrize(
    "argv",
    [
        ["--retries", "-1"],
        ["--timeout", "0"],
        ["--year", "23"],
        ["--boundary-file", "/nonexistent/tracts.geojson"],
    ],
)
def test_invalid_arguments_rejected(argv) -> None:
    with pytest.raises(SystemExit) as exc_info:
        ex.main(argv)
    assert exc_info.value.code == 2
