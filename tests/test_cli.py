"""Tests for the command line and the ogr2ogr conversion wrapper."""

from __future__ import annotations

import subprocess
import zipfile
from pathlib import Path

import pandas as pd
import pytest

from satellite_vote_share.cli import build_parser, main
from satellite_vote_share.geometry.convert import ConversionError, convert_with_ogr2ogr, ogr2ogr_command


def _county_raw() -> pd.DataFrame:
    rows = []
    for fips, dem, rep, total in (("6037", 3028885, 1145530, 4264277), ("1001", 5496, 19838, 27770)):
        for party, votes in (("DEMOCRAT", dem), ("REPUBLICAN", rep)):
            rows.append(
                {
                    "year": 2020,
                    "state_po": "CA" if fips == "6037" else "AL",
                    "county_name": "X",
                    "county_fips": fips,
                    "party": party,
                    "mode": "TOTAL",
                    "candidatevotes": votes,
                    "totalvotes": total,
                }
            )
    return pd.DataFrame(rows)


def test_every_stage_has_a_subcommand() -> None:
    parser = build_parser()
    choices = parser._subparsers._group_actions[0].choices

    assert set(choices) == {
        "acquire",
        "normalize-counties",
        "normalize-precincts",
        "normalize-covariates",
        "assign-ids",
        "convert",
        "join",
        "train",
        "warehouse",
    }


def test_normalize_counties_then_warehouse(tmp_path: Path) -> None:
    raw = tmp_path / "countypres.csv"
    _county_raw().to_csv(raw, index=False)
    clean = tmp_path / "clean.csv"

    assert main(["normalize-counties", "--in", str(raw), "--out", str(clean)]) == 0
    out = pd.read_csv(clean, dtype={"county_fips": str})
    assert out["county_fips"].tolist() == ["01001", "06037"]

    code = main(
        [
            "warehouse",
            "--db", str(tmp_path / "w.duckdb"),
            "--county-votes", str(clean),
            "--export-dir", str(tmp_path / "export"),
            "--format", "csv",
        ]
    )
    assert code == 0
    assert (tmp_path / "export" / "county_votes.csv").exists()


def test_schema_drift_exits_with_code_2(tmp_path: Path) -> None:
    raw = tmp_path / "countypres.csv"
    _county_raw().drop(columns=["mode"]).to_csv(raw, index=False)

    assert main(["normalize-counties", "--in", str(raw), "--out", str(tmp_path / "clean.csv")]) == 2
    assert not (tmp_path / "clean.csv").exists()


def test_ogr2ogr_command_layout(tmp_path: Path) -> None:
    cmd = ogr2ogr_command(tmp_path / "in.topojson", tmp_path / "out", t_srs="EPSG:5070")

    assert cmd[:4] == ["ogr2ogr", "-f", "ESRI Shapefile", str(tmp_path / "out")]
    assert cmd[cmd.index("-t_srs") + 1] == "EPSG:5070"


def test_convert_without_gdal_exits_with_code_2(tmp_path: Path, monkeypatch) -> None:
    src = tmp_path / "nv.topojson"
    src.write_text("{}")
    monkeypatch.setattr("satellite_vote_share.geometry.convert.shutil.which", lambda name: None)

    assert main(["convert", "--in", str(src), "--out", str(tmp_path / "nv.zip")]) == 2
    assert not (tmp_path / "nv.zip").exists()


def test_convert_failure_is_reported(tmp_path: Path, monkeypatch) -> None:
    src = tmp_path / "nv.topojson"
    src.write_text("{}")

    def fake_run(cmd, capture_output, text):
        return subprocess.CompletedProcess(cmd, 1, "", "FAILURE: unable to open datasource")

    monkeypatch.setattr("satellite_vote_share.geometry.convert.subprocess.run", fake_run)

    with pytest.raises(ConversionError, match="unable to open"):
        convert_with_ogr2ogr(src, tmp_path / "out", executable="/usr/bin/ogr2ogr")


def test_convert_zips_every_sidecar_flat(tmp_path: Path, monkeypatch) -> None:
    src = tmp_path / "nv.topojson"
    src.write_text("{}")

    def fake_run(cmd, capture_output, text):
        dest = Path(cmd[3])
        dest.mkdir(parents=True, exist_ok=True)
        for ext in (".shp", ".shx", ".dbf", ".prj"):
            (dest / f"nv{ext}").write_bytes(b"x")
        return subprocess.CompletedProcess(cmd, 0, "", "")

    monkeypatch.setattr("satellite_vote_share.geometry.convert.shutil.which", lambda name: "/usr/bin/ogr2ogr")
    monkeypatch.setattr("satellite_vote_share.geometry.convert.subprocess.run", fake_run)

    assert main(["convert", "--in", str(src), "--out", str(tmp_path / "nv.zip")]) == 0
    with zipfile.ZipFile(tmp_path / "nv.zip") as zf:
        assert sorted(zf.namelist()) == ["nv.dbf", "nv.prj", "nv.shp", "nv.shx"]


def test_unknown_model_is_rejected_by_the_parser(tmp_path: Path, capsys) -> None:
    with pytest.raises(SystemExit) as exc:
        main(["train", "--in", str(tmp_path / "county_2020.csv"), "--label", "x", "--models", "xgboost"])

    assert exc.value.code == 2
    assert "invalid choice" in capsys.readouterr().err
