"""Tests for flattening county presidential returns."""

from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest

from satellite_vote_share.audit import CoverageAudit
from satellite_vote_share.errors import SchemaDriftError
from satellite_vote_share.normalize.county_votes import (
    OUTPUT_COLUMNS,
    flatten_county_returns,
    normalize_county_file,
)


def _row(fips, party, mode, cv, tv, year=2020, name="LOS ANGELES", state="CA"):
    return {
        "county_fips": fips,
        "county_name": name,
        "state_po": state,
        "year": year,
        "party": party,
        "mode": mode,
        "candidatevotes": cv,
        "totalvotes": tv,
    }


def test_total_rows_give_party_votes_and_reported_total() -> None:
    raw = pd.DataFrame(
        [
            _row("06037", "DEMOCRAT", "TOTAL", 3028885, 4264277),
            _row("06037", "REPUBLICAN", "TOTAL", 1145530, 4264277),
        ]
    )

    out = flatten_county_returns(raw)

    assert list(out.columns) == OUTPUT_COLUMNS
    assert len(out) == 1
    row = out.iloc[0]
    assert row["county_fips"] == "06037"
    assert row["votes_dem"] == 3028885
    assert row["votes_rep"] == 1145530
    assert row["total_votes"] == 4264277
    assert row["rep_share"] == pytest.approx(1145530 / 4264277)
    assert row["dem_share"] == pytest.approx(3028885 / 4264277)
    assert row["rep_share"] == pytest.approx(0.2687, abs=1e-3)
    assert row["dem_share"] == pytest.approx(0.7101, abs=1e-3)


def test_breakdown_rows_are_ignored_when_a_total_row_exists() -> None:
    raw = pd.DataFrame(
        [
            _row("06037", "DEMOCRAT", "TOTAL VOTES", 100, 250),
            _row("06037", "REPUBLICAN", "TOTAL VOTES", 120, 250),
            # duplicate total row with the same reported total
            _row("06037", "GREEN", "TOTAL VOTES", 30, 250),
            _row("06037", "DEMOCRAT", "ABSENTEE", 60, 250),
            _row("06037", "REPUBLICAN", "ELECTION DAY", 70, 250),
        ]
    )

    row = flatten_county_returns(raw).iloc[0]

    assert (row["votes_dem"], row["votes_rep"], row["total_votes"]) == (100, 120, 250)
    assert row["votes_dem"] + row["votes_rep"] <= row["total_votes"]


def test_without_total_rows_every_mode_and_party_is_summed() -> None:
    raw = pd.DataFrame(
        [
            _row("01001", "DEMOCRAT", "EARLY", 10, None, name="AUTAUGA", state="AL"),
            _row("01001", "DEMOCRAT", "ELECTION DAY", 20, None, name="AUTAUGA", state="AL"),
            _row("01001", "REPUBLICAN", "EARLY", 30, None, name="AUTAUGA", state="AL"),
            _row("01001", "REPUBLICAN", "ELECTION DAY", 40, None, name="AUTAUGA", state="AL"),
            _row("01001", "LIBERTARIAN", "EARLY", 5, None, name="AUTAUGA", state="AL"),
            _row("01001", "OTHER", "ELECTION DAY", 2, None, name="AUTAUGA", state="AL"),
        ]
    )

    row = flatten_county_returns(raw).iloc[0]

    assert row["votes_dem"] == 30
    assert row["votes_rep"] == 70
    # third parties and write-ins stay in the denominator
    assert row["total_votes"] == 107
    assert row["rep_share"] == pytest.approx(70 / 107)


def test_numeric_fips_are_padded_and_missing_fips_dropped() -> None:
    raw = pd.DataFrame(
        [
            _row(1001, "DEMOCRAT", "TOTAL", 10, 30, name="AUTAUGA", state="AL"),
            _row(1001, "REPUBLICAN", "TOTAL", 15, 30, name="AUTAUGA", state="AL"),
            _row(None, "DEMOCRAT", "TOTAL", 10, 30, name="FEDERAL PRECINCT", state="CT"),
        ]
    )
    audit = CoverageAudit("county_votes")

    out = flatten_county_returns(raw, audit=audit)

    assert out["county_fips"].tolist() == ["01001"]
    assert audit.get("county_fips present").dropped == 1


def test_malformed_group_is_excluded_not_the_batch() -> None:
    raw = pd.DataFrame(
        [
            _row("06037", "DEMOCRAT", "TOTAL", "abc", 100),
            _row("06037", "REPUBLICAN", "TOTAL", 40, 100),
            _row("06059", "DEMOCRAT", "TOTAL", 50, 100, name="ORANGE"),
            _row("06059", "REPUBLICAN", "TOTAL", 45, 100, name="ORANGE"),
        ]
    )
    audit = CoverageAudit("county_votes")

    out = flatten_county_returns(raw, audit=audit)

    assert out["county_fips"].tolist() == ["06059"]
    assert audit.get("parsable vote values").dropped == 1


def test_invalid_totals_and_shares_are_dropped() -> None:
    raw = pd.DataFrame(
        [
            _row("06001", "DEMOCRAT", "TOTAL", 0, 0, name="ALAMEDA"),
            _row("06001", "REPUBLICAN", "TOTAL", 0, 0, name="ALAMEDA"),
            # reported total smaller than a party's votes
            _row("06003", "DEMOCRAT", "TOTAL", 500, 100, name="ALPINE"),
            _row("06003", "REPUBLICAN", "TOTAL", 10, 100, name="ALPINE"),
            _row("06005", "DEMOCRAT", "TOTAL", 40, 100, name="AMADOR"),
            _row("06005", "REPUBLICAN", "TOTAL", 55, 100, name="AMADOR"),
        ]
    )
    audit = CoverageAudit("county_votes")

    out = flatten_county_returns(raw, audit=audit)

    assert out["county_fips"].tolist() == ["06005"]
    assert audit.get("total_votes > 0").dropped == 1
    assert audit.get("shares <= 1").dropped == 1
    assert ((out["rep_share"] > 0) & (out["rep_share"] <= 1)).all()
    assert ((out["dem_share"] > 0) & (out["dem_share"] <= 1)).all()
    assert (out["total_votes"] > 0).all()


def test_output_is_keyed_by_county_and_year() -> None:
    raw = pd.DataFrame(
        [
            _row("06037", "DEMOCRAT", "TOTAL", 10, 20, year=2024),
            _row("06037", "REPUBLICAN", "TOTAL", 9, 20, year=2024),
            _row("06037", "DEMOCRAT", "TOTAL", 12, 20, year=2020),
            _row("06037", "REPUBLICAN", "TOTAL", 7, 20, year=2020),
        ]
    )

    out = flatten_county_returns(raw)

    assert out[["county_fips", "year"]].values.tolist() == [["06037", 2020], ["06037", 2024]]
    assert not out.duplicated(["county_fips", "year"]).any()


def test_missing_required_column_raises_schema_drift() -> None:
    raw = pd.DataFrame([_row("06037", "DEMOCRAT", "TOTAL", 1, 2)]).drop(columns=["mode"])

    with pytest.raises(SchemaDriftError):
        flatten_county_returns(raw)


def test_normalizing_twice_writes_identical_bytes(tmp_path: Path) -> None:
    raw = pd.DataFrame(
        [
            _row("06059", "REPUBLICAN", "TOTAL", 45, 100, name="ORANGE"),
            _row("06037", "DEMOCRAT", "TOTAL", 3028885, 4264277),
            _row("06059", "DEMOCRAT", "TOTAL", 50, 100, name="ORANGE"),
            _row("06037", "REPUBLICAN", "TOTAL", 1145530, 4264277),
        ]
    )
    src = tmp_path / "countypres.csv"
    raw.to_csv(src, index=False)

    first = tmp_path / "a.csv"
    second = tmp_path / "b.csv"
    normalize_county_file(src, first)
    normalize_county_file(src, second)

    assert first.read_bytes() == second.read_bytes()
    reread = pd.read_csv(first, dtype={"county_fips": str})
    assert reread["county_fips"].tolist() == ["06037", "06059"]
