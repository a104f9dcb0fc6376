from __future__ import annotations

import pandas as pd
import pytest

from satellite_vote_share.errors import SchemaDriftError
from satellite_vote_share.normalize.precinct_votes import OUTPUT_COLUMNS, normalize_precinct_votes


def test_vest_2020_total_is_sum_of_every_candidate_column() -> None:
    raw = pd.DataFrame(
        {
            "precinctID": ["p-1", "p-2"],
            "state": ["ca", "ca"],
            "G20PRERTRU": [40, 10],
            "G20PREDBID": [55, 80],
            "G20PRELJOR": [3, 5],
            "G20PREGHAW": [2, 5],
        }
    )

    out = normalize_precinct_votes(raw, year=2020)

    assert list(out.columns) == OUTPUT_COLUMNS
    assert out["total_votes"].tolist() == [100, 100]
    assert out["votes_rep"].tolist() == [40, 10]
    assert out["state"].tolist() == ["CA", "CA"]
    assert out.loc[0, "rep_share"] == pytest.approx(0.40)
    assert (out["votes_dem"] + out["votes_rep"] <= out["total_votes"]).all()


def test_nyt_2024_uses_truncated_total_column_and_given_state() -> None:
    raw = pd.DataFrame(
        {
            "precinctID": ["a", "b", "c"],
            "votes_rep": [10, 0, 30],
            "votes_dem": [20, 0, 30],
            "votes_tota": [31, 0, 61],
        }
    )

    out = normalize_precinct_votes(raw, year=2024, state="tx")

    # the empty precinct is dropped by the positive-total filter
    assert out["precinct_id"].tolist() == ["a", "c"]
    assert out["state"].tolist() == ["TX", "TX"]
    assert out["year"].unique().tolist() == [2024]


def test_duplicate_identifiers_are_rejected() -> None:
    raw = pd.DataFrame(
        {"precinctID": ["a", "a"], "votes_rep": [1, 2], "votes_dem": [1, 2], "votes_tota": [3, 5]}
    )

    with pytest.raises(SchemaDriftError):
        normalize_precinct_votes(raw, year=2024)


def test_missing_vote_column_or_unknown_year_raises() -> None:
    raw = pd.DataFrame({"precinctID": ["a"], "votes_dem": [1], "votes_tota": [3]})

    with pytest.raises(SchemaDriftError):
        normalize_precinct_votes(raw, year=2024)
    with pytest.raises(SchemaDriftError):
        normalize_precinct_votes(raw, year=2016)
