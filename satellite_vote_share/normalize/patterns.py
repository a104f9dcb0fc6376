"""Pattern -> canonical-name tables used by the normalizers.

Each table is ordered; the first matching pattern wins. Keeping them here as
data means upstream vocabulary changes show up as a diff to one file.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

# ---------------------------------------------------------------------------
# County returns (MEDSL countypres)
# ---------------------------------------------------------------------------
COUNTY_REQUIRED = (
    "county_fips",
    "county_name",
    "state_po",
    "year",
    "party",
    "mode",
    "candidatevotes",
    "totalvotes",
)
COUNTY_GROUP_KEYS = ["county_fips", "county_name", "state_po", "year"]
PARTY_DEM = "DEMOCRAT"
PARTY_REP = "REPUBLICAN"

# ---------------------------------------------------------------------------
# USDA ERS education table
# ---------------------------------------------------------------------------
EDUCATION_LEVELS: Tuple[Tuple[str, str], ...] = (
    (r"bachelor|four years", "bachelors_plus"),
    (r"some college", "some_college"),
    (r"less than|not high school", "less_than_hs"),
    (r"high school", "hs_only"),
)
MEASURE_TYPES: Tuple[Tuple[str, str], ...] = (
    (r"percent", "pct"),
)
DEFAULT_MEASURE = "count"

# Columns carried through the reshape untouched
EDUCATION_ID_COLUMNS = {"FIPS Code": "county_fips", "State": "state", "Area name": "county_name"}
EDUCATION_STATIC_PATTERN = r"Urban|Continuum"

# "<description>, <year range>"; the range starts with a digit
DESC_YEAR_SPLIT = re.compile(r"^(?P<desc>.*?),\s(?=[0-9])(?P<year_range>.+)$")

# ---------------------------------------------------------------------------
# USDA ERS unemployment table
# ---------------------------------------------------------------------------
EMPLOYMENT_ID_COLUMNS = {"FIPS_Code": "county_fips", "State": "state", "Area_Name": "county_name"}
EMPLOYMENT_STATIC_COLUMNS = {
    "Median_Household_Income_2022": "median_hh_income_2022",
    "Med_HH_Income_Percent_of_State_Total_2022": "pct_state_income_2022",
    "Rural_Urban_Continuum_Code_2023": "ruc_code_2023",
    "Urban_Influence_Code_2013": "ui_code_2013",
    "Metro_2023": "metro_2023",
}
EMPLOYMENT_MEASURES = {
    "Civilian_labor_force": "civilian_labor_force",
    "Employed": "employed",
    "Unemployed": "unemployed",
    "Unemployment_rate": "unemployment_rate",
}
MEASURE_YEAR_SPLIT = re.compile(r"^(?P<measure>.*)_(?P<year>\d{4})$")

# ---------------------------------------------------------------------------
# Precinct exports (attributes carried by the boundary files)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PrecinctSchema:
    """Where one year's precinct files keep their vote counts."""

    votes_rep: Sequence[str]
    votes_dem: Sequence[str]
    total_votes: Sequence[str] = ()
    # Summed when no total column exists (all candidates, every party)
    candidate_prefix: Optional[str] = None
    state: Sequence[str] = ("state", "STATE")


PRECINCT_SCHEMAS: Dict[int, PrecinctSchema] = {
    # VEST 2020: G20PRE<party><candidate>
    2020: PrecinctSchema(
        votes_rep=("G20PRERTRU",),
        votes_dem=("G20PREDBID",),
        total_votes=("TOTALVOTES", "total_votes"),
        candidate_prefix="G20PRE",
    ),
    # NYT 2024 tiles; votes_total is cut to votes_tota by the DBF limit
    2024: PrecinctSchema(
        votes_rep=("votes_rep",),
        votes_dem=("votes_dem",),
        total_votes=("votes_total", "votes_tota"),
    ),
}

# Embedding-service outputs
COUNTY_EMBEDDING_KEYS = ("GEOID", "geoid", "county_fips", "FIPS")
PRECINCT_EMBEDDING_KEYS = ("precinctID", "precinct_id", "precinctid")
AREA_COLUMNS = ("area_m2", "precinct_area", "county_area", "area")


def classify(text: str, table: Sequence[Tuple[str, str]], default: Optional[str] = None) -> Optional[str]:
    """Case-insensitive first-match lookup of ``text`` in a pattern table."""
    lowered = str(text).lower()
    for pattern, label in table:
        if re.search(pattern, lowered):
            return label
    return default


def first_present(columns, candidates: Sequence[str]) -> Optional[str]:
    """The first candidate present in ``columns`` (exact, then case-insensitive)."""
    cols = list(columns)
    for c in candidates:
        if c in cols:
            return c
    lower = {c.lower(): c for c in cols}
    for c in candidates:
        if c.lower() in lower:
            return lower[c.lower()]
    return None
