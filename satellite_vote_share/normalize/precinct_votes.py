from __future__ import annotations

from pathlib import Path
from typing import Optional

import pandas as pd
from loguru import logger

from ..audit import CoverageAudit
from ..config import ID_FIELD, PRECINCT_KEY
from ..errors import SchemaDriftError
from ..io import read_any, write_table
from .county_votes import add_shares, drop_invalid_shares
from .patterns import PRECINCT_SCHEMAS, PrecinctSchema, first_present

OUTPUT_COLUMNS = [
    PRECINCT_KEY,
    "state",
    "year",
    "votes_dem",
    "votes_rep",
    "total_votes",
    "rep_share",
    "dem_share",
]


def _require(df: pd.DataFrame, candidates, what: str) -> str:
    col = first_present(df.columns, candidates)
    if col is None:
        raise SchemaDriftError(f"Precinct table has no {what} column (looked for {list(candidates)})")
    return col


def _total_votes(df: pd.DataFrame, schema: PrecinctSchema) -> pd.Series:
    col = first_present(df.columns, schema.total_votes) if schema.total_votes else None
    if col is not None:
        return pd.to_numeric(df[col], errors="coerce")
    if schema.candidate_prefix:
        prefix = schema.candidate_prefix.upper()
        cand = [c for c in df.columns if str(c).upper().startswith(prefix)]
        if cand:
            logger.info(f"[precinct_votes] total_votes = sum of {len(cand)} {prefix}* columns")
            return df[cand].apply(pd.to_numeric, errors="coerce").fillna(0).sum(axis=1)
    raise SchemaDriftError("Precinct table has no total column and no candidate columns to sum")


def normalize_precinct_votes(
    df: pd.DataFrame,
    year: int,
    state: Optional[str] = None,
    id_field: str = ID_FIELD,
    audit: Optional[CoverageAudit] = None,
) -> pd.DataFrame:
    """
    Map one year's precinct attributes onto the canonical vote columns.

    The year picks a schema from PRECINCT_SCHEMAS. When the file carries no
    explicit total, total_votes is the sum over every candidate column, so
    third-party votes stay in the denominator.
    """
    if year not in PRECINCT_SCHEMAS:
        raise SchemaDriftError(f"No precinct schema registered for year {year}")
    schema = PRECINCT_SCHEMAS[year]
    audit = audit or CoverageAudit(f"precinct_votes_{year}")

    key_col = _require(df, (id_field, PRECINCT_KEY), "identifier")
    rep_col = _require(df, schema.votes_rep, "Republican votes")
    dem_col = _require(df, schema.votes_dem, "Democratic votes")

    out = pd.DataFrame(
        {
            PRECINCT_KEY: df[key_col].astype("string"),
            "year": int(year),
            "votes_dem": pd.to_numeric(df[dem_col], errors="coerce"),
            "votes_rep": pd.to_numeric(df[rep_col], errors="coerce"),
            "total_votes": _total_votes(df, schema),
        },
        index=df.index,
    )
    state_col = first_present(df.columns, schema.state)
    if state_col is not None:
        out["state"] = df[state_col].astype("string").str.strip().str.upper()
    else:
        out["state"] = state.upper() if state else pd.NA
    audit.record("raw rows", len(out), len(out))

    out = audit.filter(out, out[PRECINCT_KEY].notna(), "identifier present")
    out = audit.filter(
        out, out[["votes_dem", "votes_rep", "total_votes"]].notna().all(axis=1), "numeric votes"
    )
    out = add_shares(out)
    out = drop_invalid_shares(out, audit)
    for c in ["votes_dem", "votes_rep", "total_votes"]:
        out[c] = out[c].round().astype("int64")

    dupes = int(out[PRECINCT_KEY].duplicated().sum())
    if dupes:
        raise SchemaDriftError(f"{dupes} duplicated {PRECINCT_KEY} values; identifiers must be unique")

    return out[OUTPUT_COLUMNS].reset_index(drop=True)


def normalize_precinct_file(in_path: Path, out_path: Path, year: int, state: Optional[str] = None) -> pd.DataFrame:
    logger.info(f"[precinct_votes] Reading {in_path}")
    raw = read_any(in_path)
    if "geometry" in raw.columns:
        raw = pd.DataFrame(raw.drop(columns=["geometry"]))
    clean = normalize_precinct_votes(raw, year=year, state=state)
    write_table(clean, out_path)
    logger.success(f"[precinct_votes] Wrote {len(clean)} rows to {out_path}")
    return clean
