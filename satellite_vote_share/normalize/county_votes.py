from __future__ import annotations

from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
from loguru import logger

from ..audit import CoverageAudit
from ..config import TOTAL_MODES
from ..errors import SchemaDriftError
from ..io import read_any, write_table
from ..keys import pad_fips
from .patterns import COUNTY_GROUP_KEYS, COUNTY_REQUIRED, PARTY_DEM, PARTY_REP

OUTPUT_COLUMNS = [
    "county_fips",
    "county_name",
    "state_po",
    "year",
    "votes_dem",
    "votes_rep",
    "total_votes",
    "rep_share",
    "dem_share",
]


def _coerce_numeric(s: pd.Series) -> tuple[pd.Series, pd.Series]:
    """Numeric values plus a mask of entries that were present but unparsable."""
    num = pd.to_numeric(s, errors="coerce")
    raw = s.astype("string").str.strip()
    bad = raw.notna() & ~raw.str.upper().isin({"", "NA", "NAN"}) & num.isna()
    return num, bad.fillna(False).astype(bool)


def add_shares(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    total = df["total_votes"].astype(float)
    with np.errstate(divide="ignore", invalid="ignore"):
        df["rep_share"] = df["votes_rep"].astype(float) / total
        df["dem_share"] = df["votes_dem"].astype(float) / total
    return df


def drop_invalid_shares(df: pd.DataFrame, audit: CoverageAudit) -> pd.DataFrame:
    """Drop rows with non-positive totals or any share above 1.0."""
    df = audit.filter(df, df["total_votes"] > 0, "total_votes > 0")
    df = audit.filter(df, (df["rep_share"] <= 1.0) & (df["dem_share"] <= 1.0), "shares <= 1")
    return df


def flatten_county_returns(df: pd.DataFrame, audit: Optional[CoverageAudit] = None) -> pd.DataFrame:
    """
    Collapse county-year-party-mode rows into one row per county-year.

    Within each (county_fips, county_name, state_po, year) group:
      * if any row has mode TOTAL / TOTAL VOTES, party votes come only from
        those rows and total_votes is the largest reported totalvotes among
        them (duplicate total rows carry the same value);
      * otherwise every mode row is a disjoint slice, so party votes are
        summed over all modes and total_votes is the sum of candidatevotes
        over every party, third parties and write-ins included.

    Groups holding unparsable vote values are excluded (not the batch), as
    are rows with total_votes <= 0 or a share above 1. Output is sorted by
    (county_fips, year) so repeated runs write identical bytes.
    """
    audit = audit or CoverageAudit("county_votes")

    missing = [c for c in COUNTY_REQUIRED if c not in df.columns]
    if missing:
        raise SchemaDriftError(f"County returns missing required columns: {missing}")

    df = df[list(COUNTY_REQUIRED)].copy()
    audit.record("raw rows", len(df), len(df))

    df["county_fips"] = pad_fips(df["county_fips"])
    df = audit.filter(df, df["county_fips"].notna(), "county_fips present")

    df["year"] = pd.to_numeric(df["year"], errors="coerce")
    df = audit.filter(df, df["year"].notna(), "year present")
    df["year"] = df["year"].astype("int64")

    df["party"] = df["party"].astype("string").str.strip().str.upper()
    df["mode"] = df["mode"].astype("string").str.strip().str.upper()
    df["candidatevotes"], bad_cv = _coerce_numeric(df["candidatevotes"])
    df["totalvotes"], bad_tv = _coerce_numeric(df["totalvotes"])
    df["_bad"] = bad_cv | bad_tv

    is_total = df["mode"].isin(TOTAL_MODES).fillna(False).astype(bool)
    is_dem = (df["party"] == PARTY_DEM).fillna(False).astype(bool)
    is_rep = (df["party"] == PARTY_REP).fillna(False).astype(bool)
    cv = df["candidatevotes"]

    df["_is_total"] = is_total
    df["_dem_total"] = cv.where(is_dem & is_total, 0.0).fillna(0.0)
    df["_rep_total"] = cv.where(is_rep & is_total, 0.0).fillna(0.0)
    df["_dem_all"] = cv.where(is_dem, 0.0).fillna(0.0)
    df["_rep_all"] = cv.where(is_rep, 0.0).fillna(0.0)
    df["_cv_all"] = cv.fillna(0.0)
    df["_tv_total"] = df["totalvotes"].where(is_total)

    g = df.groupby(COUNTY_GROUP_KEYS, dropna=False, sort=True)
    agg = g.agg(
        has_total_row=("_is_total", "any"),
        bad=("_bad", "any"),
        dem_total=("_dem_total", "sum"),
        rep_total=("_rep_total", "sum"),
        dem_all=("_dem_all", "sum"),
        rep_all=("_rep_all", "sum"),
        cv_all=("_cv_all", "sum"),
        tv_total=("_tv_total", "max"),
    ).reset_index()
    audit.record("county-year groups", len(agg), len(agg))

    n_bad = int(agg["bad"].sum())
    if n_bad:
        logger.warning(f"[county_votes] {n_bad} groups hold unparsable vote values; excluded")
    agg = audit.filter(agg, ~agg["bad"], "parsable vote values")

    has_total = agg["has_total_row"].astype(bool)
    agg["votes_dem"] = np.where(has_total, agg["dem_total"], agg["dem_all"])
    agg["votes_rep"] = np.where(has_total, agg["rep_total"], agg["rep_all"])
    agg["total_votes"] = np.where(has_total, agg["tv_total"], agg["cv_all"])

    out = add_shares(agg)
    out = drop_invalid_shares(out, audit)

    for c in ["votes_dem", "votes_rep", "total_votes"]:
        out[c] = out[c].round().astype("int64")

    out = out.sort_values(["county_fips", "year"], kind="mergesort").reset_index(drop=True)
    logger.info(
        f"[county_votes] {len(out)} county-year rows; years={sorted(out['year'].unique().tolist())}"
    )
    return out[OUTPUT_COLUMNS]


def normalize_county_file(in_path: Path, out_path: Path) -> pd.DataFrame:
    logger.info(f"[county_votes] Reading {in_path}")
    raw = read_any(in_path)
    clean = flatten_county_returns(raw)
    write_table(clean, out_path)
    logger.success(f"[county_votes] Wrote {out_path}")
    return clean
