"""
Join embedding statistics returned by the geospatial service onto the
canonical vote tables.

Both sides are filtered first (``total_votes >= 7``, area > 0), then joined
inner on the unit identifier: county tables on the 5-digit FIPS, precinct
tables on ``precinct_id``. Only units known on both sides survive, and every
filter and join is recorded in a CoverageAudit so the loss is visible.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional

import numpy as np
import pandas as pd
from loguru import logger

from ..audit import CoverageAudit
from ..config import COUNTY_KEY, PRECINCT_KEY
from ..errors import SchemaDriftError
from ..io import read_any, write_table
from ..keys import pad_fips
from ..normalize.covariates import education_subset, employment_subset
from ..normalize.patterns import AREA_COLUMNS, COUNTY_EMBEDDING_KEYS, PRECINCT_EMBEDDING_KEYS, first_present
from ..normalize.precinct_votes import normalize_precinct_votes
from ..settings import CovariateParams, JoinParams

LEVELS = ("county", "precinct")
EMBEDDING_TOTAL_COLUMNS = ("total_votes", "TOTALVOTES", "votes_total", "votes_tota")

VOTE_COLUMNS = ["votes_dem", "votes_rep", "total_votes", "rep_share", "dem_share"]
ID_COLUMNS = {
    "county": [COUNTY_KEY, "county_name", "state_po", "year"],
    "precinct": [PRECINCT_KEY, "state", "year"],
}


def _key(level: str) -> str:
    if level not in LEVELS:
        raise ValueError(f"level must be one of {LEVELS}, got {level!r}")
    return COUNTY_KEY if level == "county" else PRECINCT_KEY


def embedding_columns(columns, regex: str = JoinParams().feature_regex) -> List[str]:
    """Columns named like ``{band}_{statistic}`` (A00_mean, A63_stdDev, ...)."""
    pat = re.compile(regex)
    return [c for c in columns if pat.match(str(c))]


def prepare_embeddings(
    emb: pd.DataFrame,
    level: str,
    params: JoinParams = JoinParams(),
    audit: Optional[CoverageAudit] = None,
) -> pd.DataFrame:
    """Reduce an embedding export to (key, area_m2, features) and apply the unit filters."""
    key = _key(level)
    audit = audit or CoverageAudit(f"join_{level}")

    key_candidates = COUNTY_EMBEDDING_KEYS if level == "county" else PRECINCT_EMBEDDING_KEYS
    key_col = first_present(emb.columns, key_candidates)
    if key_col is None:
        raise SchemaDriftError(f"Embedding table has no identifier column (looked for {list(key_candidates)})")
    area_col = first_present(emb.columns, AREA_COLUMNS)
    if area_col is None:
        raise SchemaDriftError(f"Embedding table has no area column (looked for {list(AREA_COLUMNS)})")
    features = embedding_columns(emb.columns, params.feature_regex)
    if not features:
        raise SchemaDriftError("Embedding table has no {band}_{statistic} feature columns")

    emb = emb.reset_index(drop=True)
    ids = pd.DataFrame(
        {
            key: pad_fips(emb[key_col]) if level == "county" else emb[key_col].astype("string"),
            "area_m2": pd.to_numeric(emb[area_col], errors="coerce"),
        }
    )
    out = pd.concat([ids, emb[features].apply(pd.to_numeric, errors="coerce")], axis=1)
    audit.record("embedding rows", len(out), len(out))

    out = audit.filter(out, out[key].notna(), "embedding identifier present")
    total_col = first_present(emb.columns, EMBEDDING_TOTAL_COLUMNS)
    if total_col is not None:
        total = pd.to_numeric(emb.loc[out.index, total_col], errors="coerce")
        out = audit.filter(out, total >= params.min_total_votes, f"embedding total_votes >= {params.min_total_votes}")
    out = audit.filter(out, out["area_m2"] > 0, "embedding area > 0")

    dupes = int(out[key].duplicated().sum())
    if dupes:
        raise SchemaDriftError(f"{dupes} duplicated {key} values in embedding table")
    return out.reset_index(drop=True)


def join_embeddings(
    emb: pd.DataFrame,
    votes: pd.DataFrame,
    level: str,
    year: Optional[int] = None,
    params: JoinParams = JoinParams(),
    audit: Optional[CoverageAudit] = None,
) -> pd.DataFrame:
    """Inner-join embeddings onto one year of canonical vote rows.

    Adds ``area_km2`` and ``vote_density`` (0 where the area is 0).
    """
    key = _key(level)
    audit = audit or CoverageAudit(f"join_{level}" + (f"_{year}" if year else ""))

    missing = [c for c in [key] + VOTE_COLUMNS if c not in votes.columns]
    if missing:
        raise SchemaDriftError(f"Vote table missing columns: {missing}")
    votes = votes.copy()
    if level == "county":
        votes[key] = pad_fips(votes[key])
    else:
        votes[key] = votes[key].astype("string")
    audit.record("vote rows", len(votes), len(votes))
    if year is not None and "year" in votes.columns:
        votes = audit.filter(votes, votes["year"] == int(year), f"vote year == {year}")
    votes = audit.filter(
        votes, votes["total_votes"] >= params.min_total_votes, f"vote total_votes >= {params.min_total_votes}"
    )
    if votes[key].duplicated().any():
        raise SchemaDriftError(f"Vote table has repeated {key} values; pass a single year")

    prep = prepare_embeddings(emb, level, params, audit)
    features = [c for c in prep.columns if c not in (key, "area_m2")]

    merged = prep.merge(votes, on=key, how="inner", validate="one_to_one")
    audit.record("inner join (embedding side)", len(prep), len(merged))
    audit.record("inner join (vote side)", len(votes), len(merged))

    merged["area_km2"] = merged["area_m2"] / 1e6
    with np.errstate(divide="ignore", invalid="ignore"):
        merged["vote_density"] = np.where(
            merged["area_km2"] > 0, merged["total_votes"] / merged["area_km2"], 0.0
        )

    ids = [c for c in ID_COLUMNS[level] if c in merged.columns]
    cols = ids + VOTE_COLUMNS + ["area_km2", "vote_density"] + features
    out = merged[cols].sort_values(key, kind="mergesort").reset_index(drop=True)
    logger.info(f"[join_{level}] {len(out)} joined rows, {len(features)} embedding features")
    return out


def attach_covariates(
    joined: pd.DataFrame,
    education: Optional[pd.DataFrame] = None,
    employment: Optional[pd.DataFrame] = None,
) -> pd.DataFrame:
    """Left-join county covariate subsets; the row count never changes."""
    out = joined
    for name, cov in (("education", education), ("employment", employment)):
        if cov is None:
            continue
        cov = cov.copy()
        cov[COUNTY_KEY] = pad_fips(cov[COUNTY_KEY])
        cov = cov.drop_duplicates(COUNTY_KEY)
        before = len(out)
        out = out.merge(cov, on=COUNTY_KEY, how="left", validate="many_to_one")
        unmatched = int(out[[c for c in cov.columns if c != COUNTY_KEY]].isna().all(axis=1).sum())
        if unmatched:
            logger.warning(f"[covariates] {unmatched} of {before} counties have no {name} row")
    return out


def join_embedding_file(
    emb_path: Path,
    out_path: Path,
    level: str,
    year: int,
    votes_path: Optional[Path] = None,
    education_path: Optional[Path] = None,
    employment_path: Optional[Path] = None,
    params: JoinParams = JoinParams(),
    cov_params: CovariateParams = CovariateParams(),
) -> pd.DataFrame:
    """File-level wrapper used by the CLI.

    For precincts the vote table may be omitted; it is then derived from the
    attributes the embedding export carries through.
    """
    emb = read_any(emb_path)
    if "geometry" in emb.columns:
        emb = pd.DataFrame(emb.drop(columns=["geometry"]))

    if votes_path is not None:
        votes = read_any(votes_path)
    elif level == "precinct":
        votes = normalize_precinct_votes(emb, year=year)
    else:
        raise ValueError("county joins need a vote table")

    out = join_embeddings(emb, votes, level, year, params)

    if education_path is not None or employment_path is not None:
        if level != "county":
            raise ValueError("covariates attach to county tables only")
        edu = (
            education_subset(read_any(education_path), cov_params.education_year_range)
            if education_path is not None
            else None
        )
        emp = employment_subset(read_any(employment_path), year, cov_params) if employment_path is not None else None
        out = attach_covariates(out, edu, emp)

    write_table(out, out_path)
    logger.success(f"[join_{level}] Wrote {len(out)} rows to {out_path}")
    return out
