from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

import pandas as pd
from loguru import logger

from ..errors import SchemaDriftError
from ..io import read_any, stdcols, write_table
from ..keys import pad_fips
from ..settings import CovariateParams
from .patterns import (
    DEFAULT_MEASURE,
    DESC_YEAR_SPLIT,
    EDUCATION_ID_COLUMNS,
    EDUCATION_LEVELS,
    EDUCATION_STATIC_PATTERN,
    EMPLOYMENT_ID_COLUMNS,
    EMPLOYMENT_MEASURES,
    EMPLOYMENT_STATIC_COLUMNS,
    MEASURE_TYPES,
    MEASURE_YEAR_SPLIT,
    classify,
)

EMPLOYMENT_OUTPUT = [
    "county_fips",
    "state",
    "county_name",
    "year",
    "unemployment_rate",
    "unemployed",
    "employed",
    "civilian_labor_force",
]


def _pivot_first(long: pd.DataFrame, index: list, columns: str, values: str) -> pd.DataFrame:
    """Long -> wide keeping the first non-null value per cell (NaN keys kept)."""
    wide = long.groupby(index + [columns], dropna=False, sort=True)[values].first().unstack(columns)
    wide.columns.name = None
    return wide.reset_index()


def _widen(df: pd.DataFrame, id_map: dict, what: str) -> pd.DataFrame:
    """Long (id, Attribute, Value) -> one row per county, one column per attribute."""
    required = list(id_map) + ["Attribute", "Value"]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise SchemaDriftError(f"{what} table missing columns: {missing}")

    ids = list(id_map)
    long = df[required].copy()
    long["Value"] = pd.to_numeric(long["Value"], errors="coerce")
    dupes = int(long.duplicated(ids + ["Attribute"]).sum())
    if dupes:
        logger.warning(f"[{what}] {dupes} repeated (county, attribute) pairs; keeping the first")
    return _pivot_first(long, ids, "Attribute", "Value")


def classify_education_attribute(desc: str) -> Optional[str]:
    """``"Percent of adults with a bachelor's degree"`` -> ``"pct_bachelors_plus"``."""
    level = classify(desc, EDUCATION_LEVELS)
    if level is None:
        return None
    measure = classify(desc, MEASURE_TYPES, default=DEFAULT_MEASURE)
    return f"{measure}_{level}"


def clean_education(df: pd.DataFrame) -> pd.DataFrame:
    """
    Reshape the USDA ERS education table into semantic buckets.

    Attributes look like "<description>, <year range>". Each description is
    classified into {bachelors_plus, some_college, less_than_hs, hs_only} x
    {count, pct}; the result has one row per (county_fips, year_range).
    Unmatched descriptions are dropped and counted. If nothing matches at
    all, the upstream vocabulary changed and SchemaDriftError is raised.
    """
    wide = _widen(df, EDUCATION_ID_COLUMNS, "education")
    ids = list(EDUCATION_ID_COLUMNS)

    static = [c for c in wide.columns if c not in ids and re.search(EDUCATION_STATIC_PATTERN, str(c))]
    measured = [c for c in wide.columns if c not in ids and c not in static]

    long = wide.melt(id_vars=ids, value_vars=measured, var_name="raw_name", value_name="value")

    parts = long["raw_name"].astype(str).str.extract(DESC_YEAR_SPLIT)
    long["desc"] = parts["desc"]
    long["year_range"] = parts["year_range"]
    no_year = long["year_range"].isna()
    if no_year.any():
        names = sorted(long.loc[no_year, "raw_name"].unique().tolist())
        logger.warning(f"[education] {len(names)} attributes carry no year range; dropped: {names[:5]}")
        long = long.loc[~no_year].copy()

    long["new_col_name"] = long["desc"].map(classify_education_attribute)
    unmatched = sorted(long.loc[long["new_col_name"].isna(), "desc"].unique().tolist())
    matched = long["new_col_name"].notna()
    if not matched.any():
        raise SchemaDriftError(
            "Education classifier matched no attribute descriptions; "
            f"vocabulary changed upstream? Examples: {unmatched[:10]}"
        )
    if unmatched:
        logger.warning(f"[education] {len(unmatched)} descriptions unmatched and dropped: {unmatched[:5]}")
    long = long.loc[matched].copy()

    out = _pivot_first(long, ids + ["year_range"], "new_col_name", "value")
    out = out.merge(wide[ids + static], on=ids, how="left")
    out = out.rename(columns=EDUCATION_ID_COLUMNS)
    out = stdcols(out)
    out["county_fips"] = pad_fips(out["county_fips"])
    out = out.sort_values(["county_fips", "year_range"], kind="mergesort").reset_index(drop=True)
    logger.info(f"[education] {len(out)} rows; year ranges={sorted(out['year_range'].unique().tolist())}")
    return out


def clean_employment(df: pd.DataFrame) -> pd.DataFrame:
    """
    Reshape the USDA ERS unemployment table to one row per (county_fips, year).

    Attribute names end in a four-digit year ("Unemployed_2020"); the known
    measures are renamed through EMPLOYMENT_MEASURES. Static attributes
    (income, rural-urban codes) are repeated on every year.
    """
    wide = _widen(df, EMPLOYMENT_ID_COLUMNS, "employment")
    ids = list(EMPLOYMENT_ID_COLUMNS)

    missing_static = [c for c in EMPLOYMENT_STATIC_COLUMNS if c not in wide.columns]
    if missing_static:
        raise SchemaDriftError(f"Employment table missing static attributes: {missing_static}")
    static = list(EMPLOYMENT_STATIC_COLUMNS)
    measured = [c for c in wide.columns if c not in ids and c not in static]

    long = wide.melt(id_vars=ids, value_vars=measured, var_name="raw_name", value_name="value")
    parts = long["raw_name"].astype(str).str.extract(MEASURE_YEAR_SPLIT)
    long["measure"] = parts["measure"].map(EMPLOYMENT_MEASURES)
    long["year"] = pd.to_numeric(parts["year"], errors="coerce")

    unknown = sorted(long.loc[long["measure"].isna(), "raw_name"].unique().tolist())
    if unknown:
        logger.warning(f"[employment] {len(unknown)} attributes not in the rename table; dropped: {unknown[:5]}")
    long = long.loc[long["measure"].notna()].copy()
    found = set(long["measure"].unique())
    absent = sorted(set(EMPLOYMENT_MEASURES.values()) - found)
    if absent:
        raise SchemaDriftError(f"Employment table has no yearly columns for: {absent}")

    out = _pivot_first(long, ids + ["year"], "measure", "value")
    out = out.merge(wide[ids + static], on=ids, how="left")
    out = out.rename(columns={**EMPLOYMENT_ID_COLUMNS, **EMPLOYMENT_STATIC_COLUMNS})
    out["county_fips"] = pad_fips(out["county_fips"])
    out["year"] = out["year"].astype("int64")
    cols = EMPLOYMENT_OUTPUT + [c for c in out.columns if c not in EMPLOYMENT_OUTPUT]
    out = out[cols].sort_values(["county_fips", "year"], kind="mergesort").reset_index(drop=True)
    logger.info(f"[employment] {len(out)} rows; years {out['year'].min()}-{out['year'].max()}")
    return out


def education_subset(edu: pd.DataFrame, year_range: str) -> pd.DataFrame:
    sub = edu.loc[edu["year_range"] == year_range]
    if sub.empty:
        raise SchemaDriftError(f"Education table has no rows for year range {year_range!r}")
    cols = ["county_fips"] + [c for c in sub.columns if c.startswith(("count_", "pct_"))]
    return sub[cols].drop_duplicates("county_fips").reset_index(drop=True)


def employment_subset(emp: pd.DataFrame, election_year: int, params: CovariateParams = CovariateParams()) -> pd.DataFrame:
    year = params.employment_year.get(election_year, election_year)
    sub = emp.loc[emp["year"] == year]
    if sub.empty:
        raise SchemaDriftError(f"Employment table has no rows for year {year}")
    cols = ["county_fips", "unemployment_rate", "unemployed", "employed", "civilian_labor_force"]
    if election_year in params.static_for_years:
        cols += list(EMPLOYMENT_STATIC_COLUMNS.values())
    return sub[cols].drop_duplicates("county_fips").reset_index(drop=True)


def normalize_covariate_files(
    education_path: Path,
    employment_path: Path,
    education_out: Path,
    employment_out: Path,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    logger.info(f"[covariates] Reading {education_path} and {employment_path}")
    edu = clean_education(read_any(education_path))
    emp = clean_employment(read_any(employment_path))
    write_table(edu, education_out)
    write_table(emp, employment_out)
    logger.success(f"[covariates] Wrote {education_out} and {employment_out}")
    return edu, emp
