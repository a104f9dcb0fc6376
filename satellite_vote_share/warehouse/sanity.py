from __future__ import annotations

from typing import Dict, List, Optional

import duckdb
from loguru import logger

from ..errors import DataQualityError
from .schema import VOTE_TABLES, list_tables


def _key_for(con: duckdb.DuckDBPyConnection, table: str) -> Optional[str]:
    if table in VOTE_TABLES:
        return VOTE_TABLES[table]
    cols = set(con.execute(f"SELECT * FROM {table} LIMIT 0").fetchdf().columns)
    for key in VOTE_TABLES.values():
        if key in cols:
            return key
    return None


def check_table(con: duckdb.DuckDBPyConnection, table: str) -> Dict[str, int]:
    """Count violations of the vote-table invariants in one table."""
    key = _key_for(con, table)
    cols = set(con.execute(f"SELECT * FROM {table} LIMIT 0").fetchdf().columns)
    group = f"{key}, year" if "year" in cols else key

    counts = {}
    counts["nonpositive_total"] = con.execute(
        f"SELECT COUNT(*) FROM {table} WHERE total_votes IS NULL OR total_votes <= 0"
    ).fetchone()[0]
    counts["share_out_of_bounds"] = con.execute(
        f"""
        SELECT COUNT(*) FROM {table}
        WHERE rep_share IS NULL OR dem_share IS NULL
           OR rep_share < 0 OR rep_share > 1
           OR dem_share < 0 OR dem_share > 1
        """
    ).fetchone()[0]
    counts["party_votes_exceed_total"] = con.execute(
        f"SELECT COUNT(*) FROM {table} WHERE votes_dem + votes_rep > total_votes"
    ).fetchone()[0]
    if key is not None:
        counts["duplicate_keys"] = con.execute(
            f"""
            SELECT COALESCE(SUM(n - 1), 0) FROM (
                SELECT COUNT(*) AS n FROM {table}
                GROUP BY {group}
                HAVING COUNT(*) > 1
            )
            """
        ).fetchone()[0]
    return {k: int(v) for k, v in counts.items()}


def sanity_checks(con: duckdb.DuckDBPyConnection, tables: Optional[List[str]] = None) -> Dict[str, Dict[str, int]]:
    """Run :func:`check_table` over the vote and modeling tables.

    Raises DataQualityError listing every violated check.
    """
    existing = list_tables(con)
    if tables is None:
        tables = [t for t in existing if t in VOTE_TABLES or t.startswith("modeling_")]
    unknown = [t for t in tables if t not in existing]
    if unknown:
        raise ValueError(f"Unknown tables: {unknown}")

    results = {}
    problems = []
    for t in tables:
        n = con.execute(f"SELECT COUNT(*) FROM {t}").fetchone()[0]
        if n == 0:
            logger.warning(f"[sanity] {t} is empty")
        counts = check_table(con, t)
        results[t] = counts
        problems += [f"{t}.{name}={v}" for name, v in counts.items() if v]

    if problems:
        raise DataQualityError("Sanity checks failed: " + ", ".join(problems))
    logger.success(f"[sanity] {len(tables)} tables passed")
    return results
