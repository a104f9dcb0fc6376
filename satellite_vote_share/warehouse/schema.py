from __future__ import annotations

import re
from pathlib import Path
from typing import List, Union

import duckdb
import pandas as pd
from loguru import logger

from ..errors import SchemaDriftError
from ..io import read_any
from ..keys import pad_fips

VOTE_TABLES = {"county_votes": "county_fips", "precinct_votes": "precinct_id"}


def create_schema(con: duckdb.DuckDBPyConnection) -> None:
    con.execute("""
    CREATE TABLE IF NOT EXISTS county_votes (
        county_fips TEXT,
        county_name TEXT,
        state_po TEXT,
        year INTEGER,
        votes_dem BIGINT,
        votes_rep BIGINT,
        total_votes BIGINT,
        rep_share DOUBLE,
        dem_share DOUBLE,
        PRIMARY KEY (county_fips, year)
    );
    """)

    con.execute("""
    CREATE TABLE IF NOT EXISTS precinct_votes (
        precinct_id TEXT,
        state TEXT,
        year INTEGER,
        votes_dem BIGINT,
        votes_rep BIGINT,
        total_votes BIGINT,
        rep_share DOUBLE,
        dem_share DOUBLE,
        PRIMARY KEY (precinct_id, year)
    );
    """)


def _frame(src: Union[str, Path, pd.DataFrame]) -> pd.DataFrame:
    if isinstance(src, pd.DataFrame):
        return src
    df = read_any(Path(src))
    if "geometry" in df.columns:
        df = pd.DataFrame(df.drop(columns=["geometry"]))
    return df


def load_county_votes(con: duckdb.DuckDBPyConnection, src: Union[str, Path, pd.DataFrame]) -> int:
    df = _frame(src).copy()
    required = {"county_fips", "county_name", "state_po", "year", "votes_dem", "votes_rep", "total_votes"}
    missing = required - set(df.columns)
    if missing:
        raise SchemaDriftError(f"county_votes missing columns: {sorted(missing)}")
    df["county_fips"] = pad_fips(df["county_fips"])

    con.register("tmp_county_votes", df)
    con.execute("""
        INSERT OR REPLACE INTO county_votes
        SELECT
            county_fips,
            county_name,
            state_po,
            CAST(year AS INTEGER),
            votes_dem,
            votes_rep,
            total_votes,
            votes_rep / total_votes AS rep_share,
            votes_dem / total_votes AS dem_share
        FROM tmp_county_votes
    """)
    con.unregister("tmp_county_votes")
    logger.info(f"[warehouse] county_votes <- {len(df)} rows")
    return len(df)


def load_precinct_votes(con: duckdb.DuckDBPyConnection, src: Union[str, Path, pd.DataFrame]) -> int:
    df = _frame(src).copy()
    required = {"precinct_id", "year", "votes_dem", "votes_rep", "total_votes"}
    missing = required - set(df.columns)
    if missing:
        raise SchemaDriftError(f"precinct_votes missing columns: {sorted(missing)}")
    if "state" not in df.columns:
        df["state"] = None

    con.register("tmp_precinct_votes", df)
    con.execute("""
        INSERT OR REPLACE INTO precinct_votes
        SELECT
            CAST(precinct_id AS TEXT),
            state,
            CAST(year AS INTEGER),
            votes_dem,
            votes_rep,
            total_votes,
            votes_rep / total_votes AS rep_share,
            votes_dem / total_votes AS dem_share
        FROM tmp_precinct_votes
    """)
    con.unregister("tmp_precinct_votes")
    logger.info(f"[warehouse] precinct_votes <- {len(df)} rows")
    return len(df)


def modeling_table_name(level: str, year: int) -> str:
    return f"modeling_{level}_{int(year)}"


def load_modeling_table(
    con: duckdb.DuckDBPyConnection, src: Union[str, Path, pd.DataFrame], level: str, year: int
) -> str:
    """Replace ``modeling_<level>_<year>`` with a joined table."""
    if not re.fullmatch(r"[a-z]+", level):
        raise ValueError(f"Bad level name: {level!r}")
    df = _frame(src)
    table = modeling_table_name(level, year)
    con.register("tmp_modeling", df)
    con.execute(f"CREATE OR REPLACE TABLE {table} AS SELECT * FROM tmp_modeling")
    con.unregister("tmp_modeling")
    logger.info(f"[warehouse] {table} <- {len(df)} rows, {df.shape[1]} columns")
    return table


def list_tables(con: duckdb.DuckDBPyConnection) -> List[str]:
    return (
        con.execute(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = 'main'
            ORDER BY table_name
            """
        )
        .fetchdf()["table_name"]
        .tolist()
    )


def export_table(con: duckdb.DuckDBPyConnection, table: str, out_dir: Path, fmt: str) -> Path:
    out_dir.mkdir(parents=True, exist_ok=True)

    if fmt == "parquet":
        out_path = out_dir / f"{table}.parquet"
        con.execute(f"COPY (SELECT * FROM {table}) TO '{out_path.as_posix()}' (FORMAT PARQUET);")
        return out_path

    if fmt == "csv":
        out_path = out_dir / f"{table}.csv"
        con.execute(
            f"""COPY (SELECT * FROM {table}) TO '{out_path.as_posix()}'
                (HEADER, DELIMITER ',', QUOTE '"', ESCAPE '"');"""
        )
        return out_path

    raise ValueError(f"Unknown export format: {fmt}")


def export_outputs(con: duckdb.DuckDBPyConnection, out_dir: Path, fmt: str = "parquet") -> List[Path]:
    """Export the vote tables and every modeling table that holds rows."""
    tables = [t for t in list_tables(con) if t in VOTE_TABLES or t.startswith("modeling_")]
    written = []
    for t in tables:
        n = con.execute(f"SELECT COUNT(*) FROM {t}").fetchone()[0]
        if n == 0:
            continue
        fp = export_table(con, t, Path(out_dir), fmt)
        logger.info(f"[export] {t} -> {fp}")
        written.append(fp)

    if not written:
        logger.warning("[export] No output tables were exported (tables missing or empty).")
    return written
