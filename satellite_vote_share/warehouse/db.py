from __future__ import annotations

import os

import duckdb


def connect_db(db_path: str, threads: int = 4, memory_limit: str = "4GB") -> duckdb.DuckDBPyConnection:
    dir_ = os.path.dirname(str(db_path))
    if dir_:
        os.makedirs(dir_, exist_ok=True)
    con = duckdb.connect(str(db_path))
    con.execute(f"PRAGMA threads={int(threads)};")
    con.execute(f"PRAGMA memory_limit='{memory_limit}';")
    return con
