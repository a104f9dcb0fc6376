from __future__ import annotations

import re
import tempfile
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import pandas as pd
import geopandas as gpd

SUPPORTED_GEO = (".shp", ".zip", ".gpkg", ".geojson", ".json", ".topojson")

# Columns that must stay text even though they look numeric
TEXT_COLUMNS = {"county_fips", "fips", "fips_code", "geoid", "precinct_id", "precinctid"}


def mkdir_p(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


def stdcols(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [
        re.sub(r"_{2,}", "_", re.sub(r"[^\w]+", "_", c.strip().lower())).strip("_")
        for c in df.columns
    ]
    return df


def _text_dtypes(path: Path, sep: str) -> dict:
    header = pd.read_csv(path, sep=sep, nrows=0).columns
    return {c: "string" for c in header if c.strip().lower() in TEXT_COLUMNS}


def read_any(path: Path):
    ext = path.suffix.lower()
    if ext in (".parquet", ".pq"):
        try:
            return gpd.read_parquet(path)
        except Exception:
            return pd.read_parquet(path)
    if ext == ".feather":
        return pd.read_feather(path)
    if ext in (".csv", ".tsv"):
        sep = "\t" if ext == ".tsv" else ","
        return pd.read_csv(path, sep=sep, dtype=_text_dtypes(path, sep))
    if ext in SUPPORTED_GEO:
        return gpd.read_file(path)
    raise ValueError(f"Unsupported input file type: {path}")


def write_table(df: pd.DataFrame, path: Path) -> Path:
    """Write CSV or parquet depending on the suffix. Row order is preserved."""
    mkdir_p(path.parent)
    ext = path.suffix.lower()
    if ext == ".csv":
        df.to_csv(path, index=False, lineterminator="\n")
    elif ext in (".parquet", ".pq"):
        df.to_parquet(path, engine="pyarrow", index=False)
    else:
        raise ValueError(f"Unsupported output file type: {path}")
    return path


@contextmanager
def isolated_workspace(label: str) -> Iterator[Path]:
    """A private temp directory, removed on both success and failure."""
    safe = re.sub(r"[^\w]+", "_", label)
    with tempfile.TemporaryDirectory(prefix=f"svs_{safe}_") as tmp:
        yield Path(tmp)


def unzip_to(archive: Path, dest: Path) -> list[Path]:
    with zipfile.ZipFile(archive) as zf:
        zf.extractall(dest)
    return sorted(p for p in dest.rglob("*") if p.is_file())


def zip_flat(files: list[Path], out_zip: Path) -> Path:
    """Zip files without their directory structure (like ``zip -j``)."""
    mkdir_p(out_zip.parent)
    with zipfile.ZipFile(out_zip, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for f in sorted(files):
            zf.write(f, arcname=f.name)
    return out_zip
