from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import List, Optional

from loguru import logger

from ..errors import PipelineError
from ..io import isolated_workspace, zip_flat


class ConversionError(PipelineError):
    """ogr2ogr is missing or exited non-zero."""

    pass


def ogr2ogr_command(src: Path, dest_dir: Path, s_srs: str = "EPSG:4326", t_srs: str = "EPSG:4326") -> List[str]:
    return [
        "ogr2ogr",
        "-f", "ESRI Shapefile",
        str(dest_dir),
        str(src),
        "-s_srs", s_srs,
        "-t_srs", t_srs,
        "-lco", "ENCODING=UTF-8",
    ]


def convert_with_ogr2ogr(
    src: Path,
    dest_dir: Path,
    s_srs: str = "EPSG:4326",
    t_srs: str = "EPSG:4326",
    executable: Optional[str] = None,
) -> List[Path]:
    """Convert a TopoJSON (or any OGR-readable file) to shapefile(s) in ``dest_dir``.

    Returns the .shp files written. Raises ConversionError when the tool is
    not on PATH, exits non-zero, or writes no shapefile.
    """
    if not src.exists():
        raise FileNotFoundError(src)
    exe = executable or shutil.which("ogr2ogr")
    if exe is None:
        raise ConversionError("'ogr2ogr' not found on PATH; install GDAL")

    cmd = ogr2ogr_command(src, dest_dir, s_srs, t_srs)
    cmd[0] = exe
    logger.info(f"[convert] {' '.join(cmd)}")
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise ConversionError(f"ogr2ogr exited {result.returncode}: {result.stderr.strip()}")

    shps = sorted(dest_dir.glob("*.shp"))
    if not shps:
        raise ConversionError(f"ogr2ogr wrote no shapefile into {dest_dir}")
    logger.success(f"[convert] {src.name} -> {[p.name for p in shps]}")
    return shps


def topojson_to_archive(src: Path, out_zip: Path, **kwargs) -> Path:
    """Convert ``src`` and zip every resulting sidecar, flat, into ``out_zip``.

    The archive can then go through the identifier assigner like any other.
    """
    with isolated_workspace(f"convert_{src.stem}") as ws:
        out = ws / "shp"
        convert_with_ogr2ogr(src, out, **kwargs)
        return zip_flat([p for p in out.iterdir() if p.is_file()], out_zip)
