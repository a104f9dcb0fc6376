"""
Give every precinct polygon an opaque identifier and repackage the archive
for the embedding service.

For each input zip (processed in sorted order):
  * unpack into a private temporary workspace;
  * drop any pre-existing identifier field (case-insensitive);
  * flatten geometries to 2D;
  * fit attribute names to the shapefile's 10-character limit;
  * add a UUID-formatted key per feature, drawn from one seeded generator;
  * optionally stamp ``state`` and ``area_m2``;
  * write a shapefile and zip its sidecars, flat, into ``out_dir``.

A failing archive is logged by name and skipped; the batch carries on.
"""

from __future__ import annotations

import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import geopandas as gpd
import numpy as np
import shapely
from loguru import logger
from tqdm import tqdm

from ..acquire.sources import state_from_archive
from ..config import PRECINCT_EXPORT_DIR, PRECINCT_RAW_DIR
from ..errors import UnitProcessingError
from ..io import isolated_workspace, mkdir_p, unzip_to, zip_flat
from ..keys import fit_field_names, random_unit_ids, truncate_field_names
from ..settings import ExportParams

SHAPEFILE_SIDECARS = (".shp", ".shx", ".dbf", ".prj", ".cpg")


@dataclass
class AssignmentReport:
    written: List[Path] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)
    features: int = 0

    @property
    def success(self) -> bool:
        return not self.failed


def find_shapefile(files: Iterable[Path], unit: str) -> Path:
    shps = sorted(f for f in files if f.suffix.lower() == ".shp")
    if not shps:
        raise UnitProcessingError(unit, "no .shp file found in archive")
    if len(shps) > 1:
        logger.warning(f"[assign_ids] {unit}: {len(shps)} shapefiles; using {shps[0].name}")
    return shps[0]


def flatten_2d(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Drop Z/M from every geometry."""
    gdf = gdf.copy()
    flat = shapely.force_2d(gdf.geometry.to_numpy())
    gdf[gdf.geometry.name] = gpd.GeoSeries(flat, index=gdf.index, crs=gdf.crs)
    return gdf


def rename_fields(gdf: gpd.GeoDataFrame, limit: int, reserved: Iterable[str]) -> gpd.GeoDataFrame:
    geom = gdf.geometry.name
    attrs = [c for c in gdf.columns if c != geom]
    reserved = list(reserved)
    names = fit_field_names(truncate_field_names(attrs, limit, reserved=reserved), limit, reserved=reserved)
    changed = {old: new for old, new in zip(attrs, names) if old != new}
    if changed:
        logger.debug(f"[assign_ids] renamed fields: {changed}")
    return gdf.rename(columns=dict(zip(attrs, names)))


def area_m2(gdf: gpd.GeoDataFrame, crs: str) -> np.ndarray:
    return gdf.geometry.to_crs(crs).area.to_numpy()


def assign_unit(
    archive: Path,
    out_dir: Path,
    rng: np.random.Generator,
    params: ExportParams = ExportParams(),
) -> Tuple[Path, int]:
    """Process one archive; returns the written zip and its feature count."""
    unit = archive.stem
    with isolated_workspace(unit) as ws:
        try:
            files = unzip_to(archive, ws / "in")
        except (zipfile.BadZipFile, OSError) as e:
            raise UnitProcessingError(unit, f"cannot unpack archive ({e})") from e
        shp = find_shapefile(files, unit)
        gdf = gpd.read_file(shp)

        state = state_from_archive(unit) if params.stamp_state else None
        stamp_area = bool(params.area_crs)
        if stamp_area and gdf.crs is None:
            logger.warning(f"[assign_ids] {unit}: no CRS on source; area_m2 not stamped")
            stamp_area = False
        stamps = (["state"] if state else []) + (["area_m2"] if stamp_area else [])

        # the new identifier and stamped fields replace any source field of the same name
        replaced = {params.id_field.lower(), *(s.lower() for s in stamps)}
        drop = [c for c in gdf.columns if c != gdf.geometry.name and c.lower() in replaced]
        if drop:
            logger.info(f"[assign_ids] {unit}: dropping existing fields {drop}")
            gdf = gdf.drop(columns=drop)

        gdf = flatten_2d(gdf)
        gdf = rename_fields(gdf, params.field_name_limit, reserved=[params.id_field, *stamps])

        gdf.insert(0, params.id_field, random_unit_ids(len(gdf), rng))
        if state:
            gdf["state"] = state
        if stamp_area:
            gdf["area_m2"] = area_m2(gdf, params.area_crs)

        out_ws = ws / "out"
        mkdir_p(out_ws)
        shp_out = out_ws / f"{unit}.shp"
        gdf.to_file(shp_out, driver="ESRI Shapefile")
        sidecars = [p for p in out_ws.iterdir() if p.stem == unit and p.suffix.lower() in SHAPEFILE_SIDECARS]
        out_zip = zip_flat(sidecars, out_dir / f"{unit}.zip")
    return out_zip, len(gdf)


def assign_identifiers(
    in_dir: Path = PRECINCT_RAW_DIR,
    out_dir: Path = PRECINCT_EXPORT_DIR,
    params: ExportParams = ExportParams(),
    rng: Optional[np.random.Generator] = None,
) -> AssignmentReport:
    """Run :func:`assign_unit` over every zip in ``in_dir``.

    The generator is seeded once for the whole batch (``params.seed`` unless
    one is passed), so identical inputs and seed give identical identifiers.
    """
    rng = rng if rng is not None else np.random.default_rng(params.seed)
    archives = sorted(in_dir.glob("*.zip"))
    mkdir_p(out_dir)
    logger.info(f"[assign_ids] {len(archives)} archives in {in_dir}")

    report = AssignmentReport()
    for archive in tqdm(archives, desc="Assigning identifiers"):
        try:
            out_zip, n = assign_unit(archive, out_dir, rng, params)
        except Exception as e:
            logger.error(f"[assign_ids] {archive.stem} failed: {e}")
            report.failed.append((archive.stem, str(e)))
            continue
        logger.info(f"[assign_ids] {archive.stem}: {n} features -> {out_zip.name}")
        report.written.append(out_zip)
        report.features += n

    logger.success(
        f"[assign_ids] {len(report.written)} written, {len(report.failed)} failed, "
        f"{report.features} features"
    )
    return report
