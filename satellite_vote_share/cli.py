"""satellite_vote_share command line.

One subcommand per pipeline stage; each reads files and writes files, so
stages can be rerun independently.

Examples:
  python -m satellite_vote_share acquire --what vest --states ca tx
  python -m satellite_vote_share normalize-counties
  python -m satellite_vote_share assign-ids --in data/raw/precincts --out data/interim/precincts
  python -m satellite_vote_share join --level county --year 2020 --embeddings emb20.csv \\
      --votes data/interim/clean_county_votes_00-24.csv --out data/processed/county_20.csv
  python -m satellite_vote_share train --in data/processed/county_20.csv --label county_20
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional

from loguru import logger

from . import config
from .errors import PipelineError


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="satellite_vote_share",
        description="Link satellite embeddings to election returns and model vote share",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("acquire", help="Download county returns, VEST precincts, USDA covariates")
    p.add_argument("--what", nargs="+", choices=["counties", "vest", "covariates"], default=["counties", "vest", "covariates"])
    p.add_argument("--states", nargs="*", help="VEST state abbreviations (default: all 50 + DC)")
    p.add_argument("--county-dir", type=Path, default=config.COUNTY_RAW_DIR)
    p.add_argument("--precinct-dir", type=Path, default=config.PRECINCT_RAW_DIR)
    p.add_argument("--overwrite", action="store_true")
    p.add_argument("--attempts", type=int, default=4)
    p.add_argument("--timeout", type=float, default=60.0)

    p = sub.add_parser("normalize-counties", help="Flatten MEDSL county returns to one row per county-year")
    p.add_argument("--in", dest="inp", type=Path, default=config.COUNTY_RETURNS_CSV)
    p.add_argument("--out", type=Path, default=config.CLEAN_COUNTY_VOTES)

    p = sub.add_parser("normalize-precincts", help="Canonical vote columns from a precinct attribute table")
    p.add_argument("--in", dest="inp", type=Path, required=True)
    p.add_argument("--out", type=Path, required=True)
    p.add_argument("--year", type=int, required=True, choices=[2020, 2024])
    p.add_argument("--state", help="State code when the table carries none")

    p = sub.add_parser("normalize-covariates", help="Reshape USDA education and unemployment tables")
    p.add_argument("--education", type=Path, default=config.EDUCATION_CSV)
    p.add_argument("--employment", type=Path, default=config.UNEMPLOYMENT_CSV)
    p.add_argument("--education-out", type=Path, default=config.CLEAN_EDUCATION)
    p.add_argument("--employment-out", type=Path, default=config.CLEAN_EMPLOYMENT)

    p = sub.add_parser("assign-ids", help="Add precinct identifiers and repackage archives for upload")
    p.add_argument("--in", dest="inp", type=Path, default=config.PRECINCT_RAW_DIR)
    p.add_argument("--out", type=Path, default=config.PRECINCT_EXPORT_DIR)
    p.add_argument("--seed", type=int, default=config.RANDOM_SEED)
    p.add_argument("--no-state", action="store_true", help="Do not stamp the state field")
    p.add_argument("--no-area", action="store_true", help="Do not stamp area_m2")

    p = sub.add_parser("convert", help="TopoJSON -> zipped shapefile via ogr2ogr")
    p.add_argument("--in", dest="inp", type=Path, required=True)
    p.add_argument("--out", type=Path, required=True, help="Output .zip")
    p.add_argument("--s-srs", default="EPSG:4326")
    p.add_argument("--t-srs", default="EPSG:4326")

    p = sub.add_parser("join", help="Inner-join embedding statistics onto vote rows")
    p.add_argument("--level", choices=["county", "precinct"], required=True)
    p.add_argument("--year", type=int, required=True)
    p.add_argument("--embeddings", type=Path, required=True)
    p.add_argument("--votes", type=Path, help="Canonical vote table (optional for precincts)")
    p.add_argument("--education", type=Path, help="Cleaned education table (county only)")
    p.add_argument("--employment", type=Path, help="Cleaned employment table (county only)")
    p.add_argument("--min-total-votes", type=int, default=config.MIN_TOTAL_VOTES)
    p.add_argument("--out", type=Path, required=True)

    p = sub.add_parser("train", help="Fit and compare regression models")
    p.add_argument("--in", dest="inp", type=Path, required=True)
    p.add_argument("--label", required=True)
    p.add_argument("--target", default=config.TARGET)
    p.add_argument(
        "--models",
        nargs="+",
        choices=["gradient_boosting", "random_forest", "elastic_net"],
        default=["gradient_boosting", "random_forest", "elastic_net"],
    )
    p.add_argument("--extra-features", nargs="*", default=[])
    p.add_argument("--seed", type=int, default=42)
    p.add_argument("--folds", type=int, default=5)
    p.add_argument("--test-size", type=float, default=0.2)
    p.add_argument("--workers", type=int, default=1)
    p.add_argument("--grid-search", action="store_true")
    p.add_argument("--plots", action="store_true")
    p.add_argument("--models-dir", type=Path, default=config.MODELS_DIR)
    p.add_argument("--reports-dir", type=Path, default=config.REPORTS_DIR)

    p = sub.add_parser("warehouse", help="Stage tables in DuckDB, run sanity checks, export")
    p.add_argument("--db", type=Path, default=config.WAREHOUSE_DB)
    p.add_argument("--stage", choices=["schema", "load", "sanity", "export", "all"], default="all")
    p.add_argument("--county-votes", type=Path)
    p.add_argument("--precinct-votes", type=Path)
    p.add_argument("--modeling", type=Path, nargs="*", default=[], help="Joined tables named <level>_<year>.*")
    p.add_argument("--export-dir", type=Path, default=config.PROCESSED_DATA_DIR / "export")
    p.add_argument("--format", choices=["parquet", "csv"], default="parquet")

    return ap


def cmd_acquire(args) -> int:
    from .acquire.client import DataverseClient
    from .acquire.download import DownloadReport, download_county_returns, download_covariates, download_vest_precincts
    from .settings import RetryParams

    client = DataverseClient(params=RetryParams(attempts=args.attempts, timeout=args.timeout))
    report = DownloadReport()
    if "counties" in args.what:
        report.merge(download_county_returns(client, args.county_dir, args.overwrite))
    if "vest" in args.what:
        report.merge(download_vest_precincts(client, args.states or None, args.precinct_dir, args.overwrite))
    if "covariates" in args.what:
        report.merge(download_covariates(client, args.county_dir, args.overwrite))
    report.log_summary("all")
    return 0 if report.success else 1


def cmd_normalize_counties(args) -> int:
    from .normalize.county_votes import normalize_county_file

    normalize_county_file(args.inp, args.out)
    return 0


def cmd_normalize_precincts(args) -> int:
    from .normalize.precinct_votes import normalize_precinct_file

    normalize_precinct_file(args.inp, args.out, args.year, args.state)
    return 0


def cmd_normalize_covariates(args) -> int:
    from .normalize.covariates import normalize_covariate_files

    normalize_covariate_files(args.education, args.employment, args.education_out, args.employment_out)
    return 0


def cmd_assign_ids(args) -> int:
    from .geometry.assign_ids import assign_identifiers
    from .settings import ExportParams

    params = ExportParams(
        seed=args.seed,
        stamp_state=not args.no_state,
        area_crs=None if args.no_area else config.AREA_CRS,
    )
    report = assign_identifiers(args.inp, args.out, params)
    return 0 if report.success else 1


def cmd_convert(args) -> int:
    from .geometry.convert import topojson_to_archive

    topojson_to_archive(args.inp, args.out, s_srs=args.s_srs, t_srs=args.t_srs)
    return 0


def cmd_join(args) -> int:
    from .join.embeddings import join_embedding_file
    from .settings import JoinParams

    join_embedding_file(
        args.embeddings,
        args.out,
        level=args.level,
        year=args.year,
        votes_path=args.votes,
        education_path=args.education,
        employment_path=args.employment,
        params=JoinParams(min_total_votes=args.min_total_votes),
    )
    return 0


def cmd_train(args) -> int:
    from .model.train import train_file
    from .settings import ModelParams

    params = ModelParams(
        target=args.target,
        test_size=args.test_size,
        cv_folds=args.folds,
        random_seed=args.seed,
        n_jobs=args.workers,
        grid_search=args.grid_search,
        extra_features=tuple(args.extra_features),
        models=tuple(args.models),
    )
    train_file(args.inp, args.label, params, args.models_dir, args.reports_dir, plots=args.plots)
    return 0


def cmd_warehouse(args) -> int:
    from .warehouse.db import connect_db
    from .warehouse.sanity import sanity_checks
    from .warehouse.schema import (
        create_schema,
        export_outputs,
        load_county_votes,
        load_modeling_table,
        load_precinct_votes,
    )

    con = connect_db(str(args.db))
    try:
        if args.stage in ("schema", "load", "all"):
            create_schema(con)
        if args.stage in ("load", "all"):
            if args.county_votes:
                load_county_votes(con, args.county_votes)
            if args.precinct_votes:
                load_precinct_votes(con, args.precinct_votes)
            for path in args.modeling:
                level, _, year = path.stem.partition("_")
                if not year.isdigit():
                    raise ValueError(f"Modeling table name must look like <level>_<year>: {path.name}")
                load_modeling_table(con, path, level, int(year))
        if args.stage in ("sanity", "all"):
            sanity_checks(con)
        if args.stage in ("export", "all"):
            export_outputs(con, args.export_dir, args.format)
    finally:
        con.close()
    return 0


COMMANDS = {
    "acquire": cmd_acquire,
    "normalize-counties": cmd_normalize_counties,
    "normalize-precincts": cmd_normalize_precincts,
    "normalize-covariates": cmd_normalize_covariates,
    "assign-ids": cmd_assign_ids,
    "convert": cmd_convert,
    "join": cmd_join,
    "train": cmd_train,
    "warehouse": cmd_warehouse,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return COMMANDS[args.command](args)
    except PipelineError as e:
        logger.error(f"{args.command} failed: {type(e).__name__}: {e}")
        return 2
