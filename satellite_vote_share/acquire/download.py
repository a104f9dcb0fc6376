from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from loguru import logger
from tqdm import tqdm

from ..config import COUNTY_RAW_DIR, PRECINCT_RAW_DIR
from ..errors import AcquisitionError, SourceNotFoundError
from .client import DataverseClient
from .sources import (
    COUNTY_RETURNS_DOI,
    COUNTY_RETURNS_PATTERN,
    COVARIATE_FILES,
    STATES,
    VEST_2020_DOI,
    covariate_url,
    vest_archive_name,
)


@dataclass
class DownloadReport:
    """Outcome of one batch; failures are listed, never swallowed."""

    ok: List[Path] = field(default_factory=list)
    not_found: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.not_found and not self.failed

    def merge(self, other: "DownloadReport") -> "DownloadReport":
        self.ok += other.ok
        self.not_found += other.not_found
        self.failed += other.failed
        return self

    def log_summary(self, label: str) -> None:
        logger.info(
            f"[acquire] {label}: {len(self.ok)} ok, {len(self.not_found)} not found, "
            f"{len(self.failed)} failed"
        )
        for name, reason in self.failed:
            logger.error(f"[acquire] {name}: {reason}")


def _fetch(report: DownloadReport, name: str, action) -> None:
    try:
        report.ok.append(action())
    except SourceNotFoundError as e:
        logger.warning(f"[acquire] {name}: {e}")
        report.not_found.append(name)
    except AcquisitionError as e:
        report.failed.append((name, str(e)))


def download_county_returns(
    client: DataverseClient,
    out_dir: Path = COUNTY_RAW_DIR,
    overwrite: bool = False,
) -> DownloadReport:
    report = DownloadReport()
    files = [f for f in client.list_files(COUNTY_RETURNS_DOI) if re.match(COUNTY_RETURNS_PATTERN, f["filename"])]
    if not files:
        report.not_found.append(COUNTY_RETURNS_DOI)
    for f in files:
        # an ingested .tab is the uploaded CSV only when requested in its original format
        name = re.sub(r"\.tab$", ".csv", f["filename"])
        _fetch(
            report,
            name,
            lambda f=f, name=name: client.download_file(f["id"], out_dir / name, overwrite, original=True),
        )
    report.log_summary("county returns")
    return report


def download_vest_precincts(
    client: DataverseClient,
    states: Optional[Iterable[str]] = None,
    out_dir: Path = PRECINCT_RAW_DIR,
    overwrite: bool = False,
) -> DownloadReport:
    """Fetch ``<st>_2020.zip`` archives for ``states`` (default: all 50 + DC)."""
    wanted = [vest_archive_name(s) for s in (states or STATES)]
    listed = {f["filename"].lower(): f for f in client.list_files(VEST_2020_DOI)}

    report = DownloadReport()
    for name in tqdm(wanted, desc="VEST archives"):
        entry = listed.get(name)
        if entry is None:
            logger.warning(f"[acquire] {name} not in {VEST_2020_DOI}")
            report.not_found.append(name)
            continue
        _fetch(report, name, lambda e=entry, name=name: client.download_file(e["id"], out_dir / name, overwrite))
    report.log_summary("VEST 2020 precincts")
    return report


def download_covariates(
    client: DataverseClient,
    out_dir: Path = COUNTY_RAW_DIR,
    overwrite: bool = False,
) -> DownloadReport:
    report = DownloadReport()
    for key, filename in COVARIATE_FILES.items():
        dest = out_dir / filename
        _fetch(report, filename, lambda key=key, dest=dest: client.download_url(covariate_url(key), dest, overwrite))
    report.log_summary("USDA covariates")
    return report
