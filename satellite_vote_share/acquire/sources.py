"""Registry of the upstream datasets the pipeline pulls from."""

from __future__ import annotations

import os
import re
from typing import Optional

DATAVERSE_BASE_URL = os.getenv("SVS_DATAVERSE_URL", "https://dataverse.harvard.edu")

# MIT Election Data + Science Lab, county presidential returns 2000-2024
COUNTY_RETURNS_DOI = "doi:10.7910/DVN/VOQCHQ"
COUNTY_RETURNS_PATTERN = r"^countypres_.*\.(csv|tab)$"

# Voting and Election Science Team, 2020 precinct shapefiles
VEST_2020_DOI = "doi:10.7910/DVN/K7760H"

# USDA ERS county-level data sets
USDA_ERS_BASE_URL = os.getenv(
    "SVS_USDA_URL", "https://ers.usda.gov/sites/default/files/_laserfiche/DataFiles/48747"
)
COVARIATE_FILES = {
    "education": "Education2023.csv",
    "unemployment": "Unemployment2023.csv",
}

STATES = (
    "al", "ak", "az", "ar", "ca", "co", "ct", "de", "dc", "fl",
    "ga", "hi", "id", "il", "in", "ia", "ks", "ky", "la", "me",
    "md", "ma", "mi", "mn", "ms", "mo", "mt", "ne", "nv", "nh",
    "nj", "nm", "ny", "nc", "nd", "oh", "ok", "or", "pa", "ri",
    "sc", "sd", "tn", "tx", "ut", "vt", "va", "wa", "wv", "wi",
    "wy",
)

_ARCHIVE_RE = re.compile(r"^(?P<state>[a-z]{2})_(?P<year>\d{4})$", re.IGNORECASE)


def vest_archive_name(state: str, year: int = 2020) -> str:
    """``"CA"`` -> ``"ca_2020.zip"``."""
    st = state.strip().lower()
    if st not in STATES:
        raise ValueError(f"Unknown state abbreviation: {state!r}")
    return f"{st}_{year}.zip"


def state_from_archive(stem: str) -> Optional[str]:
    """Upper-case state code from an archive stem like ``ca_2020``, else None."""
    m = _ARCHIVE_RE.match(stem)
    if m is None or m.group("state").lower() not in STATES:
        return None
    return m.group("state").upper()


def covariate_url(name: str) -> str:
    return f"{USDA_ERS_BASE_URL.rstrip('/')}/{COVARIATE_FILES[name]}"
