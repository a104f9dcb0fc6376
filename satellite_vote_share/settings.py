from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .config import (
    AREA_CRS,
    FIELD_NAME_LIMIT,
    ID_FIELD,
    MIN_TOTAL_VOTES,
    RANDOM_SEED,
    TARGET,
)


@dataclass(frozen=True)
class ExportParams:
    id_field: str = ID_FIELD
    field_name_limit: int = FIELD_NAME_LIMIT
    area_crs: Optional[str] = AREA_CRS
    stamp_state: bool = True
    seed: int = RANDOM_SEED


@dataclass(frozen=True)
class JoinParams:
    min_total_votes: int = MIN_TOTAL_VOTES
    # {band}_{statistic}, e.g. A07_mean, A63_stdDev
    feature_regex: str = r"^A\d{2}(_[A-Za-z0-9]+)?$"


@dataclass(frozen=True)
class ModelParams:
    target: str = TARGET
    test_size: float = 0.2
    cv_folds: int = 5
    random_seed: int = 42
    n_jobs: int = 1
    grid_search: bool = False
    extra_features: Tuple[str, ...] = ()
    models: Tuple[str, ...] = ("gradient_boosting", "random_forest", "elastic_net")


@dataclass(frozen=True)
class RetryParams:
    attempts: int = 4
    wait_min: float = 1.0
    wait_max: float = 30.0
    timeout: float = 60.0
    chunk_size: int = 1 << 20


@dataclass(frozen=True)
class CovariateParams:
    education_year_range: str = "2019-23"
    # Election year -> employment year; 2024 falls back to the latest release
    employment_year: dict = field(default_factory=lambda: {2020: 2020, 2024: 2023})
    static_for_years: List[int] = field(default_factory=lambda: [2024])
