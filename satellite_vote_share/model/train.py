"""
Fit and compare regression models of ``rep_share`` on embedding features.

Rows with any missing feature are dropped, then near-constant features.
The remainder is split 80/20 with a fixed seed. Each model is scored by
K-fold CV on the training part and by RMSE/MAE/R^2 on the held-out part,
and the model with the lowest test RMSE is kept.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import joblib
import numpy as np
import pandas as pd
from loguru import logger
from sklearn.ensemble import HistGradientBoostingRegressor, RandomForestRegressor
from sklearn.inspection import permutation_importance
from sklearn.linear_model import ElasticNetCV
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score
from sklearn.model_selection import GridSearchCV, KFold, cross_val_score, train_test_split
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from ..config import MODELS_DIR, REPORTS_DIR
from ..errors import DataQualityError, SchemaDriftError
from ..io import mkdir_p, read_any, write_table
from ..join.embeddings import embedding_columns
from ..settings import JoinParams, ModelParams

MODEL_NAMES = ("gradient_boosting", "random_forest", "elastic_net")

# Searched only when grid search is on; keys address the "model" pipeline step
PARAM_GRIDS: Dict[str, Dict[str, list]] = {
    "gradient_boosting": {
        "model__learning_rate": [0.01, 0.05, 0.1],
        "model__max_depth": [4, 6],
        "model__max_iter": [300, 1000],
    },
    "random_forest": {
        "model__n_estimators": [300, 500],
        "model__min_samples_leaf": [1, 5, 15],
    },
    # ElasticNetCV picks its own penalty
    "elastic_net": {},
}


@dataclass
class ModelResult:
    name: str
    estimator: Pipeline
    metrics: Dict[str, float]
    cv_r2_mean: float
    cv_r2_std: float
    best_params: Dict[str, object] = field(default_factory=dict)
    y_test: Optional[np.ndarray] = None
    y_pred: Optional[np.ndarray] = None


@dataclass
class TrainingReport:
    features: List[str]
    dropped_features: List[str]
    n_train: int
    n_test: int
    results: List[ModelResult] = field(default_factory=list)
    importance: Optional[pd.DataFrame] = None

    @property
    def best(self) -> ModelResult:
        return min(self.results, key=lambda r: r.metrics["rmse"])

    def metrics_frame(self) -> pd.DataFrame:
        rows = []
        for r in self.results:
            rows.append(
                {
                    "model": r.name,
                    **r.metrics,
                    "cv_r2_mean": r.cv_r2_mean,
                    "cv_r2_std": r.cv_r2_std,
                    "n_train": self.n_train,
                    "n_test": self.n_test,
                    "n_features": len(self.features),
                }
            )
        return pd.DataFrame(rows)


def regression_metrics(y_true, y_pred) -> Dict[str, float]:
    return {
        "rmse": float(np.sqrt(mean_squared_error(y_true, y_pred))),
        "mae": float(mean_absolute_error(y_true, y_pred)),
        "r2": float(r2_score(y_true, y_pred)),
    }


def select_features(df: pd.DataFrame, params: ModelParams = ModelParams(), join: JoinParams = JoinParams()) -> List[str]:
    features = embedding_columns(df.columns, join.feature_regex)
    missing = [c for c in params.extra_features if c not in df.columns]
    if missing:
        raise SchemaDriftError(f"Requested extra features not in table: {missing}")
    features += [c for c in params.extra_features if c not in features]
    if not features:
        raise SchemaDriftError("No embedding feature columns found")
    return features


def near_constant_columns(X: pd.DataFrame, freq_cut: float = 95 / 5, unique_cut: float = 10.0) -> List[str]:
    """Zero-variance columns, and columns dominated by one value with few distinct values."""
    out = []
    for c in X.columns:
        counts = X[c].value_counts(dropna=True)
        if len(counts) <= 1:
            out.append(c)
            continue
        freq_ratio = counts.iloc[0] / counts.iloc[1]
        pct_unique = 100.0 * len(counts) / len(X)
        if freq_ratio > freq_cut and pct_unique < unique_cut:
            out.append(c)
    return out


def build_model(name: str, seed: int, n_jobs: int = 1, cv_folds: int = 5) -> Pipeline:
    if name == "gradient_boosting":
        model = HistGradientBoostingRegressor(
            learning_rate=0.05, max_depth=6, max_iter=500, l2_regularization=1.0, random_state=seed
        )
        return Pipeline([("model", model)])
    if name == "random_forest":
        model = RandomForestRegressor(n_estimators=500, min_samples_leaf=5, random_state=seed, n_jobs=n_jobs)
        return Pipeline([("model", model)])
    if name == "elastic_net":
        cv = KFold(n_splits=cv_folds, shuffle=True, random_state=seed)
        model = ElasticNetCV(l1_ratio=0.5, cv=cv, random_state=seed, n_jobs=n_jobs, max_iter=10000)
        return Pipeline([("scale", StandardScaler()), ("model", model)])
    raise ValueError(f"Unknown model {name!r}; choose from {MODEL_NAMES}")


def modeling_frame(df: pd.DataFrame, params: ModelParams = ModelParams()) -> Tuple[pd.DataFrame, pd.Series, List[str]]:
    """Feature matrix and target with incomplete rows and near-constant columns removed."""
    if params.target not in df.columns:
        raise SchemaDriftError(f"Target column {params.target!r} not in table")
    features = select_features(df, params)
    data = df[features + [params.target]].apply(pd.to_numeric, errors="coerce")
    complete = data.dropna()
    if complete.empty:
        raise DataQualityError("No complete rows to model")
    if len(complete) < len(data):
        logger.warning(f"[train] {len(data) - len(complete)} of {len(data)} rows incomplete; dropped")
    y = complete[params.target]
    if ((y < 0) | (y > 1)).any():
        raise DataQualityError(f"{params.target} outside [0, 1]")

    dropped = near_constant_columns(complete[features])
    if dropped:
        logger.info(f"[train] dropping {len(dropped)} near-constant features: {dropped[:10]}")
    kept = [c for c in features if c not in dropped]
    if not kept:
        raise DataQualityError("Every feature is near-constant")
    return complete[kept], y, dropped


def fit_one(
    name: str,
    X_train: pd.DataFrame,
    y_train: pd.Series,
    X_test: pd.DataFrame,
    y_test: pd.Series,
    params: ModelParams = ModelParams(),
) -> ModelResult:
    kf = KFold(n_splits=params.cv_folds, shuffle=True, random_state=params.random_seed)
    est = build_model(name, params.random_seed, params.n_jobs, params.cv_folds)
    best_params: Dict[str, object] = {}

    if params.grid_search and PARAM_GRIDS.get(name):
        logger.info(f"[train] {name}: grid search over {PARAM_GRIDS[name]}")
        search = GridSearchCV(
            est,
            PARAM_GRIDS[name],
            cv=kf,
            scoring="neg_root_mean_squared_error",
            n_jobs=params.n_jobs,
            refit=True,
        )
        search.fit(X_train, y_train)
        est = search.best_estimator_
        best_params = dict(search.best_params_)
        logger.info(f"[train] {name}: best {best_params}")

    cv = cross_val_score(est, X_train, y_train, cv=kf, scoring="r2", n_jobs=params.n_jobs)
    est.fit(X_train, y_train)
    y_pred = est.predict(X_test)
    metrics = regression_metrics(y_test, y_pred)
    logger.info(
        f"[train] {name}: rmse={metrics['rmse']:.4f} mae={metrics['mae']:.4f} r2={metrics['r2']:.4f} "
        f"(cv r2 {cv.mean():.4f} +/- {cv.std():.4f})"
    )
    return ModelResult(
        name=name,
        estimator=est,
        metrics=metrics,
        cv_r2_mean=float(cv.mean()),
        cv_r2_std=float(cv.std()),
        best_params=best_params,
        y_test=np.asarray(y_test),
        y_pred=np.asarray(y_pred),
    )


def train_models(df: pd.DataFrame, params: ModelParams = ModelParams()) -> TrainingReport:
    X, y, dropped = modeling_frame(df, params)
    min_rows = max(params.cv_folds * 2, 10)
    if len(X) < min_rows:
        raise DataQualityError(f"Only {len(X)} complete rows; need at least {min_rows}")

    X_train, X_test, y_train, y_test = train_test_split(
        X, y, test_size=params.test_size, random_state=params.random_seed
    )
    logger.info(f"[train] {len(X_train)} train / {len(X_test)} test rows, {X.shape[1]} features")
    report = TrainingReport(
        features=list(X.columns), dropped_features=dropped, n_train=len(X_train), n_test=len(X_test)
    )
    for name in params.models:
        report.results.append(fit_one(name, X_train, y_train, X_test, y_test, params))
    report.importance = feature_importance(report.best, X_test, y_test, params.random_seed)
    logger.success(f"[train] best model: {report.best.name} (rmse {report.best.metrics['rmse']:.4f})")
    return report


def feature_importance(result: ModelResult, X_test: pd.DataFrame, y_test: pd.Series, seed: int, n_repeats: int = 5) -> pd.DataFrame:
    """Permutation importance on held-out rows, largest first."""
    imp = permutation_importance(
        result.estimator, X_test, y_test, n_repeats=n_repeats, random_state=seed, scoring="r2"
    )
    out = pd.DataFrame(
        {"feature": list(X_test.columns), "importance_mean": imp.importances_mean, "importance_std": imp.importances_std}
    )
    return out.sort_values("importance_mean", ascending=False, kind="mergesort").reset_index(drop=True)


def save_report(report: TrainingReport, label: str, models_dir: Path = MODELS_DIR, reports_dir: Path = REPORTS_DIR) -> Dict[str, Path]:
    mkdir_p(models_dir)
    best = report.best
    model_path = models_dir / f"{label}_{best.name}.joblib"
    joblib.dump({"model": best.estimator, "features": report.features, "metrics": best.metrics}, model_path)
    metrics_path = write_table(report.metrics_frame(), reports_dir / f"{label}_metrics.csv")
    paths = {"model": model_path, "metrics": metrics_path}
    if report.importance is not None:
        paths["importance"] = write_table(report.importance, reports_dir / f"{label}_importance.csv")
    logger.success(f"[train] Saved {model_path} and {metrics_path}")
    return paths


def train_file(
    in_path: Path,
    label: str,
    params: ModelParams = ModelParams(),
    models_dir: Path = MODELS_DIR,
    reports_dir: Path = REPORTS_DIR,
    plots: bool = False,
) -> TrainingReport:
    df = read_any(in_path)
    report = train_models(df, params)
    save_report(report, label, models_dir, reports_dir)
    if plots:
        from .plots import save_diagnostic_plots

        save_diagnostic_plots(report, label, reports_dir / "figures")
    return report
