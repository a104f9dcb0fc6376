from __future__ import annotations

from pathlib import Path
from typing import Dict

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
from loguru import logger

from ..io import mkdir_p
from .train import ModelResult, TrainingReport


def plot_predictions(result: ModelResult, path: Path) -> Path:
    """Actual vs predicted and residuals vs predicted, side by side."""
    y, p = result.y_test, result.y_pred
    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(11, 5))

    ax1.scatter(y, p, s=8, alpha=0.4)
    lo, hi = float(np.min([y.min(), p.min()])), float(np.max([y.max(), p.max()]))
    ax1.plot([lo, hi], [lo, hi], color="red", linestyle="--", linewidth=1)
    ax1.set_xlabel("Actual")
    ax1.set_ylabel("Predicted")
    ax1.set_title(f"{result.name}: R² = {result.metrics['r2']:.3f}")

    ax2.scatter(p, y - p, s=8, alpha=0.4)
    ax2.axhline(0, color="red", linestyle="--", linewidth=1)
    ax2.set_xlabel("Predicted")
    ax2.set_ylabel("Residual")
    ax2.set_title(f"RMSE = {result.metrics['rmse']:.4f}")

    fig.tight_layout()
    mkdir_p(path.parent)
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path


def plot_importance(report: TrainingReport, path: Path, top: int = 20) -> Path:
    imp = report.importance.head(top).iloc[::-1]
    fig, ax = plt.subplots(figsize=(7, max(3, 0.3 * len(imp))))
    ax.barh(imp["feature"], imp["importance_mean"], xerr=imp["importance_std"])
    ax.set_xlabel("Permutation importance (R² drop)")
    ax.set_title(f"Top {len(imp)} features: {report.best.name}")
    fig.tight_layout()
    mkdir_p(path.parent)
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path


def save_diagnostic_plots(report: TrainingReport, label: str, out_dir: Path) -> Dict[str, Path]:
    paths = {}
    for r in report.results:
        if r.y_test is None or r.y_pred is None:
            continue
        paths[r.name] = plot_predictions(r, out_dir / f"{r.name}_{label}_predictions.png")
    if report.importance is not None and not report.importance.empty:
        paths["importance"] = plot_importance(report, out_dir / f"feature_importance_{label}.png")
    logger.info(f"[plots] {len(paths)} figures in {out_dir}")
    return paths
