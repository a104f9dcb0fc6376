from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

import pandas as pd
from loguru import logger


@dataclass
class CoverageStep:
    step: str
    rows_before: int
    rows_after: int

    @property
    def dropped(self) -> int:
        return self.rows_before - self.rows_after


@dataclass
class CoverageAudit:
    """Row counts before/after every filter and join of a stage.

    Inner joins and quality filters drop rows on purpose; this keeps the
    loss visible in the log and inspectable by callers and tests.
    """

    stage: str
    steps: List[CoverageStep] = field(default_factory=list)

    def record(self, step: str, before: int, after: int) -> None:
        entry = CoverageStep(step, int(before), int(after))
        self.steps.append(entry)
        if entry.dropped:
            logger.warning(
                f"[{self.stage}] {step}: {entry.rows_before} -> {entry.rows_after} "
                f"({entry.dropped} dropped)"
            )
        else:
            logger.info(f"[{self.stage}] {step}: {entry.rows_before} rows kept")

    def filter(self, df: pd.DataFrame, mask: pd.Series, step: str) -> pd.DataFrame:
        out = df.loc[mask.fillna(False).astype(bool)].copy()
        self.record(step, len(df), len(out))
        return out

    def get(self, step: str) -> Optional[CoverageStep]:
        for s in self.steps:
            if s.step == step:
                return s
        return None

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {"stage": self.stage, "step": s.step, "rows_before": s.rows_before,
                 "rows_after": s.rows_after, "dropped": s.dropped}
                for s in self.steps
            ]
        )
