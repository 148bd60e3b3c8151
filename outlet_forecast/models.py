"""
Immutable result records passed between pipeline stages.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from .config import DEFAULT_CONFIG, EngineConfig, NetworkPriors
from .curve import MODE_DUAL_SHIFT, MODE_SHIFT, PARAM_COUNTS, project_trend


def _frozen(values, dtype) -> np.ndarray:
    arr = np.array(values, dtype=dtype, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class CleanedSeries:
    """Raw monthly values with a keep mask; excluded months stay for display."""

    values: np.ndarray
    periods: pd.PeriodIndex
    keep: np.ndarray
    outlier: np.ndarray

    def __post_init__(self):
        object.__setattr__(self, "values", _frozen(self.values, float))
        object.__setattr__(self, "keep", _frozen(self.keep, bool))
        object.__setattr__(self, "outlier", _frozen(self.outlier, bool))
        n = len(self.values)
        if not (len(self.periods) == len(self.keep) == len(self.outlier) == n):
            raise ValueError("CleanedSeries arrays must share one length")

    def __len__(self) -> int:
        return len(self.values)

    @property
    def n_valid(self) -> int:
        return int(self.keep.sum())

    @property
    def valid_index(self) -> np.ndarray:
        return np.flatnonzero(self.keep)

    @property
    def valid_values(self) -> np.ndarray:
        return self.values[self.keep]

    @property
    def last_index(self) -> int:
        return len(self.values) - 1

    @property
    def calendar_months(self) -> np.ndarray:
        """Zero-based calendar month (0 = January) per observation."""
        return np.asarray(self.periods.month, dtype=int) - 1

    def month_of(self, t: int) -> int:
        return (self.periods[0] + int(t)).month - 1

    def label_of(self, t: int) -> str:
        return (self.periods[0] + int(t)).strftime("%Y-%m")


@dataclass(frozen=True)
class ShockCandidate:
    index: int
    score: float
    shift_guess: float


@dataclass(frozen=True)
class ShockScan:
    """Output of the shock detector: ranked candidates plus an optional dual pair."""

    candidates: Tuple[ShockCandidate, ...] = ()
    dual_pair: Optional[Tuple[ShockCandidate, ShockCandidate]] = None

    @property
    def best(self) -> Optional[ShockCandidate]:
        return self.candidates[0] if self.candidates else None


@dataclass(frozen=True)
class FitCandidate:
    """One fitted trend shape with its residual error."""

    mode: str
    base: float
    L: float
    k: float
    t0: float
    sse: float
    n_obs: int
    shocks: Tuple[Tuple[int, float], ...] = ()
    converged: bool = True
    iterations: int = 0

    @property
    def param_count(self) -> int:
        return PARAM_COUNTS[self.mode]

    @property
    def shock_indices(self) -> Tuple[int, ...]:
        return tuple(idx for idx, _ in self.shocks)

    @property
    def params(self) -> Dict[str, float]:
        out = {"base": self.base, "L": self.L, "k": self.k, "t0": self.t0}
        if self.mode in (MODE_SHIFT, MODE_DUAL_SHIFT) and self.shocks:
            out["shift"] = self.shocks[0][1]
            if len(self.shocks) > 1:
                out["shift2"] = self.shocks[1][1]
        return out

    @property
    def effective_base(self) -> float:
        """Base after every step shift has been applied."""
        return self.base + sum(shift for _, shift in self.shocks)

    def trend(self, t):
        return project_trend(t, self.params, self.mode, self.shock_indices)


@dataclass(frozen=True)
class ChosenFit:
    candidate: FitCandidate
    aic: float
    aic_table: Tuple[Tuple[str, float], ...] = ()

    @property
    def mode(self) -> str:
        return self.candidate.mode

    def trend(self, t):
        return self.candidate.trend(t)


@dataclass(frozen=True)
class SeasonalProfile:
    indices: Tuple[float, ...]
    substituted: Tuple[int, ...] = ()

    def __post_init__(self):
        if len(self.indices) != 12:
            raise ValueError(f"SeasonalProfile needs 12 indices, got {len(self.indices)}")

    def __getitem__(self, month: int) -> float:
        return self.indices[month]

    def as_array(self) -> np.ndarray:
        return np.asarray(self.indices, dtype=float)


@dataclass(frozen=True)
class NudgeValue:
    value: float
    window: int
    decay: float = 1.0

    def effect(self, horizon: int) -> float:
        """Additive correction for the ``horizon``-th future month (1-based)."""
        return self.value * (self.decay ** max(horizon - 1, 0))


@dataclass(frozen=True)
class StoreStats:
    total: float
    last_year: float
    prev_year: float
    yoy: Optional[float]
    cagr: Optional[float]
    cv: Optional[float]
    skewness: Optional[float]
    abc_rank: Optional[str] = None


@dataclass(frozen=True)
class ForecastPoint:
    t: int
    label: str
    horizon: int
    point: float
    lower: float
    upper: float


@dataclass(frozen=True)
class AnalysisResult:
    name: str
    series: Optional[CleanedSeries]
    stage: Optional[int] = None
    fit: Optional[ChosenFit] = None
    seasonal: Optional[SeasonalProfile] = None
    nudge: Optional[NudgeValue] = None
    residual_std: float = 0.0
    cv: Optional[float] = None
    stats: Optional[StoreStats] = None
    is_active: bool = False
    error: bool = False
    message: str = ""
    config: EngineConfig = field(default=DEFAULT_CONFIG, repr=False)

    def trend_at(self, t):
        if self.fit is None:
            raise ValueError(f"{self.name}: no fitted trend ({self.message or 'error result'})")
        return self.fit.trend(t)

    def forecast(self, months_ahead: int = 12, confidence: Optional[float] = None) -> List[ForecastPoint]:
        """Forecast the ``months_ahead`` months after the last observation."""
        from .forecaster import forecast_horizon

        return forecast_horizon(self, months_ahead, confidence=confidence, config=self.config)


@dataclass(frozen=True)
class BacktestScore:
    name: str
    holdout: int
    mape: float
    rmse: float
    bias: float
    tracking_signal: float
    n_scored: int
    labels: Tuple[str, ...] = ()
    actuals: Tuple[float, ...] = ()
    forecasts: Tuple[float, ...] = ()
    training_mode: str = ""
    training_k: float = float("nan")
    training_l: float = float("nan")


@dataclass(frozen=True)
class NetworkBacktest:
    scores: Tuple[BacktestScore, ...]
    eligible: int
    skipped: int
    failed: int
    avg_mape: Optional[float] = None
    median_mape: Optional[float] = None
    good_rate: Optional[float] = None
    mean_bias: Optional[float] = None
    failures: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class NetworkAnalysis:
    """Every store's analysis, ordered by name, plus the priors used for sparse stores."""

    results: Tuple[AnalysisResult, ...]
    priors: NetworkPriors
    anchors: Tuple[str, ...] = ()

    def by_name(self) -> Dict[str, AnalysisResult]:
        return {r.name: r for r in self.results}

    @property
    def errors(self) -> Tuple[AnalysisResult, ...]:
        return tuple(r for r in self.results if r.error)
