"""
Holdout backtest: refit on a train prefix, forecast the withheld months blind.
"""
from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np
from sklearn.metrics import mean_absolute_percentage_error, mean_squared_error

from .config import DEFAULT_CONFIG, EngineConfig, NetworkPriors
from .engine import analyze
from .exceptions import InsufficientDataError
from .forecaster import forecast_point
from .models import BacktestScore, CleanedSeries
from .preprocess import clean_series

logger = logging.getLogger(__name__)


def validate_holdout(holdout_months) -> int:
    if int(holdout_months) != holdout_months or holdout_months < 1:
        raise ValueError(f"holdout_months must be a positive integer, got {holdout_months}")
    return int(holdout_months)


def is_eligible(series: CleanedSeries, holdout_months: int, config: EngineConfig = DEFAULT_CONFIG) -> bool:
    """A store needs ``holdout + backtest_min_train`` valid months to be scored."""
    return series.n_valid >= holdout_months + config.backtest_min_train


def _safe_mape(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """MAPE in percent over months with positive actuals."""
    return float(mean_absolute_percentage_error(y_true, y_pred) * 100.0)


def _safe_rmse(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    return float(np.sqrt(mean_squared_error(y_true, y_pred)))


def tracking_signal(errors: np.ndarray) -> float:
    """Cumulative error over mean absolute deviation; 0 when every error is 0."""
    mad = float(np.mean(np.abs(errors))) if errors.size else 0.0
    if mad == 0:
        return 0.0
    return float(errors.sum() / mad)


def backtest(
    raw_series: Sequence[float],
    dates: Sequence[str],
    holdout_months: int,
    name: str = "store",
    priors: Optional[NetworkPriors] = None,
    config: Optional[EngineConfig] = None,
) -> Optional[BacktestScore]:
    """
    Withhold the last ``holdout_months`` months, analyze the rest, and score
    the forecast of the withheld months.

    Returns None when the store has too few valid months to be eligible.
    Raises ``InsufficientDataError`` when the train prefix cannot be fitted.
    """
    config = config or DEFAULT_CONFIG
    holdout_months = validate_holdout(holdout_months)

    full = clean_series(raw_series, dates, config)
    if not is_eligible(full, holdout_months, config):
        logger.debug("%s: %d valid months, not eligible for a %d-month holdout",
                     name, full.n_valid, holdout_months)
        return None

    train_len = len(full) - holdout_months
    train_dates = list(dates)[:train_len]
    trained = analyze(
        name,
        list(raw_series)[:train_len],
        train_dates,
        as_of_date=full.periods[train_len - 1],
        priors=priors,
        config=config,
    )
    if trained.error:
        raise InsufficientDataError(f"{name}: training prefix unusable ({trained.message})")

    last = trained.series.last_index
    labels, actuals, forecasts = [], [], []
    for t in range(train_len, len(full)):
        point, _, _, _ = forecast_point(
            t, trained.fit, trained.seasonal, trained.nudge, trained.residual_std,
            last, full.month_of(t), config.default_confidence, config,
        )
        labels.append(full.label_of(t))
        actuals.append(float(full.values[t]))
        forecasts.append(float(point))

    actual_arr = np.asarray(actuals, dtype=float)
    forecast_arr = np.asarray(forecasts, dtype=float)
    scored = np.isfinite(actual_arr) & (actual_arr > 0) & np.isfinite(forecast_arr)
    if not scored.any():
        raise InsufficientDataError(f"{name}: no positive actuals in the holdout window")

    y_true, y_pred = actual_arr[scored], forecast_arr[scored]
    errors = y_pred - y_true
    candidate = trained.fit.candidate

    return BacktestScore(
        name=name,
        holdout=holdout_months,
        mape=_safe_mape(y_true, y_pred),
        rmse=_safe_rmse(y_true, y_pred),
        bias=float(errors.mean()),
        tracking_signal=tracking_signal(errors),
        n_scored=int(scored.sum()),
        labels=tuple(labels),
        actuals=tuple(actuals),
        forecasts=tuple(forecasts),
        training_mode=candidate.mode,
        training_k=float(candidate.k),
        training_l=float(candidate.L),
    )
