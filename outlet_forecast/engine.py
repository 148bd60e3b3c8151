"""
Single-store pipeline: clean -> detect shocks -> fit -> select -> seasonality
-> nudge -> residual spread.
"""
from __future__ import annotations

import datetime as dt
import logging
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd

from .config import DEFAULT_CONFIG, EngineConfig, NetworkPriors
from .exceptions import InsufficientDataError
from .fitting import LifecycleStage, fit_candidates
from .models import AnalysisResult, ChosenFit, CleanedSeries, SeasonalProfile, ShockScan
from .nudge import compute_nudge
from .preprocess import clean_series
from .seasonal import seasonal_profile
from .selection import select_model
from .shocks import detect_shocks
from .store_stats import compute_store_stats

logger = logging.getLogger(__name__)

DateLike = Union[str, dt.date, dt.datetime, pd.Timestamp, pd.Period]


def _to_timestamp(value: DateLike) -> pd.Timestamp:
    if isinstance(value, pd.Period):
        return value.to_timestamp()
    if isinstance(value, str):
        value = value.strip().replace("/", "-").replace(".", "-")
    ts = pd.Timestamp(value)
    if pd.isna(ts):
        raise ValueError(f"Unparsable as-of date: {value!r}")
    return ts


def is_active(series: CleanedSeries, as_of_date: DateLike, config: EngineConfig = DEFAULT_CONFIG) -> bool:
    """True when the last month starts less than ``active_window_days`` before ``as_of_date``."""
    last = series.periods[-1].to_timestamp()
    gap = _to_timestamp(as_of_date) - last
    return gap < pd.Timedelta(days=config.active_window_days)


def residual_std(series: CleanedSeries, fit: ChosenFit, seasonal: SeasonalProfile) -> float:
    """RMS of actual - trend * season over kept months."""
    idx = series.valid_index
    if idx.size == 0:
        return 0.0
    trend = np.asarray(fit.trend(idx.astype(float)), dtype=float)
    resid = series.values[idx] - trend * seasonal.as_array()[series.calendar_months[idx]]
    return float(np.sqrt(np.mean(resid ** 2)))


def _error_result(name, series, stats, active, message, config, stage=None) -> AnalysisResult:
    logger.info("%s: %s", name, message)
    return AnalysisResult(
        name=name, series=series, stage=stage, stats=stats,
        is_active=active, error=True, message=message, config=config,
    )


def analyze(
    name: str,
    raw_series: Sequence[float],
    dates: Sequence[str],
    as_of_date: DateLike,
    priors: Optional[NetworkPriors] = None,
    config: Optional[EngineConfig] = None,
) -> AnalysisResult:
    """
    Analyze one store.

    Malformed input (length mismatch, empty series, bad month labels) raises
    ``ValueError``. Too little usable history is not an exception: the result
    comes back with ``error=True`` and a message.
    """
    config = config or DEFAULT_CONFIG
    priors = priors or NetworkPriors.from_config(config)

    series = clean_series(raw_series, dates, config)
    stats = compute_store_stats(series)
    active = is_active(series, as_of_date, config)

    if series.n_valid == 0:
        return _error_result(name, series, stats, active, "Insufficient data: no positive months", config)

    stage = LifecycleStage.for_history(series.n_valid, config)
    if stage == LifecycleStage.STARTUP and not active:
        return _error_result(
            name, series, stats, active,
            f"Insufficient data: {series.n_valid} valid months and no recent sales",
            config, stage=int(stage),
        )

    try:
        scan = detect_shocks(series, config) if stage == LifecycleStage.MATURE else ShockScan()
        candidates = fit_candidates(series, stage, scan, priors, config)
    except InsufficientDataError as exc:
        return _error_result(name, series, stats, active, f"Insufficient data: {exc}", config, stage=int(stage))

    mean_valid = float(series.valid_values.mean())
    chosen = select_model(candidates, config, scale=mean_valid)
    seasonal = seasonal_profile(series, chosen, prior=priors.seasonality, config=config)
    nudge = compute_nudge(series, chosen, seasonal, config)
    sigma = residual_std(series, chosen, seasonal)

    logger.debug(
        "%s: stage=%d mode=%s L=%.1f k=%.4f t0=%.1f sigma=%.2f",
        name, int(stage), chosen.mode, chosen.candidate.L, chosen.candidate.k, chosen.candidate.t0, sigma,
    )
    return AnalysisResult(
        name=name,
        series=series,
        stage=int(stage),
        fit=chosen,
        seasonal=seasonal,
        nudge=nudge,
        residual_std=sigma,
        cv=sigma / mean_valid if mean_valid > 0 else None,
        stats=stats,
        is_active=active,
        config=config,
    )
