"""
Series preprocessing: month-label parsing and robust outlier masking.

Nothing is dropped here. Non-positive / missing months and local outliers are
only excluded from fitting via the ``keep`` mask.
"""
from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
import pandas as pd
from statsmodels.robust.scale import mad

from .config import DEFAULT_CONFIG, EngineConfig
from .exceptions import SeriesFormatError
from .models import CleanedSeries

logger = logging.getLogger(__name__)


def parse_months(dates: Sequence[str]) -> pd.PeriodIndex:
    """Parse ``YYYY-MM`` labels (``/`` and ``.`` separators accepted) into monthly periods."""
    raw = pd.Series([str(d).strip() for d in dates], dtype="object")
    normalized = raw.str.replace(r"[./]", "-", regex=True)
    dt = pd.to_datetime(normalized, format="%Y-%m", errors="coerce")
    if dt.isna().any():
        dt2 = pd.to_datetime(normalized, errors="coerce")
        dt = dt.fillna(dt2)
    if dt.isna().any():
        bad = raw[dt.isna()].tolist()[:3]
        raise SeriesFormatError(f"Unparsable month label(s): {bad}")

    periods = pd.DatetimeIndex(dt).to_period("M")
    if len(periods) > 1:
        steps = np.diff(periods.asi8)
        if not (steps == 1).all():
            raise SeriesFormatError("Month labels must be consecutive and strictly increasing")
    return periods


def _window_mad(window: np.ndarray) -> float:
    window = window[np.isfinite(window)]
    if window.size == 0:
        return np.nan
    return float(mad(window))


def flag_outliers(values: np.ndarray, config: EngineConfig = DEFAULT_CONFIG) -> np.ndarray:
    """
    Rolling median / MAD check on positive values.

    Dispersion is floored at a fraction of the local median so that regular
    seasonal swings on a quiet series are not mistaken for outliers.
    """
    positive = pd.Series(np.where(values > 0, values, np.nan))
    roll = positive.rolling(config.outlier_window, center=True, min_periods=config.outlier_min_periods)
    local_median = roll.median()
    local_mad = roll.apply(_window_mad, raw=True)

    dispersion = np.maximum(
        local_mad.to_numpy(dtype=float),
        config.outlier_min_dispersion_ratio * np.abs(local_median.to_numpy(dtype=float)),
    )
    deviation = np.abs(positive.to_numpy(dtype=float) - local_median.to_numpy(dtype=float))

    # NaN comparisons are False, so short or empty windows never flag
    with np.errstate(invalid="ignore"):
        return deviation > config.outlier_threshold * dispersion


def _rescue_recent(values: np.ndarray, keep: np.ndarray, config: EngineConfig) -> np.ndarray:
    """Restore recent flagged months that sit close to their trailing-year mean."""
    keep = keep.copy()
    n = len(values)
    for i in range(max(0, n - config.rescue_window), n):
        if keep[i] or values[i] <= 0:
            continue
        window = values[max(0, i - config.rescue_lookback + 1): i + 1]
        window = window[window > 0]
        if window.size < config.rescue_min_points:
            continue
        ma = float(window.mean())
        if ma * (1 - config.rescue_band) <= values[i] <= ma * (1 + config.rescue_band):
            keep[i] = True
    return keep


def clean_series(
    raw_series: Sequence[float],
    dates: Sequence[str],
    config: EngineConfig = DEFAULT_CONFIG,
) -> CleanedSeries:
    """Build a CleanedSeries from raw values and ``YYYY-MM`` labels."""
    if len(raw_series) == 0:
        raise SeriesFormatError("Series is empty")
    if len(raw_series) != len(dates):
        raise SeriesFormatError(
            f"Series and month labels differ in length ({len(raw_series)} vs {len(dates)})"
        )

    periods = parse_months(dates)
    values = pd.to_numeric(pd.Series(list(raw_series), dtype="object"), errors="coerce").to_numpy(dtype=float)
    has_data = np.isfinite(values) & (values > 0)

    outlier = flag_outliers(np.where(has_data, values, 0.0), config) & has_data
    keep = has_data & ~outlier
    keep = _rescue_recent(np.where(has_data, values, 0.0), keep, config)
    outlier = outlier & ~keep

    if outlier.any():
        logger.debug("Excluded %d outlier month(s): %s", int(outlier.sum()),
                     [str(p) for p in periods[outlier]])

    return CleanedSeries(values=values, periods=periods, keep=keep, outlier=outlier)
