"""
Multiplicative seasonal profile from actual / trend ratios.
"""
from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .config import DEFAULT_CONFIG, EngineConfig
from .models import ChosenFit, CleanedSeries, SeasonalProfile

logger = logging.getLogger(__name__)


def normalize_profile(indices: Sequence[float]) -> np.ndarray:
    """Scale 12 indices to mean 1.0. A degenerate profile falls back to flat."""
    arr = np.asarray(indices, dtype=float)
    mean = float(arr.mean()) if arr.size else 0.0
    if not np.isfinite(mean) or mean <= 0:
        return np.ones(12)
    return arr / mean


def seasonal_profile(
    series: CleanedSeries,
    fit: ChosenFit,
    prior: Optional[Sequence[float]] = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> SeasonalProfile:
    """
    Median actual/trend ratio per calendar month over kept months.

    Months with fewer than ``seasonal_min_obs`` ratios take the prior index
    (1.0 when no prior is given). The result is normalized to mean 1.0.
    """
    prior_arr = np.ones(12) if prior is None else np.asarray(prior, dtype=float)

    idx = series.valid_index
    trend = np.asarray(fit.trend(idx.astype(float)), dtype=float)
    usable = trend > config.min_trend_for_ratio
    ratios = pd.DataFrame({
        "month": series.calendar_months[idx][usable],
        "ratio": series.values[idx][usable] / trend[usable],
    })

    grouped = ratios.groupby("month")["ratio"].agg(["median", "count"])
    raw = prior_arr.copy()
    substituted = []
    for month in range(12):
        if month in grouped.index and grouped.at[month, "count"] >= config.seasonal_min_obs:
            raw[month] = grouped.at[month, "median"]
        else:
            substituted.append(month)

    if substituted:
        logger.debug("Seasonal months taken from prior: %s", substituted)
    return SeasonalProfile(
        indices=tuple(float(v) for v in normalize_profile(raw)),
        substituted=tuple(substituted),
    )
