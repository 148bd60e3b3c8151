"""
Short-term level correction from recent residuals.
"""
from __future__ import annotations

import numpy as np

from .config import DEFAULT_CONFIG, EngineConfig
from .models import ChosenFit, CleanedSeries, NudgeValue, SeasonalProfile


def compute_nudge(
    series: CleanedSeries,
    fit: ChosenFit,
    seasonal: SeasonalProfile,
    config: EngineConfig = DEFAULT_CONFIG,
) -> NudgeValue:
    """Mean of actual - trend * season over the most recent kept months."""
    idx = series.valid_index[-config.nudge_window:]
    if idx.size == 0:
        return NudgeValue(value=0.0, window=0, decay=config.nudge_decay)

    trend = np.asarray(fit.trend(idx.astype(float)), dtype=float)
    season = seasonal.as_array()[series.calendar_months[idx]]
    resid = series.values[idx] - trend * season
    return NudgeValue(value=float(resid.mean()), window=int(idx.size), decay=config.nudge_decay)
