"""
Point forecasts and uncertainty bands from a finished analysis.
"""
from __future__ import annotations

from typing import List, Optional

import numpy as np
import pandas as pd
from scipy.stats import norm

from .config import DEFAULT_CONFIG, EngineConfig
from .models import AnalysisResult, ChosenFit, ForecastPoint, NudgeValue, SeasonalProfile

FORECAST_FLOOR = 0.0


def z_score(confidence: float) -> float:
    if not 0.0 < confidence < 1.0:
        raise ValueError(f"confidence must be in (0, 1), got {confidence}")
    return float(norm.ppf(0.5 + confidence / 2.0))


def forecast_point(
    t: int,
    fit: ChosenFit,
    seasonal: SeasonalProfile,
    nudge: NudgeValue,
    sigma: float,
    last_index: int,
    month: int,
    confidence: float = DEFAULT_CONFIG.default_confidence,
    config: EngineConfig = DEFAULT_CONFIG,
):
    """
    Forecast for month index ``t`` whose calendar month is ``month`` (0-11).

    Returns (point, lower, upper, horizon). The band widens with the horizon
    ``h = max(0, t - last_index)``.
    """
    h = max(0, int(t) - int(last_index))
    trend = float(fit.trend(float(t)))
    point = (trend + nudge.effect(h)) * seasonal[month]
    band = z_score(confidence) * float(sigma) * (1.0 + config.band_growth * h)
    point = max(FORECAST_FLOOR, point)
    return point, max(FORECAST_FLOOR, point - band), point + band, h


def forecast_horizon(
    result: AnalysisResult,
    months_ahead: int = 12,
    confidence: Optional[float] = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> List[ForecastPoint]:
    """Forecast the ``months_ahead`` months following the last observation."""
    if result.error or result.fit is None or result.series is None:
        raise ValueError(f"{result.name}: cannot forecast an errored analysis ({result.message})")
    if months_ahead < 0:
        raise ValueError(f"months_ahead must be >= 0, got {months_ahead}")
    confidence = config.default_confidence if confidence is None else confidence

    series = result.series
    last = series.last_index
    points = []
    for t in range(last + 1, last + 1 + int(months_ahead)):
        point, lower, upper, h = forecast_point(
            t, result.fit, result.seasonal, result.nudge, result.residual_std,
            last, series.month_of(t), confidence, config,
        )
        points.append(ForecastPoint(
            t=t, label=series.label_of(t), horizon=h,
            point=point, lower=lower, upper=upper,
        ))
    return points


def _apply_forecast_floor(df: pd.DataFrame, floor: float = FORECAST_FLOOR) -> pd.DataFrame:
    """Clip forecast point estimates and lower bounds at the given floor."""
    if df.empty:
        return df
    for col in ["forecast_value", "lower_ci"]:
        if col in df.columns:
            df[col] = df[col].clip(lower=floor)
    return df


def forecast_frame(points: List[ForecastPoint], name: str = "") -> pd.DataFrame:
    """Tabular view of forecast points, one row per month."""
    df = pd.DataFrame({
        "store": name,
        "date": [p.label for p in points],
        "horizon": [p.horizon for p in points],
        "forecast_value": np.array([p.point for p in points], dtype=float),
        "lower_ci": np.array([p.lower for p in points], dtype=float),
        "upper_ci": np.array([p.upper for p in points], dtype=float),
    })
    return _apply_forecast_floor(df)
