"""
Descriptive per-store statistics and network ABC ranking.
"""
from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from scipy.stats import skew

from .config import DEFAULT_CONFIG, EngineConfig
from .models import CleanedSeries, StoreStats


def _sales(series: CleanedSeries) -> np.ndarray:
    """Raw values with missing / non-positive months counted as zero."""
    vals = np.asarray(series.values, dtype=float)
    return np.where(np.isfinite(vals) & (vals > 0), vals, 0.0)


def _safe_ratio(num: float, den: float) -> Optional[float]:
    if den <= 0 or not np.isfinite(num) or not np.isfinite(den):
        return None
    return float(num / den)


def compute_store_stats(series: CleanedSeries) -> StoreStats:
    """
    Totals, last and prior 12-month sums, YoY, 3-year CAGR, CV and skewness.

    YoY is None without a positive prior year; CAGR needs 36 months and
    positive start and end years. CV and skewness use kept months only.
    """
    sales = _sales(series)
    n = len(sales)
    last12 = float(sales[-12:].sum())
    prev12 = float(sales[-24:-12].sum()) if n >= 24 else 0.0

    yoy = _safe_ratio(last12 - prev12, prev12)

    cagr = None
    if n >= 36:
        start = float(sales[-36:-24].sum())
        if start > 0 and last12 > 0:
            cagr = float((last12 / start) ** (1.0 / 3.0) - 1.0)

    valid = series.valid_values
    cv = None
    skewness = None
    if valid.size >= 2:
        mean = float(valid.mean())
        cv = _safe_ratio(float(valid.std()), mean)
        if valid.std() > 0:
            skewness = float(skew(valid))

    return StoreStats(
        total=float(sales.sum()),
        last_year=last12,
        prev_year=prev12,
        yoy=yoy,
        cagr=cagr,
        cv=cv,
        skewness=skewness,
    )


def z_chart(series: CleanedSeries) -> pd.DataFrame:
    """Monthly value, running cumulative total and moving annual total per month."""
    sales = pd.Series(_sales(series), index=series.periods.strftime("%Y-%m"))
    return pd.DataFrame({
        "monthly": sales,
        "cumulative": sales.cumsum(),
        "mat": sales.rolling(12, min_periods=12).sum().fillna(0.0),
    })


def abc_ranks(
    last_year_sales: Dict[str, float],
    config: EngineConfig = DEFAULT_CONFIG,
) -> Dict[str, str]:
    """
    Pareto ranking on last-12-month sales.

    Stores are ordered by sales descending; a store is A while the cumulative
    share including it is at most ``abc_a_share``, B up to ``abc_b_share``,
    C beyond. Ties in sales keep name order.
    """
    ordered: List = sorted(last_year_sales.items(), key=lambda kv: (-kv[1], kv[0]))
    total = sum(max(v, 0.0) for _, v in ordered)
    ranks = {}
    running = 0.0
    for name, value in ordered:
        running += max(value, 0.0)
        share = running / total if total > 0 else 1.0
        if share <= config.abc_a_share:
            ranks[name] = "A"
        elif share <= config.abc_b_share:
            ranks[name] = "B"
        else:
            ranks[name] = "C"
    return ranks


def with_rank(stats: StoreStats, rank: str) -> StoreStats:
    return replace(stats, abc_rank=rank)
