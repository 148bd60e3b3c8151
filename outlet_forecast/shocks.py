"""
Structural-break candidate search.

Produces candidates only; whether a shift explains the data better than plain
growth is decided later by AIC in ``selection``.
"""
from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np
import pandas as pd

from .config import DEFAULT_CONFIG, EngineConfig
from .models import CleanedSeries, ShockCandidate, ShockScan

logger = logging.getLogger(__name__)


def _kept_mean(series: CleanedSeries, start: int, stop: int):
    """Mean and count of kept values in [start, stop)."""
    start = max(start, 0)
    stop = min(stop, len(series))
    if stop <= start:
        return np.nan, 0
    mask = series.keep[start:stop]
    vals = series.values[start:stop][mask]
    if vals.size == 0:
        return np.nan, 0
    return float(vals.mean()), int(vals.size)


def step_score(series: CleanedSeries, i: int, config: EngineConfig = DEFAULT_CONFIG):
    """Relative change between the trailing and leading windows around month ``i``."""
    side = config.shock_side_months
    pre, pre_n = _kept_mean(series, i - side, i)
    post, post_n = _kept_mean(series, i, i + side)
    if pre_n < config.shock_min_side_points or post_n < config.shock_min_side_points:
        return None
    score = abs(post - pre) / max(pre, post, 1.0)
    return score, post - pre


def _scan(series: CleanedSeries, config: EngineConfig) -> List[ShockCandidate]:
    n = len(series)
    side = config.shock_side_months
    flagged: List[Optional[ShockCandidate]] = [None] * n
    for i in range(side, n - side):
        scored = step_score(series, i, config)
        if scored is None:
            continue
        score, shift = scored
        if score > config.shock_threshold:
            flagged[i] = ShockCandidate(index=i, score=float(score), shift_guess=float(shift))

    # collapse each contiguous flagged run to its peak month
    peaks = []
    run: List[ShockCandidate] = []
    for cand in flagged + [None]:
        if cand is not None:
            run.append(cand)
            continue
        if run:
            peaks.append(max(run, key=lambda c: (c.score, -c.index)))
            run = []
    return sorted(peaks, key=lambda c: (-c.score, c.index))


def _in_window(period: pd.Period, window) -> bool:
    start, end = (pd.Period(w, freq="M") for w in window)
    return start <= period <= end


def _disruption_candidate(series: CleanedSeries, config: EngineConfig) -> Optional[ShockCandidate]:
    """First month of the disruption window that sits in the series interior."""
    n = len(series)
    for i, period in enumerate(series.periods):
        if not _in_window(period, config.disruption_window):
            continue
        if i < 5 or i >= n - 6:
            return None
        pre, _ = _kept_mean(series, i - 3, i)
        post, _ = _kept_mean(series, i + 3, i + 6)
        shift = post - pre if np.isfinite(pre) and np.isfinite(post) else 0.0
        scored = step_score(series, i, config)
        score = scored[0] if scored is not None else 0.0
        return ShockCandidate(index=i, score=float(score), shift_guess=float(shift))
    return None


def detect_shocks(series: CleanedSeries, config: EngineConfig = DEFAULT_CONFIG) -> ShockScan:
    """
    Scan for step-change months.

    Long histories also get a dual-shock pair: the known disruption month plus
    the strongest independent candidate found outside the disruption window.
    """
    if len(series) < config.shock_min_length:
        return ShockScan()

    candidates = _scan(series, config)

    dual_pair = None
    if len(series) >= config.dual_shift_min_months:
        disruption = _disruption_candidate(series, config)
        if disruption is not None:
            independent = [
                c for c in candidates
                if not _in_window(series.periods[c.index], config.disruption_window)
                and abs(c.index - disruption.index) >= config.min_shock_gap
            ]
            if independent:
                dual_pair = tuple(sorted((disruption, independent[0]), key=lambda c: c.index))

    if candidates:
        logger.debug("Shock candidates: %s", [(c.index, round(c.score, 3)) for c in candidates])
    return ShockScan(candidates=tuple(candidates), dual_pair=dual_pair)
