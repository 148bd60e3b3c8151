"""
AIC model selection across fitted trend modes.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np
from statsmodels.tools.eval_measures import aic_sigma

from .config import DEFAULT_CONFIG, EngineConfig
from .models import ChosenFit, FitCandidate

logger = logging.getLogger(__name__)


def compute_aic(sse: float, n_obs: int, param_count: int, sse_floor: float = 0.0) -> float:
    """N * ln(SSE / N) + 2p, with SSE floored so a perfect fit stays finite."""
    if n_obs <= 0:
        return float("inf")
    sse = max(float(sse), float(sse_floor), 1e-12)
    return float(n_obs * aic_sigma(sse / n_obs, n_obs, param_count))


def _sse_floor(n_obs: int, scale: Optional[float], config: EngineConfig) -> float:
    if not scale or scale <= 0:
        return 0.0
    return n_obs * (config.aic_sse_floor_ratio * scale) ** 2


def select_model(
    candidates: Sequence[FitCandidate],
    config: EngineConfig = DEFAULT_CONFIG,
    scale: Optional[float] = None,
) -> ChosenFit:
    """
    Pick the lowest-AIC candidate.

    A candidate with more parameters replaces the current choice only when it
    improves AIC by more than ``config.aic_margin``; ties go to the simpler
    model. ``scale`` (typically the mean valid value) sets the SSE floor.
    """
    if not candidates:
        raise ValueError("select_model needs at least one candidate")

    ordered: List[FitCandidate] = sorted(candidates, key=lambda c: c.param_count)
    scored = [
        (c, compute_aic(c.sse, c.n_obs, c.param_count, _sse_floor(c.n_obs, scale, config)))
        for c in ordered
    ]

    best, best_aic = scored[0]
    for cand, aic in scored[1:]:
        if np.isfinite(aic) and aic < best_aic - config.aic_margin:
            best, best_aic = cand, aic

    table = tuple((c.mode, aic) for c, aic in scored)
    logger.debug("AIC table: %s -> %s", [(m, round(a, 2)) for m, a in table], best.mode)
    return ChosenFit(candidate=best, aic=best_aic, aic_table=table)
