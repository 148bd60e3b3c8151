"""
Network-level runs: analyze every store, derive cross-store priors from the
mature (anchor) stores, backtest the population, rank stores A/B/C.

Per-store work is pure, so stores are fanned out over a process pool; results
are ordered only after every task has finished.
"""
from __future__ import annotations

import concurrent.futures
import logging
import os
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .backtest import backtest, validate_holdout
from .config import DEFAULT_CONFIG, EngineConfig, NetworkPriors
from .engine import DateLike, analyze
from .exceptions import ForecastEngineError
from .fitting import LifecycleStage
from .models import AnalysisResult, BacktestScore, NetworkAnalysis, NetworkBacktest
from .preprocess import clean_series
from .seasonal import normalize_profile
from .store_stats import abc_ranks, with_rank

logger = logging.getLogger(__name__)

StoreInputs = Mapping[str, Tuple[Sequence[float], Sequence[str]]]


# ===========================
# INPUT HELPERS
# ===========================

def stores_from_frame(
    df: pd.DataFrame,
    store_col: str = "store",
    date_col: str = "date",
    value_col: str = "value",
) -> Dict[str, Tuple[List[float], List[str]]]:
    """Split a long (store, month, value) frame into per-store series, sorted by month."""
    missing = [c for c in (store_col, date_col, value_col) if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")

    out = {}
    for store, grp in df.groupby(store_col, sort=True):
        grp = grp.sort_values(date_col)
        dates = [d.strftime("%Y-%m") if hasattr(d, "strftime") else str(d) for d in grp[date_col]]
        out[str(store)] = (grp[value_col].astype(float).tolist(), dates)
    return out


# ===========================
# TASK FAN-OUT
# ===========================

def _analyze_task(name, values, dates, as_of_date, priors, config) -> AnalysisResult:
    try:
        return analyze(name, values, dates, as_of_date, priors=priors, config=config)
    except ValueError as exc:
        return AnalysisResult(name=name, series=None, error=True, message=f"Invalid input: {exc}", config=config)


def _backtest_task(name, values, dates, holdout, priors, config):
    try:
        score = backtest(values, dates, holdout, name=name, priors=priors, config=config)
    except (ValueError, ForecastEngineError) as exc:
        return "failed", str(exc)
    if score is None:
        return "skipped", None
    return "ok", score


def _resolve_workers(max_workers: Optional[int]) -> int:
    if max_workers is None:
        return os.cpu_count() or 1
    if max_workers < 1:
        raise ValueError(f"max_workers must be >= 1, got {max_workers}")
    return int(max_workers)


def _run_tasks(
    fn: Callable,
    tasks: Dict[str, tuple],
    max_workers: int,
    timeout: Optional[float],
    on_timeout: Callable[[str], object],
) -> Dict[str, object]:
    """
    Run ``fn(*args)`` per store. ``max_workers=1`` runs inline (no timeout);
    any other worker count goes through the pool, even for a single store.

    The timeout is applied to each store's wait in submission order, so a
    store is only charged for time spent after earlier stores finished.
    """
    if not tasks:
        return {}
    if max_workers == 1:
        return {name: fn(*args) for name, args in tasks.items()}

    results = {}
    timed_out = False
    executor = concurrent.futures.ProcessPoolExecutor(max_workers=max_workers)
    try:
        futures = {name: executor.submit(fn, *args) for name, args in tasks.items()}
        for name, future in futures.items():
            try:
                results[name] = future.result(timeout=timeout)
            except concurrent.futures.TimeoutError:
                timed_out = True
                future.cancel()
                logger.warning("%s: no result within %.1fs", name, timeout)
                results[name] = on_timeout(name)
    finally:
        executor.shutdown(wait=not timed_out, cancel_futures=timed_out)
    return results


# ===========================
# PRIORS / RANKING
# ===========================

def derive_network_priors(
    results: Iterable[AnalysisResult],
    config: EngineConfig = DEFAULT_CONFIG,
) -> NetworkPriors:
    """
    Cross-store priors from successfully fitted mature stores.

    k is taken at ``prior_k_percentile`` (50 = median), L at the median, the
    seasonal profile is the per-month median renormalized to mean 1, and t0
    is the configured default. Without anchors the config defaults are used.
    """
    anchors = [
        r for r in results
        if not r.error and r.fit is not None and r.stage == int(LifecycleStage.MATURE)
    ]
    if not anchors:
        logger.info("No anchor stores; using default priors")
        return NetworkPriors.from_config(config)

    ks = np.array([r.fit.candidate.k for r in anchors], dtype=float)
    ls = np.array([r.fit.candidate.L for r in anchors], dtype=float)
    seasonal = np.vstack([r.seasonal.as_array() for r in anchors])

    priors = NetworkPriors(
        median_k=float(np.percentile(ks, config.prior_k_percentile)),
        median_l=float(np.median(ls)),
        t0=float(config.default_prior_t0),
        seasonality=tuple(float(v) for v in normalize_profile(np.median(seasonal, axis=0))),
        n_stores=len(anchors),
    )
    logger.info("Network priors from %d anchors: k=%.4f L=%.1f", len(anchors), priors.median_k, priors.median_l)
    return priors


def assign_abc_ranks(
    results: Iterable[AnalysisResult],
    config: EngineConfig = DEFAULT_CONFIG,
) -> List[AnalysisResult]:
    """Return the results with ``stats.abc_rank`` set from last-12-month sales."""
    results = list(results)
    sales = {r.name: r.stats.last_year for r in results if r.stats is not None}
    ranks = abc_ranks(sales, config)
    return [
        replace(r, stats=with_rank(r.stats, ranks[r.name])) if r.name in ranks else r
        for r in results
    ]


# ===========================
# NETWORK RUNS
# ===========================

def _valid_months(values, dates, config) -> int:
    # malformed stores are reported by the analysis pass itself
    try:
        return clean_series(values, dates, config).n_valid
    except ValueError:
        return 0


def _timed_out_result(config: EngineConfig) -> Callable[[str], AnalysisResult]:
    return lambda name: AnalysisResult(name=name, series=None, error=True, message="Timed out", config=config)


def _analyze_anchors(
    stores: StoreInputs,
    as_of_dates: Mapping[str, DateLike],
    config: EngineConfig,
    workers: int,
    on_timeout: Callable[[str], object],
) -> Dict[str, AnalysisResult]:
    """Analyze the stores with at least ``mature_min_months`` valid months under default priors."""
    anchor_names = [
        name for name, (values, dates) in stores.items()
        if _valid_months(values, dates, config) >= config.mature_min_months
    ]
    default_priors = NetworkPriors.from_config(config)
    return _run_tasks(
        _analyze_task,
        {n: (n, *stores[n], as_of_dates[n], default_priors, config) for n in anchor_names},
        workers, config.store_timeout_seconds, on_timeout,
    )


def analyze_network(
    stores: StoreInputs,
    as_of_date: DateLike,
    config: Optional[EngineConfig] = None,
    max_workers: Optional[int] = None,
) -> NetworkAnalysis:
    """
    Analyze every store.

    Anchor stores (at least ``mature_min_months`` valid months) are analyzed
    first; their fits give the priors that startup and growth stores are then
    analyzed with. A store that times out or has malformed input comes back
    as an error result instead of failing the batch.
    """
    config = config or DEFAULT_CONFIG
    workers = _resolve_workers(max_workers)
    timeout = config.store_timeout_seconds
    timed_out = _timed_out_result(config)

    anchor_results = _analyze_anchors(stores, {n: as_of_date for n in stores}, config, workers, timed_out)

    priors = derive_network_priors(anchor_results.values(), config)
    rest = [n for n in stores if n not in anchor_results]
    rest_results = _run_tasks(
        _analyze_task,
        {n: (n, *stores[n], as_of_date, priors, config) for n in rest},
        workers, timeout, timed_out,
    )

    combined = list(anchor_results.values()) + list(rest_results.values())
    ranked = assign_abc_ranks(combined, config)
    logger.info("Analyzed %d stores (%d errors)", len(ranked), sum(r.error for r in ranked))
    return NetworkAnalysis(
        results=tuple(sorted(ranked, key=lambda r: r.name)),
        priors=priors,
        anchors=tuple(sorted(anchor_results)),
    )


def backtest_network(
    stores: StoreInputs,
    holdout_months: int,
    priors: Optional[NetworkPriors] = None,
    config: Optional[EngineConfig] = None,
    max_workers: Optional[int] = None,
) -> NetworkBacktest:
    """
    Backtest every store with the same holdout.

    Ineligible stores are counted as skipped, stores whose train prefix
    cannot be fitted as failed. Scores are ordered by MAPE ascending.

    Without ``priors`` the network priors are derived the way
    ``analyze_network`` derives them, but from the anchors' train prefixes
    only, so no holdout month informs any store's fit.
    """
    config = config or DEFAULT_CONFIG
    holdout_months = validate_holdout(holdout_months)
    workers = _resolve_workers(max_workers)

    if priors is None:
        prefixes = {
            n: (list(values)[:-holdout_months], list(dates)[:-holdout_months])
            for n, (values, dates) in stores.items()
            if len(dates) > holdout_months
        }
        anchors = _analyze_anchors(
            prefixes,
            {n: dates[-1] for n, (_, dates) in prefixes.items()},
            config, workers,
            _timed_out_result(config),
        )
        priors = derive_network_priors(anchors.values(), config)

    outcomes = _run_tasks(
        _backtest_task,
        {n: (n, *stores[n], holdout_months, priors, config) for n in stores},
        workers,
        config.store_timeout_seconds,
        lambda name: ("failed", "Timed out"),
    )

    scores: List[BacktestScore] = []
    failures = []
    skipped = 0
    for name in sorted(outcomes):
        status, payload = outcomes[name]
        if status == "ok":
            scores.append(payload)
        elif status == "skipped":
            skipped += 1
        else:
            failures.append((name, payload))

    scores.sort(key=lambda s: (s.mape, s.name))
    summary = {}
    if scores:
        mapes = np.array([s.mape for s in scores], dtype=float)
        summary = dict(
            avg_mape=float(mapes.mean()),
            median_mape=float(np.median(mapes)),
            good_rate=float((mapes < config.good_mape_threshold).mean()),
            mean_bias=float(np.mean([s.bias for s in scores])),
        )
    logger.info("Backtest (H=%d): %d scored, %d skipped, %d failed",
                holdout_months, len(scores), skipped, len(failures))
    return NetworkBacktest(
        scores=tuple(scores),
        eligible=len(scores) + len(failures),
        skipped=skipped,
        failed=len(failures),
        failures=tuple(failures),
        **summary,
    )
