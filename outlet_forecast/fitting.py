"""
Logistic growth fitting.

Base is never searched: for any candidate curve shape it is anchored to the
mean of the earliest valid months (a full seasonal cycle for searched fits,
so a store that opens on a strong or weak month is not offset). The other
parameters are found with a Nelder-Mead simplex started from a deterministic
initial simplex, minimizing normalized SSE plus penalties on steep growth, on
capacity far above anything observed, and on large step shifts.

How much freedom the search gets depends on the store's lifecycle stage; each
stage is a strategy object with the same ``fit`` contract.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import IntEnum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.optimize import minimize

from .config import DEFAULT_CONFIG, HARD_WALL, EngineConfig, NetworkPriors
from .curve import (
    MODE_DUAL_SHIFT,
    MODE_SHIFT,
    MODE_STANDARD,
    MODE_STARTUP,
    SHIFT_MODES,
    logistic,
    step_shifts,
)
from .exceptions import InsufficientDataError
from .models import CleanedSeries, FitCandidate, ShockCandidate, ShockScan

logger = logging.getLogger(__name__)

# t0 starting points, as fractions of the series length
T0_START_FRACTIONS = (0.25, 0.5, 0.75)


class LifecycleStage(IntEnum):
    STARTUP = 1
    GROWTH = 2
    MATURE = 3

    @classmethod
    def for_history(cls, n_valid: int, config: EngineConfig = DEFAULT_CONFIG) -> "LifecycleStage":
        if n_valid < config.startup_max_months:
            return cls.STARTUP
        if n_valid < config.mature_min_months:
            return cls.GROWTH
        return cls.MATURE


# ===========================
# OBSERVATIONS / OBJECTIVE
# ===========================

class _Observations:
    """Kept (t, y) pairs of one series, optionally cut to a training prefix."""

    def __init__(self, series: CleanedSeries, train_length: Optional[int] = None):
        length = len(series) if train_length is None else min(train_length, len(series))
        idx = series.valid_index
        idx = idx[idx < length]
        self.t = idx.astype(float)
        self.y = series.values[idx].astype(float)
        self.months = series.calendar_months[idx]
        self.length = length

    @property
    def n(self) -> int:
        return len(self.y)

    @property
    def l_cap(self) -> float:
        return float(self.y.max()) if self.n else 0.0


def anchored_base(y_early: np.ndarray, growth_early: np.ndarray) -> float:
    """Base that makes the curve pass through the mean of the earliest months."""
    return float(np.mean(y_early - growth_early))


class _Objective:
    """Penalized, normalized SSE for one mode over fixed observations."""

    def __init__(
        self,
        obs: _Observations,
        mode: str,
        config: EngineConfig,
        shock_indices: Sequence[int] = (),
        penalty_multiplier: float = 1.0,
        prior_k: Optional[float] = None,
        lambda_prior: float = 0.0,
    ):
        self.obs = obs
        self.mode = mode
        self.config = config
        self.shock_indices = tuple(shock_indices)
        self.penalty_multiplier = penalty_multiplier
        self.prior_k = prior_k
        self.lambda_prior = lambda_prior

        self.early = slice(0, min(config.free_base_window, obs.n))
        self.l_cap = max(obs.l_cap, 1e-9)
        variance = float(np.var(obs.y)) if obs.n else 0.0
        floor = (config.variance_floor_ratio * self.l_cap) ** 2
        self.scale = max(obs.n, 1) * max(variance, floor)
        self.t0_low = -config.t0_margin
        self.t0_high = (obs.length - 1) + config.t0_margin

    def unpack(self, x: np.ndarray) -> Tuple[float, float, float, Tuple[Tuple[int, float], ...]]:
        L, k, t0 = float(x[0]), float(x[1]), float(x[2])
        shifts = tuple(float(v) for v in x[3:])
        shocks = tuple(zip(self.shock_indices, shifts))
        return L, k, t0, shocks

    def growth(self, t: np.ndarray, L: float, k: float, t0: float, shocks) -> np.ndarray:
        return logistic(t, L, k, t0) + step_shifts(t, shocks)

    def evaluate(self, x: np.ndarray):
        """Return (base, sse, penalized objective) for parameter vector ``x``."""
        L, k, t0, shocks = self.unpack(x)
        cfg = self.config
        g = self.growth(self.obs.t, L, k, t0, shocks)
        base = anchored_base(self.obs.y[self.early], g[self.early])
        resid = self.obs.y - (base + g)
        sse = float(np.dot(resid, resid))

        capacity = base + L
        if (
            not np.isfinite(sse)
            or k < cfg.k_min
            or k > cfg.k_max
            or L < 0
            or capacity > cfg.capacity_hard_ratio * self.l_cap
            or t0 < self.t0_low
            or t0 > self.t0_high
        ):
            return base, sse, HARD_WALL

        m = self.penalty_multiplier
        ratio = capacity / self.l_cap
        reg_l = cfg.lambda_l * m * max(0.0, ratio - cfg.capacity_soft_ratio) ** 2
        reg_k = cfg.lambda_k * m * k * k
        reg_shift = cfg.lambda_shift * m * sum((s / self.l_cap) ** 2 for _, s in shocks)
        reg_prior = 0.0
        if self.prior_k:
            reg_prior = self.lambda_prior * ((k - self.prior_k) / self.prior_k) ** 2

        return base, sse, sse / self.scale + reg_l + reg_k + reg_shift + reg_prior

    def __call__(self, x: np.ndarray) -> float:
        return self.evaluate(x)[2]


# ===========================
# SIMPLEX SEARCH
# ===========================

def initial_simplex(x0: Sequence[float], step: float, zero_step: float) -> np.ndarray:
    """x0 plus one vertex per coordinate, perturbed by a relative step."""
    x0 = np.asarray(x0, dtype=float)
    simplex = [x0.copy()]
    for i in range(len(x0)):
        vertex = x0.copy()
        vertex[i] = vertex[i] * (1.0 + step) if vertex[i] != 0 else zero_step
        simplex.append(vertex)
    return np.vstack(simplex)


def simplex_search(objective: _Objective, x0: Sequence[float], config: EngineConfig):
    """
    Nelder-Mead from a fixed starting simplex.

    Returns (best_x, best_value, converged, iterations). Reaching the iteration
    cap is not an error; the best vertex found is returned.
    """
    res = minimize(
        objective,
        np.asarray(x0, dtype=float),
        method="Nelder-Mead",
        options={
            "initial_simplex": initial_simplex(x0, config.simplex_step, config.simplex_zero_step),
            "maxiter": config.simplex_max_iter,
            "xatol": config.simplex_xatol,
            "fatol": config.simplex_fatol,
            "adaptive": config.simplex_adaptive,
        },
    )
    return np.asarray(res.x, dtype=float), float(res.fun), bool(res.success), int(res.nit)


def _best_of_starts(objective: _Objective, starts: List[np.ndarray], config: EngineConfig):
    best = None
    for x0 in starts:
        x, fun, ok, nit = simplex_search(objective, x0, config)
        # restart once from the optimum with a fresh simplex
        x, fun, ok, nit2 = simplex_search(objective, x, config)
        if best is None or fun < best[1]:
            best = (x, fun, ok, nit + nit2)
    return best


def _candidate_from(objective: _Objective, x: np.ndarray, converged: bool, iterations: int) -> FitCandidate:
    base, sse, _ = objective.evaluate(x)
    L, k, t0, shocks = objective.unpack(x)
    if not converged:
        logger.warning(
            "%s fit hit the iteration cap (%d) without meeting tolerance; using best point",
            objective.mode, iterations,
        )
    return FitCandidate(
        mode=objective.mode,
        base=base,
        L=L,
        k=k,
        t0=t0,
        sse=sse,
        n_obs=objective.obs.n,
        shocks=tuple((int(i), float(s)) for i, s in shocks),
        converged=converged,
        iterations=iterations,
    )


# ===========================
# STAGE STRATEGIES
# ===========================

class FittingStrategy(ABC):
    """Common contract: fit one mode for one series."""

    stage: LifecycleStage
    supports_shifts = False

    @abstractmethod
    def fit(
        self,
        series: CleanedSeries,
        mode: str,
        priors: NetworkPriors,
        config: EngineConfig = DEFAULT_CONFIG,
        shocks: Sequence[ShockCandidate] = (),
        start: Optional[FitCandidate] = None,
        train_length: Optional[int] = None,
    ) -> FitCandidate:
        ...


class FixedParameterStrategy(FittingStrategy):
    """Stage 1: k, L and t0 come from network priors; only base is estimated."""

    stage = LifecycleStage.STARTUP

    def fit(self, series, mode, priors, config=DEFAULT_CONFIG, shocks=(), start=None, train_length=None):
        if mode not in (MODE_STARTUP, MODE_STANDARD):
            raise ValueError(f"Stage {self.stage.value} does not search mode '{mode}'")
        obs = _Observations(series, train_length)
        if obs.n == 0:
            raise InsufficientDataError("No valid months to anchor base")

        L, k, t0 = float(priors.median_l), float(priors.median_k), float(priors.t0)
        season = np.asarray(priors.seasonality, dtype=float)[obs.months]
        season = np.where(season > 0, season, 1.0)
        early = slice(0, min(config.base_window, obs.n))
        g = logistic(obs.t, L, k, t0)
        base = anchored_base(obs.y[early] / season[early], g[early])
        resid = obs.y - (base + g)
        return FitCandidate(
            mode=MODE_STARTUP,
            base=base,
            L=L,
            k=k,
            t0=t0,
            sse=float(np.dot(resid, resid)),
            n_obs=obs.n,
        )


class FreeSearchStrategy(FittingStrategy):
    """Stage 3: unconstrained search with standard penalties; shift modes allowed."""

    stage = LifecycleStage.MATURE
    supports_shifts = True

    def penalty_multiplier(self, config: EngineConfig) -> float:
        return 1.0

    def prior_terms(self, priors: NetworkPriors, config: EngineConfig) -> Dict[str, float]:
        return {}

    def start_k(self, priors: NetworkPriors, config: EngineConfig) -> float:
        return config.default_prior_k

    def _objective(self, obs, mode, priors, config, shock_indices):
        return _Objective(
            obs,
            mode,
            config,
            shock_indices=shock_indices,
            penalty_multiplier=self.penalty_multiplier(config),
            **self.prior_terms(priors, config),
        )

    def fit(self, series, mode, priors, config=DEFAULT_CONFIG, shocks=(), start=None, train_length=None):
        if mode in SHIFT_MODES and not self.supports_shifts:
            raise ValueError(f"Stage {self.stage.value} does not search mode '{mode}'")
        if mode == MODE_STARTUP:
            raise ValueError("startup-forced mode is only produced by the fixed-parameter strategy")

        expected = {MODE_STANDARD: 0, MODE_SHIFT: 1, MODE_DUAL_SHIFT: 2}[mode]
        if len(shocks) != expected:
            raise ValueError(f"Mode '{mode}' needs {expected} shock candidate(s), got {len(shocks)}")

        obs = _Observations(series, train_length)
        if obs.n < config.base_window + 1:
            raise InsufficientDataError(f"Only {obs.n} valid months for a free curve search")

        objective = self._objective(obs, mode, priors, config, [c.index for c in shocks])
        shift_guesses = [c.shift_guess for c in shocks]

        early_mean = float(obs.y[: config.free_base_window].mean())
        L0 = max(obs.l_cap - early_mean, config.variance_floor_ratio * obs.l_cap)
        k0 = min(max(self.start_k(priors, config), config.k_min), config.k_max)
        starts = [
            np.array([L0, k0, frac * obs.length] + shift_guesses, dtype=float)
            for frac in T0_START_FRACTIONS
        ]
        if start is not None:
            starts.insert(0, np.array([start.L, start.k, start.t0] + shift_guesses, dtype=float))

        x, _, converged, iterations = _best_of_starts(objective, starts, config)
        return _candidate_from(objective, x, converged, iterations)


class SoftConstrainedStrategy(FreeSearchStrategy):
    """Stage 2: free search, stronger penalties and a pull toward the network k."""

    stage = LifecycleStage.GROWTH
    supports_shifts = False

    def penalty_multiplier(self, config):
        return config.stage2_penalty_multiplier

    def prior_terms(self, priors, config):
        return {"prior_k": float(priors.median_k), "lambda_prior": config.lambda_prior}

    def start_k(self, priors, config):
        return float(priors.median_k)


STRATEGIES: Dict[LifecycleStage, FittingStrategy] = {
    LifecycleStage.STARTUP: FixedParameterStrategy(),
    LifecycleStage.GROWTH: SoftConstrainedStrategy(),
    LifecycleStage.MATURE: FreeSearchStrategy(),
}


# ===========================
# PUBLIC ENTRY POINTS
# ===========================

def fit_curve(
    series: CleanedSeries,
    mode: str,
    stage: LifecycleStage,
    priors: Optional[NetworkPriors] = None,
    config: EngineConfig = DEFAULT_CONFIG,
    shocks: Sequence[ShockCandidate] = (),
    start: Optional[FitCandidate] = None,
    train_length: Optional[int] = None,
) -> FitCandidate:
    """Fit one mode under the strategy registered for ``stage``."""
    priors = priors or NetworkPriors.from_config(config)
    strategy = STRATEGIES[LifecycleStage(stage)]
    return strategy.fit(
        series, mode, priors, config,
        shocks=shocks, start=start, train_length=train_length,
    )


def fit_candidates(
    series: CleanedSeries,
    stage: LifecycleStage,
    scan: ShockScan = ShockScan(),
    priors: Optional[NetworkPriors] = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> List[FitCandidate]:
    """
    Fit every mode the stage allows.

    Stage 1 yields the single fixed-parameter fit. Later stages always yield a
    ``standard`` fit; stage 3 adds one ``shift`` fit per shock candidate (the
    strongest ``max_shift_candidates``) and a ``dual_shift`` fit for the dual
    pair, all seeded from the standard solution. AIC decides between them.
    """
    stage = LifecycleStage(stage)
    if stage == LifecycleStage.STARTUP:
        return [fit_curve(series, MODE_STARTUP, stage, priors, config)]

    standard = fit_curve(series, MODE_STANDARD, stage, priors, config)
    fits = [standard]
    if not STRATEGIES[stage].supports_shifts:
        return fits

    # the strongest candidate is often the growth ramp rather than a step
    for candidate in scan.candidates[: config.max_shift_candidates]:
        fits.append(fit_curve(series, MODE_SHIFT, stage, priors, config,
                              shocks=[candidate], start=standard))
    if scan.dual_pair is not None:
        fits.append(fit_curve(series, MODE_DUAL_SHIFT, stage, priors, config,
                              shocks=list(scan.dual_pair), start=standard))
    return fits
