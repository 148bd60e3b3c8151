"""
Engine configuration.

Every threshold used by the pipeline lives here as a module-level default and
is gathered into an immutable ``EngineConfig`` that callers thread through
``analyze`` / ``backtest``. Nothing in the engine reads ambient state.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional, Tuple


# ===========================
# LIFECYCLE STAGES
# ===========================

STARTUP_MAX_MONTHS = 13         # fewer valid months than this -> stage 1
MATURE_MIN_MONTHS = 36          # at least this many valid months -> stage 3
ACTIVE_WINDOW_DAYS = 60         # last month must be this close to as-of date

# ===========================
# PREPROCESSING
# ===========================

OUTLIER_WINDOW = 13
OUTLIER_THRESHOLD = 3.5
OUTLIER_MIN_DISPERSION_RATIO = 0.12
OUTLIER_MIN_PERIODS = 5
RESCUE_WINDOW = 24
RESCUE_BAND = 0.11
RESCUE_LOOKBACK = 12
RESCUE_MIN_POINTS = 6

# ===========================
# SHOCK DETECTION
# ===========================

SHOCK_THRESHOLD = 0.12
SHOCK_SIDE_MONTHS = 6
SHOCK_MIN_SIDE_POINTS = 3
SHOCK_MIN_LENGTH = 24
DUAL_SHIFT_MIN_MONTHS = 60
DISRUPTION_WINDOW = ("2020-03", "2020-05")
MIN_SHOCK_GAP = 6

# ===========================
# CURVE FITTING
# ===========================

BASE_WINDOW = 3                 # fixed-parameter fits: earliest months for base
FREE_BASE_WINDOW = 12           # searched fits: one full seasonal cycle
MAX_SHIFT_CANDIDATES = 3        # shock candidates given their own shift fit
K_MIN = 1e-4
K_MAX = 2.0
LAMBDA_K = 0.05
LAMBDA_L = 0.1
LAMBDA_SHIFT = 0.1
CAPACITY_SOFT_RATIO = 1.2
CAPACITY_HARD_RATIO = 10.0
T0_MARGIN = 24
VARIANCE_FLOOR_RATIO = 0.1
STAGE2_PENALTY_MULTIPLIER = 5.0
LAMBDA_PRIOR = 0.5
HARD_WALL = 1e15

# Nelder-Mead hyperparameters
SIMPLEX_STEP = 0.2
SIMPLEX_ZERO_STEP = 0.05
SIMPLEX_MAX_ITER = 2500
SIMPLEX_XATOL = 1e-6
SIMPLEX_FATOL = 1e-10
SIMPLEX_ADAPTIVE = False

# Priors used when no network statistics are available
DEFAULT_PRIOR_K = 0.1
DEFAULT_PRIOR_L = 3000.0
DEFAULT_PRIOR_T0 = 12.0
PRIOR_K_PERCENTILE = 50.0

# ===========================
# MODEL SELECTION
# ===========================

AIC_MARGIN = 0.0
AIC_SSE_FLOOR_RATIO = 1e-3

# ===========================
# SEASONALITY / NUDGE / FORECAST
# ===========================

SEASONAL_MIN_OBS = 2
MIN_TREND_FOR_RATIO = 1.0
NUDGE_WINDOW = 12
NUDGE_DECAY = 1.0
BAND_GROWTH = 0.05
DEFAULT_CONFIDENCE = 0.95

# ===========================
# BACKTEST
# ===========================

BACKTEST_MIN_TRAIN = 12
GOOD_MAPE_THRESHOLD = 10.0

# ===========================
# NETWORK
# ===========================

ABC_A_SHARE = 0.70
ABC_B_SHARE = 0.90
STORE_TIMEOUT_SECONDS = None   # per-store wall clock limit in the worker pool


@dataclass(frozen=True)
class EngineConfig:
    """Immutable bundle of every tunable used by the pipeline."""

    startup_max_months: int = STARTUP_MAX_MONTHS
    mature_min_months: int = MATURE_MIN_MONTHS
    active_window_days: int = ACTIVE_WINDOW_DAYS

    outlier_window: int = OUTLIER_WINDOW
    outlier_threshold: float = OUTLIER_THRESHOLD
    outlier_min_dispersion_ratio: float = OUTLIER_MIN_DISPERSION_RATIO
    outlier_min_periods: int = OUTLIER_MIN_PERIODS
    rescue_window: int = RESCUE_WINDOW
    rescue_band: float = RESCUE_BAND
    rescue_lookback: int = RESCUE_LOOKBACK
    rescue_min_points: int = RESCUE_MIN_POINTS

    shock_threshold: float = SHOCK_THRESHOLD
    shock_side_months: int = SHOCK_SIDE_MONTHS
    shock_min_side_points: int = SHOCK_MIN_SIDE_POINTS
    shock_min_length: int = SHOCK_MIN_LENGTH
    dual_shift_min_months: int = DUAL_SHIFT_MIN_MONTHS
    disruption_window: Tuple[str, str] = DISRUPTION_WINDOW
    min_shock_gap: int = MIN_SHOCK_GAP

    base_window: int = BASE_WINDOW
    free_base_window: int = FREE_BASE_WINDOW
    max_shift_candidates: int = MAX_SHIFT_CANDIDATES
    k_min: float = K_MIN
    k_max: float = K_MAX
    lambda_k: float = LAMBDA_K
    lambda_l: float = LAMBDA_L
    lambda_shift: float = LAMBDA_SHIFT
    capacity_soft_ratio: float = CAPACITY_SOFT_RATIO
    capacity_hard_ratio: float = CAPACITY_HARD_RATIO
    t0_margin: float = T0_MARGIN
    variance_floor_ratio: float = VARIANCE_FLOOR_RATIO
    stage2_penalty_multiplier: float = STAGE2_PENALTY_MULTIPLIER
    lambda_prior: float = LAMBDA_PRIOR

    simplex_step: float = SIMPLEX_STEP
    simplex_zero_step: float = SIMPLEX_ZERO_STEP
    simplex_max_iter: int = SIMPLEX_MAX_ITER
    simplex_xatol: float = SIMPLEX_XATOL
    simplex_fatol: float = SIMPLEX_FATOL
    simplex_adaptive: bool = SIMPLEX_ADAPTIVE

    default_prior_k: float = DEFAULT_PRIOR_K
    default_prior_l: float = DEFAULT_PRIOR_L
    default_prior_t0: float = DEFAULT_PRIOR_T0
    prior_k_percentile: float = PRIOR_K_PERCENTILE

    aic_margin: float = AIC_MARGIN
    aic_sse_floor_ratio: float = AIC_SSE_FLOOR_RATIO

    seasonal_min_obs: int = SEASONAL_MIN_OBS
    min_trend_for_ratio: float = MIN_TREND_FOR_RATIO
    nudge_window: int = NUDGE_WINDOW
    nudge_decay: float = NUDGE_DECAY
    band_growth: float = BAND_GROWTH
    default_confidence: float = DEFAULT_CONFIDENCE

    backtest_min_train: int = BACKTEST_MIN_TRAIN
    good_mape_threshold: float = GOOD_MAPE_THRESHOLD

    abc_a_share: float = ABC_A_SHARE
    abc_b_share: float = ABC_B_SHARE
    store_timeout_seconds: Optional[float] = STORE_TIMEOUT_SECONDS

    def with_overrides(self, **overrides) -> "EngineConfig":
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)


DEFAULT_CONFIG = EngineConfig()


@dataclass(frozen=True)
class NetworkPriors:
    """Cross-store reference values used to fix or constrain sparse fits."""

    median_k: float = DEFAULT_PRIOR_K
    median_l: float = DEFAULT_PRIOR_L
    t0: float = DEFAULT_PRIOR_T0
    seasonality: Tuple[float, ...] = field(default_factory=lambda: (1.0,) * 12)
    n_stores: int = 0

    def __post_init__(self):
        if len(self.seasonality) != 12:
            raise ValueError(f"seasonality must have 12 values, got {len(self.seasonality)}")

    @classmethod
    def from_config(cls, config: EngineConfig = DEFAULT_CONFIG) -> "NetworkPriors":
        return cls(
            median_k=config.default_prior_k,
            median_l=config.default_prior_l,
            t0=config.default_prior_t0,
        )
