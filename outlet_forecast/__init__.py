"""
Explainable monthly demand forecasting for a network of retail outlets.

Each store's history is fitted with a constrained logistic growth curve
(optionally with step shifts), a multiplicative seasonal profile and a
short-term level nudge, and can be scored with a blind holdout backtest.
"""
from .backtest import backtest
from .config import DEFAULT_CONFIG, EngineConfig, NetworkPriors
from .curve import project_trend
from .engine import analyze
from .exceptions import ForecastEngineError, InsufficientDataError, SeriesFormatError
from .fitting import LifecycleStage
from .models import AnalysisResult, BacktestScore, ForecastPoint, NetworkAnalysis, NetworkBacktest
from .network import analyze_network, assign_abc_ranks, backtest_network, derive_network_priors

__version__ = "0.3.0"

__all__ = [
    "AnalysisResult",
    "BacktestScore",
    "DEFAULT_CONFIG",
    "EngineConfig",
    "ForecastEngineError",
    "ForecastPoint",
    "InsufficientDataError",
    "LifecycleStage",
    "NetworkAnalysis",
    "NetworkBacktest",
    "NetworkPriors",
    "SeriesFormatError",
    "analyze",
    "analyze_network",
    "assign_abc_ranks",
    "backtest",
    "backtest_network",
    "derive_network_priors",
    "project_trend",
]
