"""Exceptions raised inside the forecasting engine."""


class ForecastEngineError(Exception):
    """Base class for engine errors."""


class SeriesFormatError(ForecastEngineError, ValueError):
    """Input series is malformed (length mismatch, bad month label, empty)."""


class InsufficientDataError(ForecastEngineError):
    """Too few valid months to fit any model.

    ``analyze`` converts this into ``AnalysisResult.error`` so callers can
    exclude the store from aggregates instead of handling an exception.
    """
