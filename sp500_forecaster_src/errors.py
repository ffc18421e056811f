# sp500_forecaster_src/errors.py

"""
Exception hierarchy for the S&P 500 ARMA forecaster.

Every failure the pipeline can report derives from ``ForecasterError``; the
CLI catches it at the top level. Input-shape problems also derive from
``ValueError``.
"""

from typing import Optional, Tuple


class ForecasterError(Exception):
    """Base class for all forecaster errors."""
    pass


class DataValidationError(ForecasterError, ValueError):
    """Input data violates a time series invariant (ordering, positivity, columns)."""
    pass


class InsufficientDataError(DataValidationError):
    """Too few observations to form returns or an in-sample/out-of-sample split."""
    pass


class NonStationarySeriesError(ForecasterError):
    """The unit-root test could not reject non-stationarity at the requested level."""

    def __init__(self, message: str, p_value: Optional[float] = None):
        super().__init__(message)
        self.p_value = p_value


class ModelSelectionError(ForecasterError):
    """No candidate order could be fit, not even the constant-mean ARMA(0,0)."""
    pass


class InvalidHorizonError(ForecasterError, ValueError):
    """Forecast horizon is non-positive or leaves no in-sample observations."""
    pass


class MisalignedSeriesError(ForecasterError, ValueError):
    """Two series that must be compared point-by-point differ in length or index."""
    pass


class FitConvergenceError(ForecasterError):
    """
    A single model fit raised or produced non-finite estimates.

    ``order`` is the (p, q) pair. ``step`` is set by the static harness to the
    1-based out-of-sample step number (1..H) whose refit failed.
    """

    def __init__(self, message: str, order: Optional[Tuple[int, int]] = None, step: Optional[int] = None):
        super().__init__(message)
        self.order = order
        self.step = step
