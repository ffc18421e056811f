# sp500_forecaster_src/metrics_utils.py

import math
import numpy as np
import pandas as pd
from dataclasses import dataclass, asdict
from scipy import stats
from typing import Dict, List, Tuple, Union
import logging

from .errors import InsufficientDataError, MisalignedSeriesError

logger = logging.getLogger(__name__)

ArrayLike = Union[List[float], np.ndarray, pd.Series]


@dataclass
class AccuracyReport:
    """
    Pointwise accuracy of a forecast against actual values.

    Attributes
    ----------
    rmse, mae : float
        Root mean squared error and mean absolute error
    mape : float
        Mean absolute percentage error (in percent) over non-zero actuals;
        NaN when every actual is zero
    n : int
        Number of forecast/actual pairs evaluated
    mape_excluded : int
        Number of pairs left out of MAPE because the actual value is exactly zero
    n_missing : int
        Forecast steps absent from the evaluation (skipped refits)
    """

    rmse: float
    mae: float
    mape: float
    n: int
    mape_excluded: int = 0
    n_missing: int = 0

    @property
    def mape_defined(self) -> bool:
        return self.n - self.mape_excluded > 0

    def to_dict(self) -> Dict[str, float]:
        out = asdict(self)
        out["mape_defined"] = self.mape_defined
        return out


@dataclass
class DieboldMarianoResult:
    """Diebold-Mariano test of equal expected loss between two forecasts."""

    statistic: float
    p_value: float
    alpha: float
    n: int
    horizon: int = 1
    harvey_correction: bool = True

    @property
    def significant(self) -> bool:
        return bool(np.isfinite(self.p_value) and self.p_value < self.alpha)

    @property
    def interpretation(self) -> str:
        if self.significant:
            return f"Reject equal predictive accuracy (p={self.p_value:.4f} < {self.alpha})"
        return f"Fail to reject equal predictive accuracy (p={self.p_value:.4f} >= {self.alpha})"


def _aligned_arrays(actual: ArrayLike, predicted: ArrayLike) -> Tuple[np.ndarray, np.ndarray]:
    """
    Convert two sequences to float arrays after checking they are aligned.

    Series are compared by index; other sequences by length only.
    """
    if isinstance(actual, pd.Series) and isinstance(predicted, pd.Series):
        if not actual.index.equals(predicted.index):
            raise MisalignedSeriesError(
                f"Series are not aligned: {len(actual)} vs {len(predicted)} points or differing timestamps"
            )
    yt = np.asarray(actual, dtype=float).ravel()
    yh = np.asarray(predicted, dtype=float).ravel()
    if yt.shape != yh.shape:
        raise MisalignedSeriesError(f"Length mismatch: {len(yt)} actual vs {len(yh)} predicted")
    return yt, yh


def rmse(actual: ArrayLike, predicted: ArrayLike) -> float:
    """
    Calculate Root Mean Square Error.

    RMSE penalizes large errors more heavily than MAE, and RMSE >= MAE always.

    Returns
    -------
    float
        Root mean square error, or NaN for empty input
    """
    yt, yh = _aligned_arrays(actual, predicted)
    if yt.size == 0:
        return float("nan")
    return float(np.sqrt(np.mean((yt - yh) ** 2)))


def mae(actual: ArrayLike, predicted: ArrayLike) -> float:
    """
    Calculate Mean Absolute Error.

    Returns
    -------
    float
        Mean absolute error, or NaN for empty input
    """
    yt, yh = _aligned_arrays(actual, predicted)
    if yt.size == 0:
        return float("nan")
    return float(np.mean(np.abs(yt - yh)))


def mape(actual: ArrayLike, predicted: ArrayLike) -> Tuple[float, int]:
    """
    Calculate Mean Absolute Percentage Error over the non-zero actuals.

    Return series cross zero, so MAPE is numerically unstable there; points
    whose actual value is exactly zero are excluded and counted instead of
    being coerced to zero or infinity.

    Returns
    -------
    Tuple[float, int]
        (MAPE in percent, number of excluded zero-actual points).
        MAPE is NaN when no non-zero actual remains.
    """
    yt, yh = _aligned_arrays(actual, predicted)
    nonzero = yt != 0.0
    excluded = int(yt.size - np.count_nonzero(nonzero))
    if not nonzero.any():
        return float("nan"), excluded
    value = float(np.mean(np.abs((yt[nonzero] - yh[nonzero]) / yt[nonzero])) * 100.0)
    return value, excluded


def compute_accuracy(actual: ArrayLike, predicted: ArrayLike, n_missing: int = 0) -> AccuracyReport:
    """
    Compute RMSE, MAE and MAPE for aligned actual and predicted values.

    Raises
    ------
    MisalignedSeriesError
        If the inputs differ in length (or, for two Series, in index)
    """
    mape_val, excluded = mape(actual, predicted)
    report = AccuracyReport(
        rmse=rmse(actual, predicted),
        mae=mae(actual, predicted),
        mape=mape_val,
        n=len(np.asarray(actual).ravel()),
        mape_excluded=excluded,
        n_missing=int(n_missing),
    )
    if excluded:
        logger.warning("MAPE excluded %d zero-valued actuals out of %d", excluded, report.n)
    return report


def dm_newey_west_var(d: np.ndarray, h: int) -> float:
    """
    Calculate Newey-West variance estimator for Diebold-Mariano test.

    This function estimates the variance of the mean loss differential using
    a Bartlett-weighted HAC estimator with h-1 autocovariance lags.

    Parameters
    ----------
    d : np.ndarray
        Array of loss differentials
    h : int
        Forecast horizon

    Returns
    -------
    float
        Variance of the mean differential (may be 0.0 for a constant series)
    """
    n = len(d)
    dbar = float(np.mean(d))
    e = d - dbar
    L = max(0, int(h) - 1)

    # Auto-covariances
    gamma0 = float(np.mean(e * e))
    s_hat = gamma0
    for k in range(1, min(L, n - 1) + 1):
        cov = float(np.mean(e[k:] * e[:-k]))
        w = 1.0 - (k / (L + 1.0))
        s_hat += 2.0 * w * cov

    return max(s_hat, 0.0) / n


def diebold_mariano(loss_a: ArrayLike,
                    loss_b: ArrayLike,
                    h: int = 1,
                    alpha: float = 0.05,
                    harvey_correction: bool = True) -> DieboldMarianoResult:
    """
    Perform the Diebold-Mariano test for equal predictive accuracy.

    Parameters
    ----------
    loss_a, loss_b : ArrayLike
        Per-period losses of two competing forecasts over the same periods
        (e.g., squared errors). Must have identical length (and index, for Series).
    h : int, default=1
        Forecast horizon; sets the Newey-West lag truncation to h-1
    alpha : float, default=0.05
        Significance level for the verdict
    harvey_correction : bool, default=True
        Apply the Harvey-Leybourne-Newbold small-sample correction and use
        Student-t (n-1 df) p-values; otherwise standard normal p-values

    Returns
    -------
    DieboldMarianoResult
        Statistic, two-sided p-value and verdict

    Notes
    -----
    Null hypothesis: both forecasts have equal expected loss. A positive
    statistic means forecast A has the larger loss. Identical loss series
    give a statistic of exactly 0 and a p-value of 1. A constant non-zero
    differential has zero variance and yields +/-inf with p-value 0.
    """
    la, lb = _aligned_arrays(loss_a, loss_b)
    n = la.size
    if n < 2:
        raise InsufficientDataError(f"Diebold-Mariano test needs at least 2 aligned losses, got {n}")
    if h < 1:
        raise ValueError(f"Forecast horizon h must be >= 1, got {h}")

    d = la - lb
    dbar = float(np.mean(d))
    var_dbar = dm_newey_west_var(d, h=h)

    if var_dbar <= 0.0:
        if dbar == 0.0:
            return DieboldMarianoResult(0.0, 1.0, alpha, n, h, harvey_correction)
        return DieboldMarianoResult(math.copysign(float("inf"), dbar), 0.0, alpha, n, h, harvey_correction)

    dm_t = dbar / math.sqrt(var_dbar)
    if harvey_correction:
        factor = math.sqrt(max((n + 1 - 2 * h + h * (h - 1) / n) / n, 0.0))
        dm_t *= factor
        p = 2.0 * float(stats.t.sf(abs(dm_t), df=n - 1))
    else:
        p = 2.0 * float(stats.norm.sf(abs(dm_t)))

    return DieboldMarianoResult(float(dm_t), float(min(max(p, 0.0), 1.0)), alpha, n, h, harvey_correction)


def loss_from_errors(errors: ArrayLike, loss: str = "squared") -> np.ndarray:
    """Map forecast errors to per-period losses ('squared' or 'absolute')."""
    e = np.asarray(errors, dtype=float)
    if loss == "squared":
        return e ** 2
    if loss == "absolute":
        return np.abs(e)
    raise ValueError(f"Unknown loss '{loss}'. Must be 'squared' or 'absolute'")


def evaluate_forecast(result) -> AccuracyReport:
    """
    Accuracy of a ForecastResult over its non-missing steps.

    Steps skipped under the "skip" refit policy are excluded from every
    metric and reported as ``n_missing``.
    """
    mask = result.predictions.notna()
    return compute_accuracy(result.actuals[mask], result.predictions[mask], n_missing=len(result.missing))


def loss_series(result, loss: str = "squared") -> pd.Series:
    """Per-period losses of a ForecastResult, indexed by the non-missing timestamps."""
    mask = result.predictions.notna()
    err = result.actuals[mask] - result.predictions[mask]
    return pd.Series(loss_from_errors(err.to_numpy(), loss), index=err.index, name=f"{loss}_loss")
