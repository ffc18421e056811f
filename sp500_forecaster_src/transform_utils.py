# sp500_forecaster_src/transform_utils.py

import numpy as np
import pandas as pd
from scipy import stats
from typing import Dict, Tuple
import logging

from helpers.temporal import to_monthly_last
from .errors import DataValidationError, InsufficientDataError

logger = logging.getLogger(__name__)


def validate_time_series(series: pd.Series, name: str = "series") -> pd.Series:
    """
    Check the time series invariants required by every pipeline stage.

    Parameters
    ----------
    series : pd.Series
        Series to validate
    name : str, default="series"
        Label used in error messages

    Returns
    -------
    pd.Series
        The same series (not copied), for call chaining

    Raises
    ------
    DataValidationError
        If the index is not a DatetimeIndex, is not strictly increasing, or
        contains NaN values anywhere other than the leading edge
    """
    if not isinstance(series, pd.Series):
        raise DataValidationError(f"{name} must be a pandas Series, got {type(series).__name__}")
    if not isinstance(series.index, pd.DatetimeIndex):
        raise DataValidationError(f"{name} must have a DatetimeIndex")
    if series.index.has_duplicates:
        raise DataValidationError(f"{name} contains duplicate timestamps")
    if not series.index.is_monotonic_increasing:
        raise DataValidationError(f"{name} timestamps are not strictly increasing")

    isna = series.isna().to_numpy()
    if isna.any():
        first_valid = int(np.argmin(isna)) if not isna.all() else len(isna)
        if isna[first_valid:].any():
            raise DataValidationError(f"{name} contains NaN values after the leading edge")
    return series


def log_returns(prices: pd.Series) -> pd.Series:
    """
    Compute log returns r[t] = ln(p[t]) - ln(p[t-1]).

    The first return is undefined and excluded (not zero-filled), so the
    output is one element shorter than the input.

    Parameters
    ----------
    prices : pd.Series
        Strictly positive price series

    Returns
    -------
    pd.Series
        Log returns indexed by the later timestamp of each pair

    Raises
    ------
    DataValidationError
        If any price is non-positive
    """
    px = prices.dropna()
    if (px <= 0).any():
        raise DataValidationError("log returns require strictly positive prices")
    returns = np.log(px).diff().iloc[1:]
    returns.name = "log_return"
    return returns


def prepare_monthly_returns(prices: pd.Series, label: str = "month_end") -> Tuple[pd.Series, pd.Series]:
    """
    Resample irregular prices to monthly frequency and derive log returns.

    Parameters
    ----------
    prices : pd.Series
        Raw closing prices with DatetimeIndex (irregular intra-month frequency)
    label : str, default="month_end"
        Monthly index policy, see ``helpers.temporal.to_monthly_last``

    Returns
    -------
    Tuple[pd.Series, pd.Series]
        (monthly_prices, monthly_log_returns)

    Raises
    ------
    InsufficientDataError
        If fewer than 2 monthly observations exist
    """
    monthly = to_monthly_last(prices, label=label)
    if len(monthly) < 2:
        raise InsufficientDataError(
            f"Need at least 2 monthly observations to form returns, got {len(monthly)}"
        )
    returns = log_returns(monthly)
    logger.info("Prepared %d monthly prices (%s to %s) and %d log returns",
                len(monthly), monthly.index[0].date(), monthly.index[-1].date(), len(returns))
    return monthly, returns


def summarize_returns(returns: pd.Series) -> Dict[str, float]:
    """Descriptive statistics of a return series, including a Jarque-Bera normality p-value."""
    r = pd.Series(returns).dropna().astype(float)
    n = len(r)
    if n == 0:
        raise InsufficientDataError("Cannot summarize an empty return series")

    summary = {
        "n": float(n),
        "mean": float(r.mean()),
        "median": float(r.median()),
        "std": float(r.std(ddof=1)) if n > 1 else float("nan"),
        "min": float(r.min()),
        "max": float(r.max()),
        "skew": float(stats.skew(r, bias=False)) if n > 2 else float("nan"),
        "excess_kurtosis": float(stats.kurtosis(r, fisher=True, bias=False)) if n > 3 else float("nan"),
    }
    if n > 2:
        jb = stats.jarque_bera(r)
        summary["jarque_bera_p"] = float(jb.pvalue)
    else:
        summary["jarque_bera_p"] = float("nan")
    return summary
