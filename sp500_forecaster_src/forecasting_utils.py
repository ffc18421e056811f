# sp500_forecaster_src/forecasting_utils.py

import hashlib
import math
import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from itertools import product
from typing import Dict, List, Optional, Tuple, Union
from tqdm.auto import tqdm
import logging

from statsmodels.tsa.statespace.sarimax import SARIMAX
from statsmodels.tsa.stattools import adfuller

from .errors import FitConvergenceError, ModelSelectionError, NonStationarySeriesError, InsufficientDataError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class ModelOrder:
    """ARMA lag orders: p autoregressive lags, q moving-average lags."""

    p: int
    q: int

    def __post_init__(self):
        if int(self.p) != self.p or int(self.q) != self.q or self.p < 0 or self.q < 0:
            raise ValueError(f"ARMA orders must be non-negative integers, got p={self.p}, q={self.q}")

    @classmethod
    def parse(cls, text: Union[str, Tuple[int, int], "ModelOrder"]) -> "ModelOrder":
        """Build an order from 'p,q', '(p,q)', a 2-tuple, or an existing ModelOrder."""
        if isinstance(text, ModelOrder):
            return text
        if isinstance(text, (tuple, list)):
            p, q = text
            return cls(int(p), int(q))
        parts = [x.strip() for x in str(text).strip().strip("()").split(",") if x.strip()]
        if len(parts) != 2:
            raise ValueError(f"Cannot parse ARMA order from '{text}', expected 'p,q'")
        return cls(int(parts[0]), int(parts[1]))

    def as_arima(self) -> Tuple[int, int, int]:
        """The (p, d, q) tuple with d=0."""
        return (self.p, 0, self.q)

    def __str__(self) -> str:
        return f"ARMA({self.p},{self.q})"


@dataclass
class StationarityResult:
    """Outcome of an augmented Dickey-Fuller test at a caller-chosen significance level."""

    statistic: float
    p_value: float
    alpha: float
    used_lag: int
    nobs: int
    critical_values: Dict[str, float] = field(default_factory=dict)
    regression: str = "c"

    @property
    def is_stationary(self) -> bool:
        return bool(np.isfinite(self.p_value) and self.p_value < self.alpha)


@dataclass
class OrderSelectionResult:
    """
    Information-criterion table of an ARMA grid search.

    Attributes
    ----------
    table : pd.DataFrame
        One row per (p, q) cell with columns ['p', 'q', 'AIC', 'BIC', 'converged'];
        'converged' is False and AIC/BIC are NaN for cells that failed to fit.
    best_aic : ModelOrder
        Order minimizing AIC (ties broken by lowest p, then lowest q)
    best_bic : ModelOrder
        Order minimizing BIC (same tie-breaking)
    nobs : int
        Sample size used by every fit
    """

    table: pd.DataFrame
    best_aic: ModelOrder
    best_bic: ModelOrder
    nobs: int

    @property
    def failed(self) -> List[ModelOrder]:
        bad = self.table[~self.table["converged"]]
        return [ModelOrder(int(r.p), int(r.q)) for r in bad.itertuples()]

    def grid(self, criterion: str = "AIC") -> pd.DataFrame:
        """p-by-q matrix of one criterion, NaN where the fit failed."""
        return self.table.pivot(index="p", columns="q", values=criterion)

    def ranked(self, criterion: str = "AIC") -> pd.DataFrame:
        """Successful cells sorted ascending by ``criterion``, then p, then q."""
        ok = self.table[self.table["converged"]]
        return ok.sort_values(by=[criterion, "p", "q"], ascending=True).reset_index(drop=True)


def adf_test(series: Union[pd.Series, np.ndarray],
             max_lag: Optional[int] = None,
             regression: str = "c",
             autolag: Optional[str] = "AIC") -> Tuple[float, float, int, int, Dict[str, float]]:
    """
    Run the Augmented Dickey-Fuller (ADF) test for unit roots.

    Parameters
    ----------
    series : Union[pd.Series, np.ndarray]
        Input series. NaNs are dropped prior to testing.
    max_lag : Optional[int]
        Maximum lag order of the test regression (statsmodels default when None)
    regression : str, default="c"
        Deterministic terms: "c" constant, "ct" constant and trend, "n" none
    autolag : Optional[str], default="AIC"
        Lag selection criterion; None uses exactly ``max_lag`` lags

    Returns
    -------
    Tuple[float, float, int, int, Dict[str, float]]
        (test_statistic, p_value, used_lag, nobs, critical_values)

    Notes
    -----
    - ADF null hypothesis: the series has a unit root (non-stationary)
    - Lower p-values (< alpha) suggest rejection of null (series is stationary)
    """
    s = pd.Series(series).dropna()
    res = adfuller(s.to_numpy(dtype=float), maxlag=max_lag, regression=regression, autolag=autolag)
    return float(res[0]), float(res[1]), int(res[2]), int(res[3]), {k: float(v) for k, v in res[4].items()}


def check_stationarity(series: Union[pd.Series, np.ndarray],
                       alpha: float,
                       max_lag: Optional[int] = None,
                       regression: str = "c",
                       autolag: Optional[str] = "AIC") -> StationarityResult:
    """
    Test a series for stationarity and return the verdict at significance ``alpha``.

    ``alpha`` is required; the configured value is ``stationarity.alpha``.
    A ``max_lag`` above what the sample supports (n // 2 - 1 - ntrend, where
    ntrend counts the deterministic regressors) is lowered to that bound.

    Raises
    ------
    InsufficientDataError
        If the sample is too short for even a zero-lag test regression
    """
    if not (0.0 < alpha < 1.0):
        raise ValueError(f"alpha must lie in (0, 1), got {alpha}")
    n = len(pd.Series(series).dropna())
    if n < 4:
        raise InsufficientDataError(f"ADF test needs at least 4 observations, got {n}")

    ntrend = 0 if regression == "n" else len(regression)
    lag_cap = n // 2 - 1 - ntrend
    if lag_cap < 0:
        raise InsufficientDataError(
            f"ADF test with regression='{regression}' needs more than {n} observations"
        )
    if max_lag is not None and max_lag > lag_cap:
        logger.warning("ADF max_lag=%d too large for %d observations; using %d", max_lag, n, lag_cap)
        max_lag = lag_cap

    stat, pval, used_lag, nobs, crit = adf_test(series, max_lag=max_lag, regression=regression, autolag=autolag)
    result = StationarityResult(
        statistic=stat, p_value=pval, alpha=alpha, used_lag=used_lag,
        nobs=nobs, critical_values=crit, regression=regression,
    )
    logger.info("ADF test: statistic=%.3f, p-value=%.4f, lags=%d -> %s at alpha=%.2f",
                stat, pval, used_lag, "stationary" if result.is_stationary else "non-stationary", alpha)
    return result


def require_stationary(result: StationarityResult) -> None:
    """Raise NonStationarySeriesError unless the ADF verdict is 'stationary'."""
    if not result.is_stationary:
        raise NonStationarySeriesError(
            f"ADF test did not reject a unit root (p={result.p_value:.4f} >= alpha={result.alpha}); "
            "refusing to fit ARMA to a non-stationary series",
            p_value=result.p_value,
        )


def fit_arma(endog: Union[pd.Series, np.ndarray],
             order: ModelOrder,
             trend: str = "c",
             fit_kwargs: Optional[Dict] = None):
    """
    Fit an ARMA(p, 0, q) model with a constant via the statsmodels state-space SARIMAX.

    Parameters
    ----------
    endog : Union[pd.Series, np.ndarray]
        Stationary series. Only the values are passed to the estimator so that
        irregular date indices never affect the fit.
    order : ModelOrder
        ARMA orders
    trend : str, default="c"
        Deterministic trend passed to SARIMAX ("c" adds the mean)
    fit_kwargs : Optional[Dict]
        Extra keyword arguments for ``SARIMAX.fit`` (``disp=False`` by default)

    Returns
    -------
    SARIMAXResults
        Fitted model results

    Raises
    ------
    FitConvergenceError
        If the estimator raises, or the estimated parameters or log-likelihood
        are not finite

    Notes
    -----
    On return-scale data (variance around 1e-3) L-BFGS often stops with
    ``warnflag=2`` on an already optimal point. The optimizer flag is logged
    but not treated as a failure; only the finiteness of the estimates is.
    """
    values = np.asarray(endog, dtype=float)
    kwargs = {"disp": False}
    if fit_kwargs:
        kwargs.update(fit_kwargs)

    try:
        res = SARIMAX(values, order=order.as_arima(), trend=trend).fit(**kwargs)
    except Exception as e:
        raise FitConvergenceError(f"{order} fit failed on {len(values)} observations: {e}",
                                  order=(order.p, order.q)) from e

    if not (np.isfinite(float(res.llf)) and np.all(np.isfinite(np.asarray(res.params, dtype=float)))):
        raise FitConvergenceError(f"{order} produced non-finite estimates on {len(values)} observations",
                                  order=(order.p, order.q))

    retvals = getattr(res, "mle_retvals", None) or {}
    if not retvals.get("converged", True):
        logger.debug("%s optimizer stopped with warnflag=%s on %d observations; keeping finite estimates",
                     order, retvals.get("warnflag"), len(values))
    return res


def information_criteria(res) -> Tuple[float, float]:
    """
    AIC and BIC from a fitted model's log-likelihood.

    AIC = -2 llf + 2k and BIC = -2 llf + k ln(n), where k counts every
    estimated parameter (including the innovation variance) and n is the
    number of observations used by the fit.
    """
    llf = float(res.llf)
    k = int(np.size(res.params))
    n = int(res.nobs)
    aic = -2.0 * llf + 2.0 * k
    bic = -2.0 * llf + k * math.log(n)
    return aic, bic


def select_order(endog: Union[pd.Series, np.ndarray],
                 max_p: int,
                 max_q: int,
                 trend: str = "c",
                 show_progress: bool = True) -> OrderSelectionResult:
    """
    Grid-search ARMA(p, q) orders and rank by AIC and BIC independently.

    Every cell of [0, max_p] x [0, max_q] is attempted. A cell that raises or
    yields non-finite estimates is recorded as missing and the sweep continues.

    Parameters
    ----------
    endog : Union[pd.Series, np.ndarray]
        Stationary series (NaNs dropped)
    max_p, max_q : int
        Inclusive upper bounds of the AR and MA orders
    trend : str, default="c"
        Deterministic trend for every candidate
    show_progress : bool, default=True
        Display a tqdm progress bar

    Returns
    -------
    OrderSelectionResult
        Full table plus the AIC- and BIC-minimizing orders

    Raises
    ------
    ModelSelectionError
        If the constant-mean ARMA(0,0) cell itself cannot be fit
    """
    if max_p < 0 or max_q < 0:
        raise ValueError(f"max_p and max_q must be non-negative, got {max_p}, {max_q}")

    values = pd.Series(endog).dropna().to_numpy(dtype=float)
    rows: List[Dict[str, object]] = []

    grid = list(product(range(max_p + 1), range(max_q + 1)))
    for p, q in tqdm(grid, desc="Grid search ARMA", disable=not show_progress):
        order = ModelOrder(p, q)
        try:
            res = fit_arma(values, order, trend=trend)
        except FitConvergenceError as e:
            logger.debug("Grid cell %s recorded as missing: %s", order, e)
            rows.append({"p": p, "q": q, "AIC": np.nan, "BIC": np.nan, "converged": False})
            continue
        aic, bic = information_criteria(res)
        rows.append({"p": p, "q": q, "AIC": aic, "BIC": bic, "converged": True})

    table = pd.DataFrame(rows, columns=["p", "q", "AIC", "BIC", "converged"])
    base = table[(table["p"] == 0) & (table["q"] == 0)]
    if base.empty or not bool(base["converged"].iloc[0]):
        raise ModelSelectionError("ARMA(0,0) could not be fit; no order can be selected")

    n_failed = int((~table["converged"]).sum())
    if n_failed:
        logger.warning("%d of %d grid cells failed to fit and were skipped", n_failed, len(table))

    result = OrderSelectionResult(
        table=table,
        best_aic=_best_by(table, "AIC"),
        best_bic=_best_by(table, "BIC"),
        nobs=len(values),
    )
    logger.info("Selected %s by AIC and %s by BIC over %d observations",
                result.best_aic, result.best_bic, result.nobs)
    return result


def _best_by(table: pd.DataFrame, criterion: str) -> ModelOrder:
    ok = table[table["converged"]].sort_values(by=[criterion, "p", "q"], ascending=True)
    row = ok.iloc[0]
    return ModelOrder(int(row["p"]), int(row["q"]))


def forecast_from_fit(res, steps: int) -> np.ndarray:
    """Point forecasts for ``steps`` periods beyond the end of a fitted sample."""
    fc = res.get_forecast(steps=steps)
    return np.asarray(fc.predicted_mean, dtype=float)


def one_step_forecast_at(endog: pd.Series,
                         order: ModelOrder,
                         i: int,
                         trend: str = "c") -> float:
    """
    Compute a single one-step-ahead forecast at index i using training data up to i-1.

    A fresh model is fit to ``endog.iloc[:i]`` and only its first forecast is
    kept, so nothing at or after position i can influence the prediction.

    Parameters
    ----------
    endog : pd.Series
        Full series
    order : ModelOrder
        ARMA orders
    i : int
        Position to forecast (must satisfy 1 <= i < len(endog))
    trend : str, default="c"
        Deterministic trend

    Returns
    -------
    float
        One-step forecast value

    Raises
    ------
    ValueError
        If index i is out of valid range
    FitConvergenceError
        If the refit fails; there is no fallback prediction
    """
    if i <= 0 or i >= len(endog):
        raise ValueError("Index i must satisfy 1 <= i < len(endog).")
    res = fit_arma(endog.iloc[:i], order, trend=trend)
    return float(forecast_from_fit(res, 1)[0])


def hash_forecast(seq: Union[List[float], np.ndarray, pd.Series]) -> str:
    """
    Generate a hash fingerprint for a forecast sequence.

    Returns the first 16 characters of the SHA-1 digest of the float64 bytes,
    useful for spotting duplicate runs in the metrics CSV.
    """
    arr = np.asarray(seq, dtype=np.float64)
    return hashlib.sha1(arr.tobytes()).hexdigest()[:16]
