"""Fixed-origin (dynamic) and rolling-origin (static) forecast harness.

This module splits a stationary series into an in-sample prefix and an
out-of-sample suffix of length H and produces two families of forecasts:

- Dynamic: one fit on the prefix, one H-step-ahead forecast (1 fit)
- Static: for every out-of-sample step, a fresh fit on all data observed
  before that step and its one-step-ahead forecast (H fits)

Features:
- Strict out-of-sample evaluation with no look-ahead
- Explicit refit failure policy ("raise" or "skip"), never a fallback value
- Optional thread pool for the independent static refits
- Integration with the configuration system
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from tqdm.auto import tqdm

from sp500_forecaster_src import forecasting_utils as fu
from sp500_forecaster_src.errors import FitConvergenceError, InvalidHorizonError, MisalignedSeriesError
from sp500_forecaster_src.forecasting_utils import ModelOrder
from sp500_forecaster_src.metrics_utils import (
    AccuracyReport,
    DieboldMarianoResult,
    diebold_mariano,
    evaluate_forecast,
    loss_series,
)
from sp500_forecaster_src.transform_utils import validate_time_series

logger = logging.getLogger(__name__)

FAILURE_POLICIES = ("raise", "skip")


@dataclass
class BacktestConfig:
    """Configuration for the forecast harness."""

    horizon: int = 24                   # Out-of-sample length H
    trend: str = "c"                    # Deterministic trend of every ARMA fit
    on_failure: str = "raise"           # Static refit failure policy: "raise" or "skip"
    max_workers: int = 1                # Threads for static refits (1 = sequential)
    show_progress: bool = False         # tqdm progress bar over static refits

    def __post_init__(self):
        if self.on_failure not in FAILURE_POLICIES:
            raise ValueError(f"on_failure must be one of {FAILURE_POLICIES}, got '{self.on_failure}'")
        if int(self.max_workers) < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")

    @classmethod
    def from_config_manager(cls, config_manager: Optional = None) -> 'BacktestConfig':
        """Create BacktestConfig from configuration manager.

        Parameters
        ----------
        config_manager : ConfigurationManager, optional
            Configuration manager instance

        Returns
        -------
        BacktestConfig
            Configured harness settings
        """
        config = cls()  # Start with defaults
        if config_manager:
            config = cls(
                horizon=int(config_manager.get("backtesting.horizon", config.horizon)),
                trend=config_manager.get("model.trend", config.trend),
                on_failure=config_manager.get("backtesting.on_fit_failure", config.on_failure),
                max_workers=int(config_manager.get("backtesting.max_workers", config.max_workers)),
                show_progress=bool(config_manager.get("backtesting.show_progress", config.show_progress)),
            )
            logger.info("Loaded backtest configuration from config manager")
        return config


@dataclass
class ForecastResult:
    """Forecasts aligned index-for-index with the held-out actual values."""

    order: ModelOrder
    mode: str                           # "dynamic" or "static"
    predictions: pd.Series
    actuals: pd.Series
    n_fits: int
    missing: List[pd.Timestamp] = field(default_factory=list)

    # Timing information
    elapsed_seconds: Optional[float] = None

    def __post_init__(self):
        """Validate forecast/actual alignment."""
        if len(self.predictions) != len(self.actuals) or not self.predictions.index.equals(self.actuals.index):
            raise MisalignedSeriesError(
                f"{self.order} {self.mode} forecast is not aligned with actuals "
                f"({len(self.predictions)} vs {len(self.actuals)} points)"
            )

    @property
    def horizon(self) -> int:
        return len(self.actuals)

    @property
    def label(self) -> str:
        return f"{self.order} {self.mode}"

    def losses(self, loss: str = "squared") -> pd.Series:
        return loss_series(self, loss)

    def accuracy(self) -> AccuracyReport:
        """RMSE/MAE/MAPE over the non-missing steps."""
        return evaluate_forecast(self)


def validate_horizon(n_obs: int, horizon: int) -> None:
    """Raise InvalidHorizonError unless 0 < horizon < n_obs."""
    if horizon <= 0:
        raise InvalidHorizonError(f"Forecast horizon must be positive, got {horizon}")
    if horizon >= n_obs:
        raise InvalidHorizonError(
            f"Forecast horizon {horizon} leaves no in-sample data for a series of length {n_obs}"
        )


def split_series(series: pd.Series, horizon: int) -> Tuple[pd.Series, pd.Series]:
    """Split into the in-sample prefix [0, N-H) and out-of-sample suffix [N-H, N)."""
    validate_horizon(len(series), horizon)
    cut = len(series) - horizon
    return series.iloc[:cut], series.iloc[cut:]


def dynamic_forecast(series: pd.Series, order: ModelOrder, horizon: int, trend: str = "c") -> ForecastResult:
    """
    Fit once on the in-sample prefix and forecast all H out-of-sample points.

    Every prediction uses only information up to the end of the prefix, so
    the error is expected to grow with the horizon.

    Raises
    ------
    InvalidHorizonError
        If horizon <= 0 or horizon >= len(series)
    FitConvergenceError
        If the single fit fails
    """
    validate_time_series(series, name="endog")
    in_sample, out_sample = split_series(series, horizon)
    start = datetime.now()

    res = fu.fit_arma(in_sample, order, trend=trend)
    preds = fu.forecast_from_fit(res, horizon)

    result = ForecastResult(
        order=order,
        mode="dynamic",
        predictions=pd.Series(preds, index=out_sample.index, name="forecast"),
        actuals=out_sample.rename("actual"),
        n_fits=1,
        elapsed_seconds=(datetime.now() - start).total_seconds(),
    )
    logger.debug("%s dynamic forecast over %d steps from origin %s",
                 order, horizon, in_sample.index[-1].date())
    return result


def _static_step(series: pd.Series, order: ModelOrder, i: int, step: int, trend: str, on_failure: str) -> float:
    """Static step ``step`` (1..H): forecast position i from a fresh fit on series[:i]."""
    try:
        return fu.one_step_forecast_at(series, order, i, trend=trend)
    except FitConvergenceError as e:
        e.step = step
        if on_failure == "raise":
            raise
        logger.warning("Static refit of %s at step %d (%s) failed, step marked missing: %s",
                       order, step, series.index[i].date(), e)
        return float("nan")


def static_forecast(series: pd.Series,
                    order: ModelOrder,
                    horizon: int,
                    trend: str = "c",
                    on_failure: str = "raise",
                    max_workers: int = 1,
                    show_progress: bool = False) -> ForecastResult:
    """
    Rolling-origin one-step forecasts with a fresh fit per out-of-sample step.

    For step i in 1..H the model is fit to positions [0, N-H+i-1) and only its
    one-step-ahead prediction is kept. This is computationally intensive (H
    fits) but each prediction uses the freshest data available at that time.

    Parameters
    ----------
    series : pd.Series
        Stationary series with DatetimeIndex
    order : ModelOrder
        ARMA orders, identical for every refit
    horizon : int
        Number of out-of-sample steps H
    trend : str, default="c"
        Deterministic trend
    on_failure : str, default="raise"
        "raise": the first failed refit aborts with FitConvergenceError.
        "skip": the step's prediction is NaN and its timestamp is listed in
        ``ForecastResult.missing``.
    max_workers : int, default=1
        Thread pool size; steps are independent and are reassembled in
        chronological order
    show_progress : bool, default=False
        Display a tqdm progress bar

    Returns
    -------
    ForecastResult
        H one-step predictions aligned with the out-of-sample actuals
    """
    if on_failure not in FAILURE_POLICIES:
        raise ValueError(f"on_failure must be one of {FAILURE_POLICIES}, got '{on_failure}'")
    validate_time_series(series, name="endog")
    _, out_sample = split_series(series, horizon)
    cut = len(series) - horizon
    positions = list(range(cut, len(series)))
    start = datetime.now()

    def _step(i: int) -> float:
        return _static_step(series, order, i, i - cut + 1, trend, on_failure)

    desc = f"Static {order}"
    if max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            preds = list(tqdm(pool.map(_step, positions), total=len(positions),
                              desc=desc, disable=not show_progress))
    else:
        preds = [_step(i) for i in tqdm(positions, desc=desc, disable=not show_progress)]

    predictions = pd.Series(np.asarray(preds, dtype=float), index=out_sample.index, name="forecast")
    missing = list(predictions.index[predictions.isna()])

    result = ForecastResult(
        order=order,
        mode="static",
        predictions=predictions,
        actuals=out_sample.rename("actual"),
        n_fits=len(positions),
        missing=missing,
        elapsed_seconds=(datetime.now() - start).total_seconds(),
    )
    if missing:
        logger.warning("%s static forecast: %d of %d steps missing", order, len(missing), horizon)
    return result


def compare_forecasts(result_a: ForecastResult,
                      result_b: ForecastResult,
                      loss: str = "squared",
                      alpha: float = 0.05,
                      harvey_correction: bool = True,
                      h: int = 1) -> DieboldMarianoResult:
    """
    Diebold-Mariano comparison of two forecasts of the same out-of-sample actuals.

    Steps missing from either forecast are dropped from both loss series.
    ``h`` sets the Newey-West lag truncation (h-1); the default of 1 matches
    one-step (static) forecasts.

    Raises
    ------
    MisalignedSeriesError
        If the two results do not cover identical out-of-sample timestamps
    """
    if not result_a.actuals.index.equals(result_b.actuals.index):
        raise MisalignedSeriesError(
            f"Cannot compare {result_a.label} and {result_b.label}: out-of-sample periods differ"
        )
    la = result_a.losses(loss)
    lb = result_b.losses(loss)
    common = la.index.intersection(lb.index)
    return diebold_mariano(la.loc[common], lb.loc[common], h=h, alpha=alpha,
                           harvey_correction=harvey_correction)


class ForecastHarness:
    """Runs dynamic and static forecasts for one or more orders under a shared configuration."""

    def __init__(self, config: Optional[BacktestConfig] = None):
        """Initialize the harness.

        Parameters
        ----------
        config : BacktestConfig, optional
            Harness configuration. If None, uses defaults.
        """
        self.config = config or BacktestConfig()

    def dynamic(self, series: pd.Series, order: ModelOrder) -> ForecastResult:
        return dynamic_forecast(series, order, self.config.horizon, trend=self.config.trend)

    def static(self, series: pd.Series, order: ModelOrder) -> ForecastResult:
        return static_forecast(
            series, order, self.config.horizon,
            trend=self.config.trend,
            on_failure=self.config.on_failure,
            max_workers=self.config.max_workers,
            show_progress=self.config.show_progress,
        )

    def run(self, series: pd.Series, orders: List[ModelOrder]) -> Dict[Tuple[ModelOrder, str], ForecastResult]:
        """Dynamic and static forecasts for every order, keyed by (order, mode)."""
        validate_horizon(len(series), self.config.horizon)
        results: Dict[Tuple[ModelOrder, str], ForecastResult] = {}
        for order in orders:
            logger.info("Forecasting %s over the last %d periods", order, self.config.horizon)
            results[(order, "dynamic")] = self.dynamic(series, order)
            results[(order, "static")] = self.static(series, order)
        return results
