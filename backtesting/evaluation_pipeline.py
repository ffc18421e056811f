"""End-to-end backtesting and evaluation pipeline for monthly S&P 500 returns.

This module wires the stages together:

raw prices -> monthly returns -> stationarity verdict -> AIC/BIC order
selection -> dynamic and static forecasts -> accuracy reports ->
Diebold-Mariano comparisons.

Features:
- Configuration system integration
- Fail-fast stationarity gate with an explicit override
- Two model specifications (AIC and BIC choices, plus a mean benchmark when they agree)
- Tidy DataFrames of every numeric result for presentation layers
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import pandas as pd

from sp500_forecaster_src.forecasting_utils import (
    ModelOrder,
    OrderSelectionResult,
    StationarityResult,
    check_stationarity,
    require_stationary,
    select_order,
)
from sp500_forecaster_src.metrics_utils import AccuracyReport, DieboldMarianoResult
from sp500_forecaster_src.transform_utils import prepare_monthly_returns, summarize_returns

from .rolling_origin import BacktestConfig, ForecastHarness, ForecastResult, compare_forecasts, validate_horizon

logger = logging.getLogger(__name__)

BENCHMARK_ORDER = ModelOrder(0, 0)


@dataclass
class PipelineConfig:
    """Settings of every pipeline stage."""

    # Series preparation
    resample_label: str = "month_end"

    # Stationarity gate
    adf_alpha: float = 0.05
    adf_max_lag: Optional[int] = 12
    adf_regression: str = "c"
    adf_autolag: Optional[str] = "AIC"
    allow_non_stationary: bool = False

    # Order selection
    max_p: int = 5
    max_q: int = 5
    extra_orders: List[ModelOrder] = field(default_factory=list)

    # Forecast harness
    backtest: BacktestConfig = field(default_factory=BacktestConfig)

    # Evaluation
    dm_alpha: float = 0.05
    dm_loss: str = "squared"
    harvey_correction: bool = True

    @classmethod
    def from_config_manager(cls, config_manager: Optional = None) -> 'PipelineConfig':
        """Create PipelineConfig from configuration manager.

        Parameters
        ----------
        config_manager : ConfigurationManager, optional
            Configuration manager instance

        Returns
        -------
        PipelineConfig
            Configured pipeline settings
        """
        config = cls()  # Start with defaults
        if not config_manager:
            return config

        get = config_manager.get
        config.resample_label = get("data.resample_label", config.resample_label)
        config.adf_alpha = float(get("stationarity.alpha", config.adf_alpha))
        config.adf_max_lag = get("stationarity.max_lag", config.adf_max_lag)
        config.adf_regression = get("stationarity.regression", config.adf_regression)
        config.adf_autolag = get("stationarity.autolag", config.adf_autolag)
        config.allow_non_stationary = bool(get("stationarity.allow_non_stationary", config.allow_non_stationary))
        config.max_p = int(get("model.max_p", config.max_p))
        config.max_q = int(get("model.max_q", config.max_q))
        config.extra_orders = [ModelOrder.parse(o) for o in (get("model.extra_orders", []) or [])]
        config.backtest = BacktestConfig.from_config_manager(config_manager)
        config.dm_alpha = float(get("evaluation.dm_alpha", config.dm_alpha))
        config.dm_loss = get("evaluation.dm_loss", config.dm_loss)
        config.harvey_correction = bool(get("evaluation.harvey_correction", config.harvey_correction))
        return config


@dataclass
class ComparisonResult:
    """A labelled Diebold-Mariano comparison between two forecasts."""

    name_a: str
    name_b: str
    test: DieboldMarianoResult


@dataclass
class PipelineResult:
    """Every intermediate and final numeric result of one pipeline run."""

    monthly_prices: pd.Series
    returns: pd.Series
    summary: Dict[str, float]
    stationarity: StationarityResult
    selection: OrderSelectionResult
    orders: List[ModelOrder]
    forecasts: Dict[Tuple[ModelOrder, str], ForecastResult]
    accuracy: Dict[Tuple[ModelOrder, str], AccuracyReport]
    comparisons: List[ComparisonResult]
    elapsed_seconds: Optional[float] = None

    def accuracy_frame(self) -> pd.DataFrame:
        """One row per (order, mode) with RMSE/MAE/MAPE and bookkeeping counts."""
        rows = []
        for (order, mode), rep in self.accuracy.items():
            row = {"model": str(order), "p": order.p, "q": order.q, "mode": mode}
            row.update(rep.to_dict())
            row["n_fits"] = self.forecasts[(order, mode)].n_fits
            rows.append(row)
        return pd.DataFrame(rows)

    def dm_frame(self) -> pd.DataFrame:
        """One row per Diebold-Mariano comparison."""
        rows = [{
            "forecast_a": c.name_a,
            "forecast_b": c.name_b,
            "DM_stat": c.test.statistic,
            "DM_p": c.test.p_value,
            "significant": c.test.significant,
            "alpha": c.test.alpha,
            "n": c.test.n,
        } for c in self.comparisons]
        return pd.DataFrame(rows, columns=["forecast_a", "forecast_b", "DM_stat", "DM_p", "significant", "alpha", "n"])


def candidate_orders(selection: OrderSelectionResult, extra_orders: Optional[List[ModelOrder]] = None) -> List[ModelOrder]:
    """
    Orders to forecast: AIC choice, BIC choice, then configured extras.

    When AIC and BIC agree, the ARMA(0,0) mean model is added as the second
    specification so that two forecasts are always compared.
    """
    orders: List[ModelOrder] = []
    for o in [selection.best_aic, selection.best_bic]:
        if o not in orders:
            orders.append(o)
    if len(orders) == 1 and BENCHMARK_ORDER not in orders:
        orders.append(BENCHMARK_ORDER)
    for o in extra_orders or []:
        if o not in orders:
            orders.append(o)
    return orders


class BacktestingPipeline:
    """Comprehensive backtesting evaluation pipeline."""

    def __init__(self, config: Optional[PipelineConfig] = None):
        """Initialize the backtesting pipeline.

        Parameters
        ----------
        config : PipelineConfig, optional
            Pipeline settings. If None, uses defaults.
        """
        self.config = config or PipelineConfig()

    def run(self, prices: pd.Series) -> PipelineResult:
        """
        Run the full pipeline on raw (irregular, e.g. daily) closing prices.

        Raises
        ------
        InsufficientDataError
            Fewer than 2 monthly observations
        NonStationarySeriesError
            Returns fail the ADF test and the override is not set
        ModelSelectionError
            Not even ARMA(0,0) can be fit
        InvalidHorizonError
            Horizon does not leave in-sample data
        FitConvergenceError
            A forecast fit fails under the "raise" policy
        """
        cfg = self.config
        start_time = datetime.now()

        monthly, returns = prepare_monthly_returns(prices, label=cfg.resample_label)
        validate_horizon(len(returns), cfg.backtest.horizon)
        summary = summarize_returns(returns)
        logger.info("Monthly log returns: mean=%.5f, median=%.5f, std=%.5f",
                    summary["mean"], summary["median"], summary["std"])

        stationarity = check_stationarity(
            returns, alpha=cfg.adf_alpha, max_lag=cfg.adf_max_lag,
            regression=cfg.adf_regression, autolag=cfg.adf_autolag,
        )
        if cfg.allow_non_stationary:
            if not stationarity.is_stationary:
                logger.warning("Proceeding on a non-stationary series (p=%.4f) because the override is set",
                               stationarity.p_value)
        else:
            require_stationary(stationarity)

        # Orders are selected on the in-sample prefix only
        in_sample = returns.iloc[: len(returns) - cfg.backtest.horizon]
        selection = select_order(in_sample, cfg.max_p, cfg.max_q, trend=cfg.backtest.trend,
                                 show_progress=cfg.backtest.show_progress)
        logger.info("Top 5 models by AIC:\n%s", selection.ranked("AIC").head().to_string())
        logger.info("Top 5 models by BIC:\n%s", selection.ranked("BIC").head().to_string())

        orders = candidate_orders(selection, cfg.extra_orders)
        harness = ForecastHarness(cfg.backtest)
        forecasts = harness.run(returns, orders)

        accuracy: Dict[Tuple[ModelOrder, str], AccuracyReport] = {}
        for key, fc in forecasts.items():
            accuracy[key] = fc.accuracy()
            rep = accuracy[key]
            logger.info("%s: RMSE=%.5f MAE=%.5f MAPE=%.2f%% (excluded=%d, missing=%d)",
                        fc.label, rep.rmse, rep.mae, rep.mape, rep.mape_excluded, rep.n_missing)

        comparisons = self._compare(orders, forecasts)

        elapsed = (datetime.now() - start_time).total_seconds()
        logger.info("Pipeline completed in %.2f seconds", elapsed)
        return PipelineResult(
            monthly_prices=monthly,
            returns=returns,
            summary=summary,
            stationarity=stationarity,
            selection=selection,
            orders=orders,
            forecasts=forecasts,
            accuracy=accuracy,
            comparisons=comparisons,
            elapsed_seconds=elapsed,
        )

    def _compare(self, orders: List[ModelOrder],
                 forecasts: Dict[Tuple[ModelOrder, str], ForecastResult]) -> List[ComparisonResult]:
        """DM tests: first two orders per mode, then static vs dynamic per order.

        Pairs with fewer than 2 steps present in both forecasts are skipped.
        """
        cfg = self.config
        pairs: List[Tuple[ForecastResult, ForecastResult]] = []
        if len(orders) >= 2:
            for mode in ("static", "dynamic"):
                pairs.append((forecasts[(orders[0], mode)], forecasts[(orders[1], mode)]))
        for order in orders:
            pairs.append((forecasts[(order, "static")], forecasts[(order, "dynamic")]))

        out: List[ComparisonResult] = []
        for a, b in pairs:
            n_common = len(a.losses(cfg.dm_loss).index.intersection(b.losses(cfg.dm_loss).index))
            if n_common < 2:
                logger.warning("DM %s vs %s skipped: %d common out-of-sample steps, need at least 2",
                               a.label, b.label, n_common)
                continue
            test = compare_forecasts(a, b, loss=cfg.dm_loss, alpha=cfg.dm_alpha,
                                     harvey_correction=cfg.harvey_correction)
            logger.info("DM %s vs %s: stat=%.3f p=%.4f -> %s",
                        a.label, b.label, test.statistic, test.p_value, test.interpretation)
            out.append(ComparisonResult(a.label, b.label, test))
        return out


def run_pipeline(prices: pd.Series, config_manager: Optional = None,
                 custom_config: Optional[PipelineConfig] = None) -> PipelineResult:
    """Convenience function: build the configuration and run the pipeline.

    Parameters
    ----------
    prices : pd.Series
        Raw closing prices with DatetimeIndex
    config_manager : optional
        Configuration manager
    custom_config : PipelineConfig, optional
        Explicit configuration (takes precedence over the manager)

    Returns
    -------
    PipelineResult
    """
    config = custom_config or PipelineConfig.from_config_manager(config_manager)
    return BacktestingPipeline(config).run(prices)
