# sp500_forecaster_src/main.py

"""
ARMA modeling and forecast evaluation on monthly S&P 500 log returns.

This is the main entry point for the S&P 500 forecasting system.

Purpose
-------
- Load a daily closing-price CSV (e.g. a Nasdaq "Close/Last" export)
- Reduce it to month-end prices and monthly log returns; visualize and summarize them
- Gate on stationarity with an augmented Dickey-Fuller test
- Grid-search ARMA(p, q) orders by AIC and BIC on the in-sample prefix
- Produce dynamic (one fit, H steps) and static (H refits, one step each)
  forecasts over the last H months and score them with RMSE, MAE and MAPE
- Compare forecasts pairwise with the Diebold-Mariano test; export metrics,
  the AIC/BIC grid, an optional markdown report, and figures

Configuration-Driven Workflow
-----------------------------
Model parameters and evaluation settings are managed via the YAML
configuration file config/forecaster.yaml. CLI arguments override
configuration values where applicable.
"""

import argparse
import logging
import warnings
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from . import config_utils
from .config_utils import initialize_config, get_config_value
from .data_utils import DEFAULT_PRICE_COLUMNS, load_price_csv
from .errors import ForecasterError
from .file_utils import (
    METRICS_HEADER, append_eval_md, append_metrics_csv_row, ensure_dir, md_table_from_df, resolve_path
)
from .forecasting_utils import hash_forecast
from .parsing_utils import (
    parse_order_list, validate_failure_policy, validate_log_level, validate_non_negative
)
from .plotting_utils import (
    plot_acf_pacf, plot_forecast_comparison, plot_information_criteria,
    plot_price_series, plot_return_histogram, plot_return_series
)

logger = logging.getLogger(__name__)


def build_pipeline_config(args: argparse.Namespace):
    """
    Build the pipeline settings from the configuration file and CLI overrides.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed CLI arguments; None-valued options fall back to the configuration file

    Returns
    -------
    PipelineConfig
    """
    # Imported here: the backtesting package imports this package's modules
    from backtesting.evaluation_pipeline import PipelineConfig

    config = PipelineConfig.from_config_manager(config_utils.config_manager)

    config.max_p = validate_non_negative(get_config_value("model.max_p", config.max_p, args, "max_p"), "max_p")
    config.max_q = validate_non_negative(get_config_value("model.max_q", config.max_q, args, "max_q"), "max_q")
    config.adf_alpha = float(get_config_value("stationarity.alpha", config.adf_alpha, args, "alpha"))
    config.adf_max_lag = get_config_value("stationarity.max_lag", config.adf_max_lag, args, "adf_max_lag")
    if getattr(args, "allow_non_stationary", False):
        config.allow_non_stationary = True

    extra = parse_order_list(getattr(args, "extra_orders", None))
    if extra:
        config.extra_orders = extra

    bt = config.backtest
    bt.horizon = int(get_config_value("backtesting.horizon", bt.horizon, args, "horizon"))
    bt.on_failure = validate_failure_policy(
        get_config_value("backtesting.on_fit_failure", bt.on_failure, args, "on_fit_failure")
    )
    bt.max_workers = max(1, int(get_config_value("backtesting.max_workers", bt.max_workers, args, "workers")))
    return config


def export_metrics(result, metrics_csv_path: Optional[Path], source: str) -> None:
    """Append one metrics row per (order, mode) forecast."""
    if metrics_csv_path is None:
        return
    ts = datetime.now(timezone.utc).isoformat()
    for (order, mode), rep in result.accuracy.items():
        fc = result.forecasts[(order, mode)]
        row = {
            "timestamp": ts,
            "source": source,
            "n_returns": len(result.returns),
            "horizon": fc.horizon,
            "model": str(order),
            "p": order.p,
            "q": order.q,
            "mode": mode,
            "RMSE": rep.rmse,
            "MAE": rep.mae,
            "MAPE": rep.mape,
            "MAPE_excluded": rep.mape_excluded,
            "n_missing": rep.n_missing,
            "n_fits": fc.n_fits,
            "hash_forecast": hash_forecast(fc.predictions.to_numpy()),
        }
        append_metrics_csv_row(metrics_csv_path, row, METRICS_HEADER)
    logger.info("Appended %d metrics rows to %s", len(result.accuracy), metrics_csv_path)


def write_report(result, report_path: Path, source: str) -> None:
    """Append a markdown evaluation report of one run."""
    st = result.stationarity
    summary_lines = [f"- {k}: {v:.6g}" if isinstance(v, float) else f"- {k}: {v}" for k, v in result.summary.items()]
    body = "\n".join([
        f"Source: `{source}`",
        "",
        "### Monthly log returns",
        *summary_lines,
        "",
        "### Stationarity (ADF)",
        f"- statistic: {st.statistic:.4f}, p-value: {st.p_value:.4g}, alpha: {st.alpha}, "
        f"lags used: {st.used_lag} -> {'stationary' if st.is_stationary else 'NOT stationary'}",
        "",
        "### Order selection",
        f"- AIC choice: {result.selection.best_aic}; BIC choice: {result.selection.best_bic}",
        "",
        md_table_from_df(result.selection.ranked("AIC"), max_rows=10, columns=["p", "q", "AIC", "BIC"]),
        "",
        "### Forecast accuracy",
        md_table_from_df(result.accuracy_frame(),
                         columns=["model", "mode", "rmse", "mae", "mape", "n", "n_missing", "n_fits"]),
        "",
        "### Diebold-Mariano comparisons",
        md_table_from_df(result.dm_frame()),
    ])
    append_eval_md(report_path, "S&P 500 ARMA evaluation", body)
    logger.info("Wrote evaluation report to %s", report_path)


def save_figures(result, figures_dir: Path) -> None:
    """Save the exploratory and forecast comparison figures of one run."""
    ensure_dir(figures_dir)
    plot_price_series(result.monthly_prices, figures_dir / "MonthlyPrice.png")
    plot_return_series(result.returns, figures_dir / "MonthlyReturns.png")
    plot_return_histogram(result.returns, figures_dir / "ReturnHistogram.png")
    plot_acf_pacf(result.returns, figures_dir / "ReturnACF_PACF.png")
    plot_information_criteria(result.selection.grid("AIC"), figures_dir / "AIC_grid.png", "AIC")
    plot_information_criteria(result.selection.grid("BIC"), figures_dir / "BIC_grid.png", "BIC")

    first = next(iter(result.forecasts.values()))
    y_true = first.actuals
    history = result.returns.loc[:y_true.index[0]].iloc[-3 * len(y_true) - 1:-1]
    for mode in ("static", "dynamic"):
        forecasts = {str(o): result.forecasts[(o, mode)].predictions for o in result.orders}
        plot_forecast_comparison(y_true, forecasts, figures_dir / f"Forecast_{mode}.png",
                                 f"{mode.capitalize()} forecasts of monthly log returns", history=history)
    logger.info("Saved figures to %s", figures_dir)


def run_forecast_workflow(prices_path: Path,
                          figures_dir: Path,
                          metrics_csv_path: Optional[Path],
                          args: argparse.Namespace,
                          aic_cache_path: Optional[Path] = None,
                          report_path: Optional[Path] = None):
    """
    Execute the full workflow for one price CSV.

    Parameters
    ----------
    prices_path : Path
        Daily closing-price CSV
    figures_dir : Path
        Output directory for figures (created if missing)
    metrics_csv_path : Optional[Path]
        If provided, append one metrics row per forecast to this CSV
    args : argparse.Namespace
        CLI arguments for configuration
    aic_cache_path : Optional[Path]
        If provided, save the AIC/BIC grid table to this CSV
    report_path : Optional[Path]
        If provided, append a markdown evaluation report

    Returns
    -------
    PipelineResult

    Workflow
    --------
    - Load and validate the price series
    - Month-end resampling, log returns, ADF gate
    - AIC/BIC grid search over [0..max_p] x [0..max_q] on the in-sample prefix
    - Dynamic and static forecasts over the last H months for each selected order
    - Accuracy metrics and Diebold-Mariano comparisons; exports and figures
    """
    from backtesting.evaluation_pipeline import BacktestingPipeline

    logger.info("Starting forecast workflow for: %s", prices_path)
    date_column = get_config_value("data.date_column", "Date")
    date_format = get_config_value("data.date_format", "%m/%d/%Y")
    price_columns = get_config_value("data.price_columns", list(DEFAULT_PRICE_COLUMNS))
    prices = load_price_csv(prices_path, date_column=date_column, date_format=date_format,
                            price_columns=price_columns)

    config = build_pipeline_config(args)
    result = BacktestingPipeline(config).run(prices)

    if aic_cache_path is not None:
        ensure_dir(aic_cache_path.parent)
        result.selection.table.to_csv(aic_cache_path, index=False)
        logger.info("Saved AIC/BIC grid to %s", aic_cache_path)

    source = prices_path.name
    export_metrics(result, metrics_csv_path, source)
    if report_path is not None:
        write_report(result, report_path, source)
    if not getattr(args, "no_plots", False):
        save_figures(result, figures_dir)

    logger.info("Forecast workflow completed successfully")
    return result


def setup_cli_parser() -> argparse.ArgumentParser:
    """
    Set up the command-line argument parser.

    Options left unset default to None so that the configuration file
    value applies (see ``get_config_value``).

    Returns
    -------
    argparse.ArgumentParser
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        description="ARMA modeling and forecast evaluation on monthly S&P 500 log returns."
    )

    # Data and output arguments
    parser.add_argument(
        "--prices-csv", type=str, required=True,
        help="CSV with a 'Date' column (m/d/Y) and a closing-price column such as 'Close/Last'."
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="YAML configuration file (defaults to config/forecaster.yaml)."
    )
    parser.add_argument(
        "--figures-dir", type=str, default=None,
        help="Directory to write figure files."
    )
    parser.add_argument(
        "--metrics-csv", type=str, default=None,
        help="If provided, append evaluation metrics rows to this CSV (resolved relative to base_dir if not absolute)."
    )
    parser.add_argument(
        "--aic-cache", type=str, default=None,
        help="Optional CSV path to save the AIC/BIC grid (relative to figures-dir if not absolute)."
    )
    parser.add_argument(
        "--report-md", type=str, default=None,
        help="Optional markdown file to append an evaluation report to."
    )
    parser.add_argument(
        "--log-level", type=str, default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity level."
    )
    parser.add_argument(
        "--no-plots", action="store_true",
        help="Skip figure generation."
    )

    # Stationarity gate
    parser.add_argument(
        "--alpha", type=float, default=None,
        help="Significance level of the ADF stationarity test."
    )
    parser.add_argument(
        "--adf-max-lag", type=int, default=None,
        help="Maximum lag considered by the ADF test."
    )
    parser.add_argument(
        "--allow-non-stationary", action="store_true",
        help="Continue (with a warning) when the returns fail the ADF test."
    )

    # Grid search controls
    parser.add_argument(
        "--max-p", type=int, default=None,
        help="Largest AR order in the grid search. Uses config default if not specified."
    )
    parser.add_argument(
        "--max-q", type=int, default=None,
        help="Largest MA order in the grid search. Uses config default if not specified."
    )
    parser.add_argument(
        "--extra-orders", type=str, default=None,
        help="Additional orders to forecast, e.g. '1,1;2,0'."
    )

    # Backtesting controls
    parser.add_argument(
        "--horizon", type=int, default=None,
        help="Out-of-sample length H in months."
    )
    parser.add_argument(
        "--on-fit-failure", type=str, default=None, choices=["raise", "skip"],
        help="Static refit failure policy: abort the run or record the step as missing."
    )
    parser.add_argument(
        "--workers", type=int, default=None,
        help="Threads used for the independent static refits."
    )

    return parser


def setup_logging(log_level: str) -> None:
    """
    Configure logging with specified level and warning filters.

    Parameters
    ----------
    log_level : str
        Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = validate_log_level(log_level)
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        datefmt="%H:%M:%S",
    )

    # Configure warnings based on log level
    if level == "DEBUG":
        warnings.resetwarnings()
        warnings.filterwarnings("default")
    else:
        from statsmodels.tools.sm_exceptions import ConvergenceWarning
        warnings.filterwarnings("ignore", category=ConvergenceWarning)
        warnings.filterwarnings("ignore", category=FutureWarning)
        warnings.filterwarnings("ignore", category=UserWarning, module="statsmodels")


def main(argv: Optional[List[str]] = None) -> None:
    """
    Main entry point for the ARMA forecasting application.

    Parses CLI arguments, loads configuration, and runs the forecast
    workflow. Any ForecasterError is logged and turned into exit status 1.
    """
    parser = setup_cli_parser()
    args = parser.parse_args(argv)

    # Setup logging
    setup_logging(args.log_level)

    # Initialize configuration system
    initialize_config(args.config)

    # Resolve paths
    base_dir = Path.cwd()
    prices_path = resolve_path(args.prices_csv, base_dir)
    figures_dir = resolve_path(get_config_value("output.figures_dir", "figures", args, "figures_dir"), base_dir)

    metrics_csv = get_config_value("output.metrics_csv", None, args, "metrics_csv")
    metrics_csv_path = resolve_path(metrics_csv, base_dir) if metrics_csv else None

    aic_cache = get_config_value("output.aic_cache", None, args, "aic_cache")
    aic_cache_path = resolve_path(aic_cache, figures_dir) if aic_cache else None

    report_md = get_config_value("output.report_md", None, args, "report_md")
    report_path = resolve_path(report_md, base_dir) if report_md else None

    try:
        run_forecast_workflow(prices_path, figures_dir, metrics_csv_path, args,
                              aic_cache_path=aic_cache_path, report_path=report_path)
    except (ForecasterError, ValueError) as e:
        logger.error("Forecast workflow failed: %s", e)
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
