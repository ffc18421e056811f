# sp500_forecaster_src/__init__.py

"""
S&P 500 ARMA Forecaster - Monthly Return Forecasting Package

This package models monthly S&P 500 log returns with ARMA(p, q) processes
and evaluates dynamic and static out-of-sample forecasts.

Key Components
--------------
- errors: Exception hierarchy shared by every stage
- config_utils: Configuration management and CLI override support
- data_utils: Price CSV loading and normalization
- parsing_utils: Command-line argument parsing and validation
- transform_utils: Monthly resampling and log returns
- forecasting_utils: ADF test, ARMA fitting, AIC/BIC order selection
- metrics_utils: RMSE, MAE, MAPE and the Diebold-Mariano test
- plotting_utils: Visualization and charting capabilities
- file_utils: Metrics CSV, markdown report and path utilities
- main: Main entry point and workflow orchestration

The forecast harness and end-to-end pipeline live in the sibling
``backtesting`` package.

Usage
-----
    # Command-line usage
    python -m sp500_forecaster_src.main --prices-csv data/sp500.csv

    # Programmatic usage
    from sp500_forecaster_src import forecasting_utils, metrics_utils
"""

__version__ = "1.0.0"

# Import key functions for easy access
from .config_utils import initialize_config, get_config_value
from .data_utils import load_price_csv
from .transform_utils import log_returns, prepare_monthly_returns
from .forecasting_utils import ModelOrder, check_stationarity, fit_arma, select_order
from .metrics_utils import compute_accuracy, diebold_mariano
from .main import main

__all__ = [
    # Core functionality
    "main",
    "initialize_config",
    "get_config_value",
    "load_price_csv",
    "log_returns",
    "prepare_monthly_returns",
    "ModelOrder",
    "check_stationarity",
    "fit_arma",
    "select_order",
    "compute_accuracy",
    "diebold_mariano",
    # Version info
    "__version__",
]
