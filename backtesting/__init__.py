"""Forecast backtesting for the S&P 500 ARMA forecaster.

This package provides strict out-of-sample forecast evaluation including:
- Dynamic (fixed-origin, multi-step) and static (rolling-origin, one-step) forecasts
- Explicit refit failure policy
- Per-forecast accuracy reports
- Statistical significance testing (Diebold-Mariano)
- Integration with the configuration system
- Prevention of data leakage
"""

from .rolling_origin import (
    BacktestConfig,
    ForecastHarness,
    ForecastResult,
    compare_forecasts,
    dynamic_forecast,
    split_series,
    static_forecast,
    validate_horizon
)

from .evaluation_pipeline import (
    BacktestingPipeline,
    ComparisonResult,
    PipelineConfig,
    PipelineResult,
    candidate_orders,
    run_pipeline
)

__all__ = [
    # Forecast harness
    'BacktestConfig',
    'ForecastHarness',
    'ForecastResult',
    'compare_forecasts',
    'dynamic_forecast',
    'split_series',
    'static_forecast',
    'validate_horizon',

    # Pipeline
    'BacktestingPipeline',
    'ComparisonResult',
    'PipelineConfig',
    'PipelineResult',
    'candidate_orders',
    'run_pipeline'
]

# Version info
__version__ = '1.0.0'
