#!/usr/bin/env python3
"""
ARMA modeling and forecast evaluation on monthly S&P 500 log returns.

Usage
-----
    python forecaster_ARMA.py --help
    python forecaster_ARMA.py --prices-csv data/sp500.csv
    python forecaster_ARMA.py --prices-csv data/sp500.csv --horizon 24 --on-fit-failure skip

The implementation lives in sp500_forecaster_src/ (data, models, metrics,
plots, CLI) and backtesting/ (forecast harness and evaluation pipeline).
"""

from sp500_forecaster_src.main import main

if __name__ == "__main__":
    main()
