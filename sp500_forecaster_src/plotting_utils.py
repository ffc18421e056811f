# sp500_forecaster_src/plotting_utils.py

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from pathlib import Path
from typing import Dict, Optional
import logging

from statsmodels.graphics.tsaplots import plot_acf, plot_pacf

from .file_utils import ensure_dir

logger = logging.getLogger(__name__)


def plot_price_series(prices: pd.Series, out_path: Path, title: str = "S&P 500 closing price") -> None:
    """
    Render and save the (monthly) closing price series.

    Parameters
    ----------
    prices : pd.Series
        Closing prices with DatetimeIndex
    out_path : Path
        File path to save the rendered PNG (parents are created if missing)
    title : str
        Plot title
    """
    ensure_dir(out_path.parent)
    fig, ax = plt.subplots()
    ax.plot(prices.index, prices.values, color="black", linewidth=1)
    ax.set_xlabel("Date")
    ax.set_ylabel("Price")
    ax.set_title(title)
    fig.autofmt_xdate()
    plt.tight_layout()
    plt.savefig(out_path, dpi=300)
    plt.close(fig)


def plot_return_series(returns: pd.Series, out_path: Path) -> None:
    """Line plot of monthly log returns with the sample mean as a reference line."""
    ensure_dir(out_path.parent)
    fig, ax = plt.subplots()
    ax.plot(returns.index, returns.values, color="tab:blue", linewidth=0.8)
    ax.axhline(float(returns.mean()), color="black", linestyle="--", linewidth=0.8, label="mean")
    ax.set_xlabel("Date")
    ax.set_ylabel("Log return")
    ax.set_title("Monthly log returns")
    ax.legend()
    fig.autofmt_xdate()
    plt.tight_layout()
    plt.savefig(out_path, dpi=300)
    plt.close(fig)


def plot_return_histogram(returns: pd.Series, out_path: Path, bins: int = 40) -> None:
    """
    Histogram of returns overlaid with the normal density of equal mean and variance.

    Parameters
    ----------
    returns : pd.Series
        Monthly log returns
    out_path : Path
        Output file path for the plot
    bins : int, default=40
        Number of histogram bins
    """
    ensure_dir(out_path.parent)
    values = returns.dropna().to_numpy(dtype=float)
    fig, ax = plt.subplots()
    ax.hist(values, bins=bins, density=True, color="tab:gray", alpha=0.75, label="returns")

    mu, sigma = float(np.mean(values)), float(np.std(values, ddof=1))
    if sigma > 0:
        grid = np.linspace(values.min(), values.max(), 200)
        pdf = np.exp(-0.5 * ((grid - mu) / sigma) ** 2) / (sigma * np.sqrt(2 * np.pi))
        ax.plot(grid, pdf, color="tab:red", linewidth=1.2, label="normal")

    ax.set_xlabel("Log return")
    ax.set_ylabel("Density")
    ax.set_title("Distribution of monthly log returns")
    ax.legend()
    plt.tight_layout()
    fig.savefig(out_path, dpi=300)
    plt.close(fig)


def plot_acf_pacf(returns: pd.Series, out_path: Path, lags: int = 24) -> None:
    """
    Side-by-side autocorrelation and partial autocorrelation of the returns.

    The number of lags is capped below half the sample size, which the
    statsmodels PACF estimator requires.
    """
    ensure_dir(out_path.parent)
    values = returns.dropna().to_numpy(dtype=float)
    lags = max(1, min(lags, len(values) // 2 - 1))
    fig, axes = plt.subplots(nrows=1, ncols=2, figsize=(11, 4))
    plot_acf(values, lags=lags, ax=axes[0])
    plot_pacf(values, lags=lags, ax=axes[1], method="ywm")
    axes[0].set_title("ACF")
    axes[1].set_title("PACF")
    plt.tight_layout()
    fig.savefig(out_path, dpi=300)
    plt.close(fig)


def plot_forecast_comparison(y_true: pd.Series,
                             forecasts: Dict[str, pd.Series],
                             out_path: Path,
                             title: str = "Forecast Comparison",
                             history: Optional[pd.Series] = None) -> None:
    """
    Create a comparison plot of actual vs predicted values for multiple forecasts.

    This function generates a line plot comparing held-out actual values against
    forecasts from different model/mode combinations. Skipped steps (NaN) show
    as gaps in the forecast lines.

    Parameters
    ----------
    y_true : pd.Series
        Held-out actual values with datetime index
    forecasts : Dict[str, pd.Series]
        Mapping of forecast labels to predictions aligned with ``y_true``
    out_path : Path
        Output file path for the plot
    title : str, default="Forecast Comparison"
        Plot title
    history : pd.Series, optional
        Tail of the in-sample series drawn in grey before the forecast window

    Returns
    -------
    None
    """
    ensure_dir(out_path.parent)
    fig, ax = plt.subplots(figsize=(10, 5))

    if history is not None and len(history):
        ax.plot(history.index, history.values, color="tab:gray", linewidth=1, label="in-sample")

    # Plot actual values
    ax.plot(y_true.index, y_true.values, color="black", linewidth=1.5, label="actual")

    colors = ["tab:red", "tab:blue", "tab:green", "tab:orange", "tab:purple"]
    for i, (label, values) in enumerate(forecasts.items()):
        color = colors[i % len(colors)]
        ax.plot(y_true.index, np.asarray(values, dtype=float), color=color, linestyle="--", label=label)

    ax.set_ylabel("Log return")
    ax.set_title(title)
    ax.legend(fontsize=8)
    fig.autofmt_xdate()
    plt.tight_layout()
    fig.savefig(out_path, dpi=300)
    plt.close(fig)
    logger.info("Saved forecast comparison: %s", out_path)


def plot_information_criteria(grid: pd.DataFrame, out_path: Path, criterion: str = "AIC") -> None:
    """Heatmap of an information criterion over the (p, q) grid; failed cells are blank."""
    if grid.empty:
        logger.warning("Empty %s grid; skipping heatmap", criterion)
        return

    ensure_dir(out_path.parent)
    fig, ax = plt.subplots()
    data = np.ma.masked_invalid(grid.to_numpy(dtype=float))
    im = ax.imshow(data, cmap="viridis", origin="lower", aspect="auto")
    ax.set_xticks(np.arange(grid.shape[1]))
    ax.set_xticklabels(grid.columns)
    ax.set_yticks(np.arange(grid.shape[0]))
    ax.set_yticklabels(grid.index)
    ax.set_xlabel("q")
    ax.set_ylabel("p")
    ax.set_title(f"{criterion} by ARMA order")
    fig.colorbar(im, ax=ax)
    plt.tight_layout()
    fig.savefig(out_path, dpi=300)
    plt.close(fig)
