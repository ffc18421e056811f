from pathlib import Path

import numpy as np
import pandas as pd
import pytest


def _monthly_prices(n_returns=240, phi=0.7, seed=17, mu=0.006, sigma=0.04):
    rng = np.random.default_rng(seed)
    eps = rng.normal(0.0, sigma, size=n_returns + 50)
    x = np.zeros_like(eps)
    for t in range(1, len(x)):
        x[t] = phi * x[t - 1] + eps[t]
    r = mu + x[50:]
    idx = pd.date_range("1990-12-31", periods=n_returns + 1, freq="ME")
    return pd.Series(1000.0 * np.exp(np.r_[0.0, np.cumsum(r)]), index=idx, name="close")


def test_candidate_orders_adds_benchmark_when_criteria_agree():
    from backtesting.evaluation_pipeline import candidate_orders
    from sp500_forecaster_src.forecasting_utils import ModelOrder, OrderSelectionResult

    table = pd.DataFrame(columns=["p", "q", "AIC", "BIC", "converged"])
    same = OrderSelectionResult(table, ModelOrder(1, 0), ModelOrder(1, 0), 100)
    assert candidate_orders(same) == [ModelOrder(1, 0), ModelOrder(0, 0)]

    differ = OrderSelectionResult(table, ModelOrder(2, 1), ModelOrder(1, 0), 100)
    assert candidate_orders(differ, [ModelOrder(1, 0), ModelOrder(3, 3)]) == [
        ModelOrder(2, 1), ModelOrder(1, 0), ModelOrder(3, 3)
    ]

    mean_only = OrderSelectionResult(table, ModelOrder(0, 0), ModelOrder(0, 0), 100)
    assert candidate_orders(mean_only) == [ModelOrder(0, 0)]


def test_pipeline_end_to_end():
    from backtesting.evaluation_pipeline import BacktestingPipeline, PipelineConfig
    from backtesting.rolling_origin import BacktestConfig

    cfg = PipelineConfig(max_p=1, max_q=1, backtest=BacktestConfig(horizon=24, on_failure="skip"))
    result = BacktestingPipeline(cfg).run(_monthly_prices())

    assert len(result.returns) == 240
    assert result.stationarity.is_stationary
    assert len(result.selection.table) == 4
    assert result.selection.best_bic.p >= 1
    assert len(result.orders) == 2

    acc = result.accuracy_frame()
    assert len(acc) == 2 * len(result.orders)
    assert set(acc["mode"]) == {"static", "dynamic"}
    assert (acc["rmse"] >= acc["mae"]).all()
    static_fits = acc.loc[acc["mode"] == "static", "n_fits"]
    assert (static_fits == 24).all()

    dm = result.dm_frame()
    # Two cross-order tests (one per mode) plus static vs dynamic per order
    assert len(dm) == 2 + len(result.orders)
    assert dm["DM_p"].between(0.0, 1.0).all()
    assert result.elapsed_seconds is not None


def test_pipeline_stationarity_gate(caplog: pytest.LogCaptureFixture):
    from backtesting.evaluation_pipeline import BacktestingPipeline, PipelineConfig
    from backtesting.rolling_origin import BacktestConfig
    from sp500_forecaster_src.errors import NonStationarySeriesError

    rng = np.random.default_rng(23)
    n = 80
    # Returns with a deterministic trend and a unit root
    r = 0.0005 * np.arange(n) + np.cumsum(rng.normal(0.0, 0.002, size=n))
    idx = pd.date_range("2000-12-31", periods=n + 1, freq="ME")
    prices = pd.Series(100.0 * np.exp(np.r_[0.0, np.cumsum(r)]), index=idx)

    cfg = PipelineConfig(max_p=0, max_q=0, backtest=BacktestConfig(horizon=6))
    with pytest.raises(NonStationarySeriesError):
        BacktestingPipeline(cfg).run(prices)

    cfg.allow_non_stationary = True
    with caplog.at_level("WARNING"):
        result = BacktestingPipeline(cfg).run(prices)
    assert not result.stationarity.is_stationary
    assert "non-stationary" in caplog.text
    assert result.orders == [result.selection.best_aic]


def test_pipeline_rejects_bad_horizon_before_fitting():
    from backtesting.evaluation_pipeline import BacktestingPipeline, PipelineConfig
    from backtesting.rolling_origin import BacktestConfig
    from sp500_forecaster_src.errors import InvalidHorizonError

    cfg = PipelineConfig(max_p=0, max_q=0, backtest=BacktestConfig(horizon=50))
    with pytest.raises(InvalidHorizonError):
        BacktestingPipeline(cfg).run(_monthly_prices(n_returns=50))


def test_pipeline_single_step_horizon_skips_dm(caplog: pytest.LogCaptureFixture):
    from backtesting.evaluation_pipeline import BacktestingPipeline, PipelineConfig
    from backtesting.rolling_origin import BacktestConfig

    cfg = PipelineConfig(max_p=1, max_q=0, allow_non_stationary=True, backtest=BacktestConfig(horizon=1))
    with caplog.at_level("WARNING"):
        result = BacktestingPipeline(cfg).run(_monthly_prices(n_returns=120))

    acc = result.accuracy_frame()
    assert len(acc) == 2 * len(result.orders)
    assert (acc["n"] == 1).all()
    assert result.comparisons == []
    assert result.dm_frame().empty
    assert "DM" in caplog.text and "skipped" in caplog.text


def test_pipeline_short_series_caps_adf_lag():
    from backtesting.evaluation_pipeline import BacktestingPipeline, PipelineConfig
    from backtesting.rolling_origin import BacktestConfig

    cfg = PipelineConfig(max_p=1, max_q=0, adf_max_lag=12, allow_non_stationary=True,
                         backtest=BacktestConfig(horizon=4))
    result = BacktestingPipeline(cfg).run(_monthly_prices(n_returns=20, phi=0.0, seed=9))

    assert len(result.returns) == 20
    assert result.stationarity.used_lag <= 8
    assert len(result.selection.table) == 2
    assert result.forecasts[(result.orders[0], "static")].n_fits == 4


def test_ar_structure_beats_mean_model_over_twenty_years():
    from backtesting.evaluation_pipeline import BacktestingPipeline, PipelineConfig
    from backtesting.rolling_origin import BacktestConfig
    from sp500_forecaster_src.forecasting_utils import ModelOrder

    ar, mean = ModelOrder(1, 0), ModelOrder(0, 0)
    cfg = PipelineConfig(max_p=1, max_q=0, extra_orders=[ar, mean], backtest=BacktestConfig(horizon=120))

    wins = 0
    for seed in (31, 32, 33, 34, 35):
        # 240 monthly returns with return[t] = 0.3 * return[t-1] + noise[t]
        result = BacktestingPipeline(cfg).run(_monthly_prices(n_returns=240, phi=0.3, seed=seed))
        assert len(result.returns) == 240
        assert {ar, mean} <= set(result.orders)
        wins += int(result.accuracy[(ar, "static")].rmse < result.accuracy[(mean, "static")].rmse)
    assert wins >= 3


def _write_nasdaq_csv(path: Path, prices: pd.Series) -> None:
    # Nasdaq exports list the newest row first and use m/d/Y dates
    df = pd.DataFrame({
        "Date": prices.index.strftime("%m/%d/%Y"),
        "Close/Last": [f"{v:.2f}" for v in prices.values],
        "Open": "--",
    }).iloc[::-1]
    df.to_csv(path, index=False)


def test_cli_smoke_run(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    from sp500_forecaster_src import config_utils
    from sp500_forecaster_src.main import main

    monkeypatch.setattr(config_utils, "config_manager", None)

    prices = _monthly_prices(n_returns=120, phi=0.0, seed=5)
    csv = tmp_path / "sp500.csv"
    _write_nasdaq_csv(csv, prices)
    figures = tmp_path / "figures"

    main([
        "--prices-csv", str(csv),
        "--figures-dir", str(figures),
        "--metrics-csv", str(tmp_path / "metrics.csv"),
        "--aic-cache", "aic_grid.csv",
        "--report-md", str(tmp_path / "report.md"),
        "--max-p", "1", "--max-q", "1",
        "--horizon", "12",
        "--extra-orders", "2,0",
        "--on-fit-failure", "skip",
        "--log-level", "WARNING",
    ])

    metrics = pd.read_csv(tmp_path / "metrics.csv")
    assert len(metrics) >= 4
    assert set(metrics["mode"]) == {"static", "dynamic"}
    assert "ARMA(2,0)" in set(metrics["model"])
    assert (metrics["horizon"] == 12).all()

    grid = pd.read_csv(figures / "aic_grid.csv")
    assert len(grid) == 4
    assert {"p", "q", "AIC", "BIC", "converged"} <= set(grid.columns)

    report = (tmp_path / "report.md").read_text(encoding="utf-8")
    assert "Diebold-Mariano" in report
    assert "Order selection" in report

    for name in ("MonthlyPrice.png", "MonthlyReturns.png", "ReturnHistogram.png",
                 "ReturnACF_PACF.png", "AIC_grid.png", "Forecast_static.png", "Forecast_dynamic.png"):
        assert (figures / name).exists()


def test_cli_exits_on_forecaster_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    from sp500_forecaster_src import config_utils
    from sp500_forecaster_src.main import main

    monkeypatch.setattr(config_utils, "config_manager", None)

    csv = tmp_path / "sp500.csv"
    _write_nasdaq_csv(csv, _monthly_prices(n_returns=30, phi=0.0))

    with pytest.raises(SystemExit) as excinfo:
        main(["--prices-csv", str(csv), "--horizon", "100", "--no-plots", "--log-level", "ERROR"])
    assert excinfo.value.code == 1
