import numpy as np
import pandas as pd
import pytest


def _ar1(n, phi=0.7, sigma=0.04, mu=0.005, seed=42):
    rng = np.random.default_rng(seed)
    eps = rng.normal(0.0, sigma, size=n + 50)
    x = np.zeros_like(eps)
    for t in range(1, len(x)):
        x[t] = phi * x[t - 1] + eps[t]
    idx = pd.date_range("1995-01-31", periods=n, freq="ME")
    return pd.Series(mu + x[50:], index=idx, name="log_return")


@pytest.fixture
def fit_counter(monkeypatch: pytest.MonkeyPatch):
    import sp500_forecaster_src.forecasting_utils as fu

    calls = {"n": 0, "lengths": []}
    real_fit = fu.fit_arma

    def counting_fit(endog, order, **kwargs):
        calls["n"] += 1
        calls["lengths"].append(len(endog))
        return real_fit(endog, order, **kwargs)

    monkeypatch.setattr(fu, "fit_arma", counting_fit)
    return calls


def test_dynamic_forecast_fits_once(fit_counter):
    from backtesting.rolling_origin import dynamic_forecast
    from sp500_forecaster_src.forecasting_utils import ModelOrder

    y = _ar1(120)
    res = dynamic_forecast(y, ModelOrder(1, 0), horizon=12)

    assert fit_counter["n"] == 1
    assert fit_counter["lengths"] == [108]
    assert res.n_fits == 1
    assert res.horizon == 12
    assert res.predictions.index.equals(y.index[-12:])
    assert res.mode == "dynamic"
    # Multi-step AR(1) forecasts decay toward the mean
    dev = (res.predictions - res.predictions.iloc[-1]).abs()
    assert dev.iloc[0] >= dev.iloc[5]


def test_static_forecast_refits_every_step(fit_counter):
    from backtesting.rolling_origin import static_forecast
    from sp500_forecaster_src.forecasting_utils import ModelOrder

    y = _ar1(100)
    res = static_forecast(y, ModelOrder(1, 0), horizon=10)

    assert fit_counter["n"] == 10
    # Expanding window: step i is fit on every observation before it
    assert fit_counter["lengths"] == list(range(90, 100))
    assert res.n_fits == 10
    assert res.missing == []
    assert res.predictions.notna().all()


def test_invalid_horizons():
    from backtesting.rolling_origin import dynamic_forecast, static_forecast, validate_horizon
    from sp500_forecaster_src.errors import InvalidHorizonError
    from sp500_forecaster_src.forecasting_utils import ModelOrder

    y = _ar1(30)
    for h in (0, -1, 30, 31):
        with pytest.raises(InvalidHorizonError):
            validate_horizon(len(y), h)
    with pytest.raises(InvalidHorizonError):
        dynamic_forecast(y, ModelOrder(0, 0), horizon=0)
    with pytest.raises(InvalidHorizonError):
        static_forecast(y, ModelOrder(0, 0), horizon=len(y))
    # Also a ValueError for callers that only know the builtin hierarchy
    with pytest.raises(ValueError):
        validate_horizon(10, 10)


def _failing_at(monkeypatch, fail_length):
    import sp500_forecaster_src.forecasting_utils as fu
    from sp500_forecaster_src.errors import FitConvergenceError

    real_fit = fu.fit_arma

    def flaky_fit(endog, order, **kwargs):
        if len(endog) == fail_length:
            raise FitConvergenceError("forced failure", order=(order.p, order.q))
        return real_fit(endog, order, **kwargs)

    monkeypatch.setattr(fu, "fit_arma", flaky_fit)


def test_static_skip_policy_marks_missing(monkeypatch: pytest.MonkeyPatch):
    from backtesting.rolling_origin import static_forecast
    from sp500_forecaster_src.forecasting_utils import ModelOrder

    y = _ar1(60)
    _failing_at(monkeypatch, 52)
    res = static_forecast(y, ModelOrder(1, 0), horizon=10, on_failure="skip")

    assert res.missing == [y.index[52]]
    assert np.isnan(res.predictions.loc[y.index[52]])
    assert res.predictions.notna().sum() == 9
    assert res.n_fits == 10

    rep = res.accuracy()
    assert rep.n == 9
    assert rep.n_missing == 1


def test_static_raise_policy_reports_step(monkeypatch: pytest.MonkeyPatch):
    from backtesting.rolling_origin import static_forecast
    from sp500_forecaster_src.errors import FitConvergenceError
    from sp500_forecaster_src.forecasting_utils import ModelOrder

    y = _ar1(60)
    _failing_at(monkeypatch, 55)
    with pytest.raises(FitConvergenceError) as excinfo:
        static_forecast(y, ModelOrder(1, 0), horizon=10, on_failure="raise")
    # Position 55 of 60 with H=10 is out-of-sample step 6
    assert excinfo.value.step == 6
    assert excinfo.value.order == (1, 0)


def test_unknown_failure_policy_rejected():
    from backtesting.rolling_origin import BacktestConfig, static_forecast
    from sp500_forecaster_src.forecasting_utils import ModelOrder

    with pytest.raises(ValueError):
        static_forecast(_ar1(40), ModelOrder(0, 0), horizon=5, on_failure="fallback")
    with pytest.raises(ValueError):
        BacktestConfig(on_failure="fallback")


def test_threaded_static_matches_sequential():
    from backtesting.rolling_origin import static_forecast
    from sp500_forecaster_src.forecasting_utils import ModelOrder

    y = _ar1(80, seed=3)
    seq = static_forecast(y, ModelOrder(1, 0), horizon=8, max_workers=1)
    par = static_forecast(y, ModelOrder(1, 0), horizon=8, max_workers=4)

    assert par.predictions.index.equals(seq.predictions.index)
    assert np.allclose(par.predictions.values, seq.predictions.values)


def test_ar1_beats_mean_model_out_of_sample():
    from backtesting.rolling_origin import compare_forecasts, static_forecast
    from sp500_forecaster_src.forecasting_utils import ModelOrder

    y = _ar1(240, phi=0.7, seed=2024)
    ar = static_forecast(y, ModelOrder(1, 0), horizon=60)
    mean = static_forecast(y, ModelOrder(0, 0), horizon=60)

    assert ar.accuracy().rmse < mean.accuracy().rmse
    dm = compare_forecasts(ar, mean)
    assert dm.statistic < 0
    assert dm.n == 60


def test_harness_runs_both_modes():
    from backtesting.rolling_origin import BacktestConfig, ForecastHarness
    from sp500_forecaster_src.forecasting_utils import ModelOrder

    y = _ar1(60)
    harness = ForecastHarness(BacktestConfig(horizon=6))
    out = harness.run(y, [ModelOrder(1, 0), ModelOrder(0, 0)])

    assert set(out) == {
        (ModelOrder(1, 0), "dynamic"), (ModelOrder(1, 0), "static"),
        (ModelOrder(0, 0), "dynamic"), (ModelOrder(0, 0), "static"),
    }
    assert out[(ModelOrder(0, 0), "static")].n_fits == 6
    assert out[(ModelOrder(0, 0), "dynamic")].n_fits == 1
    # The first static step and the dynamic forecast share the same origin
    assert out[(ModelOrder(1, 0), "static")].predictions.iloc[0] == pytest.approx(
        out[(ModelOrder(1, 0), "dynamic")].predictions.iloc[0], rel=1e-6)


def test_forecast_result_rejects_misaligned_series():
    from backtesting.rolling_origin import ForecastResult
    from sp500_forecaster_src.errors import MisalignedSeriesError
    from sp500_forecaster_src.forecasting_utils import ModelOrder

    idx = pd.date_range("2020-01-31", periods=3, freq="ME")
    with pytest.raises(MisalignedSeriesError):
        ForecastResult(ModelOrder(0, 0), "static",
                       predictions=pd.Series([0.1, 0.2], index=idx[:2]),
                       actuals=pd.Series([0.1, 0.2, 0.3], index=idx),
                       n_fits=3)


def test_compare_forecasts_requires_same_period():
    from backtesting.rolling_origin import compare_forecasts, dynamic_forecast
    from sp500_forecaster_src.errors import MisalignedSeriesError
    from sp500_forecaster_src.forecasting_utils import ModelOrder

    y = _ar1(60)
    a = dynamic_forecast(y, ModelOrder(0, 0), horizon=6)
    b = dynamic_forecast(y, ModelOrder(0, 0), horizon=8)
    with pytest.raises(MisalignedSeriesError):
        compare_forecasts(a, b)
