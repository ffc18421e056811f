import numpy as np
import pandas as pd
import pytest


def _monthly(values, start="1990-01-31"):
    idx = pd.date_range(start, periods=len(values), freq="ME")
    return pd.Series(np.asarray(values, dtype=float), index=idx, name="log_return")


def test_model_order_parse_and_format():
    from sp500_forecaster_src.forecasting_utils import ModelOrder

    assert ModelOrder.parse("1,2") == ModelOrder(1, 2)
    assert ModelOrder.parse("(3, 0)") == ModelOrder(3, 0)
    assert ModelOrder.parse((0, 1)) == ModelOrder(0, 1)
    assert str(ModelOrder(2, 1)) == "ARMA(2,1)"
    assert ModelOrder(1, 0).as_arima() == (1, 0, 0)
    with pytest.raises(ValueError):
        ModelOrder.parse("1")
    with pytest.raises(ValueError):
        ModelOrder(-1, 0)


def test_parse_order_list_dedupes():
    from sp500_forecaster_src.forecasting_utils import ModelOrder
    from sp500_forecaster_src.parsing_utils import parse_order_list

    assert parse_order_list("1,1;2,0;1,1") == [ModelOrder(1, 1), ModelOrder(2, 0)]
    assert parse_order_list("") == []
    assert parse_order_list(None) == []


def test_check_stationarity_verdicts():
    from sp500_forecaster_src.errors import NonStationarySeriesError
    from sp500_forecaster_src.forecasting_utils import check_stationarity, require_stationary

    rng = np.random.default_rng(11)
    noise = _monthly(rng.normal(0.0, 0.04, size=240))
    res = check_stationarity(noise, alpha=0.05)
    assert res.is_stationary
    assert res.p_value < 0.05
    require_stationary(res)

    # Trend plus a unit root: clearly not stationary
    t = np.arange(240, dtype=float)
    trending = _monthly(0.5 * t + np.cumsum(rng.normal(0.0, 1.0, size=240)))
    res = check_stationarity(trending, alpha=0.05)
    assert not res.is_stationary
    with pytest.raises(NonStationarySeriesError) as excinfo:
        require_stationary(res)
    assert excinfo.value.p_value == pytest.approx(res.p_value)


def test_check_stationarity_needs_data():
    from sp500_forecaster_src.errors import InsufficientDataError
    from sp500_forecaster_src.forecasting_utils import check_stationarity

    with pytest.raises(InsufficientDataError):
        check_stationarity(_monthly([0.1, 0.2, 0.3]), alpha=0.05)
    # Constant and trend leave no room for a lag regression on 5 points
    with pytest.raises(InsufficientDataError):
        check_stationarity(_monthly([0.1, -0.2, 0.3, 0.0, 0.1]), alpha=0.05, regression="ct")


def test_check_stationarity_caps_max_lag_on_short_series(caplog: pytest.LogCaptureFixture):
    from sp500_forecaster_src.forecasting_utils import check_stationarity

    rng = np.random.default_rng(8)
    short = _monthly(rng.normal(0.005, 0.04, size=20))
    with caplog.at_level("WARNING"):
        res = check_stationarity(short, alpha=0.05, max_lag=12)

    # 20 // 2 - 1 - 1 (constant)
    assert res.used_lag <= 8
    assert 0.0 <= res.p_value <= 1.0
    assert "max_lag=12" in caplog.text


def test_information_criteria_count_all_parameters():
    from sp500_forecaster_src.forecasting_utils import ModelOrder, fit_arma, information_criteria

    rng = np.random.default_rng(3)
    res = fit_arma(_monthly(rng.normal(0.0, 1.0, size=120)), ModelOrder(1, 0))
    aic, bic = information_criteria(res)
    # const, ar.L1 and sigma2
    assert aic == pytest.approx(-2.0 * res.llf + 2.0 * 3)
    assert bic == pytest.approx(-2.0 * res.llf + 3 * np.log(120))
    assert bic > aic


def test_mean_model_fits_return_scale_noise():
    from sp500_forecaster_src.forecasting_utils import ModelOrder, fit_arma, select_order

    for seed in range(20):
        y = _monthly(np.random.default_rng(seed).normal(0.005, 0.04, size=60))
        res = fit_arma(y, ModelOrder(0, 0))
        assert np.isfinite(res.llf)
        assert np.all(np.isfinite(res.params))
        # The constant of ARMA(0,0) estimates the sample mean
        assert res.params[0] == pytest.approx(y.mean(), abs=0.01)

        sel = select_order(y, max_p=1, max_q=0, show_progress=False)
        assert _has_order(sel.ranked("AIC"), 0, 0)


def _has_order(ranked, p, q):
    return bool(((ranked["p"] == p) & (ranked["q"] == q)).any())


class _StubResults:
    def __init__(self, llf, params, retvals):
        self.llf = llf
        self.params = np.asarray(params, dtype=float)
        self.mle_retvals = retvals


def _stub_sarimax(results):
    class _StubModel:
        def __init__(self, endog, order, trend):
            pass

        def fit(self, **kwargs):
            return results

    return _StubModel


def test_fit_arma_keeps_finite_fit_despite_optimizer_flag(monkeypatch: pytest.MonkeyPatch):
    import sp500_forecaster_src.forecasting_utils as fu

    stub = _StubResults(108.17, [0.00818, 0.00159], {"converged": False, "warnflag": 2})
    monkeypatch.setattr(fu, "SARIMAX", _stub_sarimax(stub))
    assert fu.fit_arma(np.zeros(56), fu.ModelOrder(0, 0)) is stub


def test_fit_arma_rejects_non_finite_estimates(monkeypatch: pytest.MonkeyPatch):
    import sp500_forecaster_src.forecasting_utils as fu
    from sp500_forecaster_src.errors import FitConvergenceError

    monkeypatch.setattr(fu, "SARIMAX", _stub_sarimax(_StubResults(float("nan"), [0.0, 1.0], {})))
    with pytest.raises(FitConvergenceError) as excinfo:
        fu.fit_arma(np.zeros(40), fu.ModelOrder(1, 0))
    assert excinfo.value.order == (1, 0)

    monkeypatch.setattr(fu, "SARIMAX", _stub_sarimax(_StubResults(12.0, [0.0, np.inf], {})))
    with pytest.raises(FitConvergenceError):
        fu.fit_arma(np.zeros(40), fu.ModelOrder(0, 0))


def test_white_noise_bic_prefers_mean_model():
    from sp500_forecaster_src.forecasting_utils import ModelOrder, select_order

    hits = 0
    for seed in range(5):
        rng = np.random.default_rng(100 + seed)
        y = _monthly(rng.normal(0.0, 0.04, size=120))
        sel = select_order(y, max_p=2, max_q=2, show_progress=False)
        assert len(sel.table) == 9
        hits += int(sel.best_bic == ModelOrder(0, 0))
    assert hits >= 3


def test_select_order_tolerates_failed_cells(monkeypatch: pytest.MonkeyPatch):
    import sp500_forecaster_src.forecasting_utils as fu
    from sp500_forecaster_src.errors import FitConvergenceError

    real_fit = fu.fit_arma

    def flaky_fit(endog, order, **kwargs):
        if order == fu.ModelOrder(1, 1):
            raise FitConvergenceError("forced failure", order=(1, 1))
        return real_fit(endog, order, **kwargs)

    monkeypatch.setattr(fu, "fit_arma", flaky_fit)

    rng = np.random.default_rng(5)
    sel = fu.select_order(_monthly(rng.normal(0.0, 1.0, size=100)), max_p=1, max_q=1, show_progress=False)

    assert sel.failed == [fu.ModelOrder(1, 1)]
    row = sel.table[(sel.table["p"] == 1) & (sel.table["q"] == 1)].iloc[0]
    assert np.isnan(row["AIC"]) and np.isnan(row["BIC"])
    assert sel.best_aic != fu.ModelOrder(1, 1)
    assert len(sel.ranked("AIC")) == 3
    assert sel.grid("BIC").shape == (2, 2)


def test_select_order_fails_without_mean_model(monkeypatch: pytest.MonkeyPatch):
    import sp500_forecaster_src.forecasting_utils as fu
    from sp500_forecaster_src.errors import FitConvergenceError, ModelSelectionError

    def failing_fit(endog, order, **kwargs):
        raise FitConvergenceError("forced failure", order=(order.p, order.q))

    monkeypatch.setattr(fu, "fit_arma", failing_fit)
    with pytest.raises(ModelSelectionError):
        fu.select_order(_monthly(np.zeros(30) + 0.01), max_p=1, max_q=0, show_progress=False)


def test_ties_break_toward_smaller_orders():
    from sp500_forecaster_src.forecasting_utils import ModelOrder, _best_by

    table = pd.DataFrame({
        "p": [0, 0, 1, 1],
        "q": [0, 1, 0, 1],
        "AIC": [10.0, 9.0, 9.0, 9.0],
        "BIC": [8.0, 8.0, 8.0, 8.0],
        "converged": [True, True, True, True],
    })
    assert _best_by(table, "AIC") == ModelOrder(0, 1)
    assert _best_by(table, "BIC") == ModelOrder(0, 0)


def test_one_step_forecast_at_bounds():
    from sp500_forecaster_src.forecasting_utils import ModelOrder, one_step_forecast_at

    y = _monthly(np.linspace(0.0, 1.0, 10))
    with pytest.raises(ValueError):
        one_step_forecast_at(y, ModelOrder(0, 0), 0)
    with pytest.raises(ValueError):
        one_step_forecast_at(y, ModelOrder(0, 0), len(y))
