import logging

import numpy as np
import pandas as pd
import pytest

from nitroRain.fitter import (
    compute_influence_diagnostics,
    fit_log_rainfall_model,
    fit_robust_model,
    fit_with_diagnostics,
    prepare_regression_data,
)

TRUE_INTERCEPT = 0.5
TRUE_SLOPE = 0.8


def make_joined(n_points=30, outlier=None):
    """
    Builds joined data in which ln(nitrate) = 0.5 + 0.8 * log1p(sum_five) for
    the 'North' tributary, with a small alternating perturbation. A second
    tributary is present to check that fits are restricted to one site.
    """
    x = np.linspace(0.0, 3.0, n_points)
    noise = np.where(np.arange(n_points) % 2 == 0, 0.01, -0.01)
    y = TRUE_INTERCEPT + TRUE_SLOPE * x + noise
    if outlier is not None:
        x = np.append(x, outlier[0])
        y = np.append(y, outlier[1])

    dates = pd.date_range("2018-04-01", periods=len(x), freq="3D")
    north = pd.DataFrame(
        {
            "date": dates,
            "tributary": "North",
            "nitrate": np.exp(y),
            "sum_five": np.expm1(x),
        }
    )
    south = pd.DataFrame(
        {
            "date": dates,
            "tributary": "South",
            "nitrate": np.full(len(x), 5.0),
            "sum_five": np.linspace(0.0, 40.0, len(x)),
        }
    )
    return pd.concat([north, south], ignore_index=True)


@pytest.fixture
def clean_data():
    return make_joined()


@pytest.fixture
def outlier_data():
    return make_joined(outlier=(6.0, -3.0))


def test_prepare_regression_data_transforms(clean_data):
    data = prepare_regression_data(clean_data, "nitrate", "North")
    assert data["n"] == 30
    np.testing.assert_allclose(data["x"], np.linspace(0.0, 3.0, 30))
    assert len(data["dates"]) == 30


def test_prepare_drops_non_positive_concentrations(clean_data):
    clean_data.loc[0, "nitrate"] = 0.0
    clean_data.loc[1, "nitrate"] = np.nan
    data = prepare_regression_data(clean_data, "nitrate", "North")
    assert data["n"] == 28


def test_ols_recovers_known_relationship(clean_data):
    fit = fit_log_rainfall_model(clean_data, "nitrate", "North")
    assert fit["method"] == "ols"
    assert fit["slope"] == pytest.approx(TRUE_SLOPE, abs=0.01)
    assert fit["intercept"] == pytest.approx(TRUE_INTERCEPT, abs=0.02)
    assert fit["slope_ci_lower"] < TRUE_SLOPE < fit["slope_ci_upper"]
    assert fit["r_squared"] > 0.99
    assert fit["p_value"] < 0.001
    assert fit["n"] == 30
    np.testing.assert_allclose(fit["fitted"] + fit["residuals"], fit["y"])


def test_clean_fit_is_reliable(clean_data):
    fit = fit_log_rainfall_model(clean_data, "nitrate", "North")
    diagnostics = compute_influence_diagnostics(fit)
    assert not diagnostics["unreliable"]
    assert diagnostics["n_outliers"] == 0
    assert len(diagnostics["cooks_distance"]) == 30
    assert diagnostics["leverage_threshold"] == pytest.approx(4 / 30)
    assert diagnostics["cooks_threshold"] == pytest.approx(4 / 30)


def test_outlier_is_detected(outlier_data):
    fit = fit_log_rainfall_model(outlier_data, "nitrate", "North")
    diagnostics = compute_influence_diagnostics(fit)
    assert diagnostics["unreliable"]
    assert diagnostics["is_outlier"][-1]
    assert diagnostics["is_high_leverage"][-1]
    assert diagnostics["is_influential"][-1]
    assert diagnostics["cooks_distance"][-1] > 1.0


def test_diagnostics_require_a_model():
    with pytest.raises(ValueError, match="model"):
        compute_influence_diagnostics({"slope": 1.0})


def test_theil_sen_resists_outlier(outlier_data):
    ols = fit_log_rainfall_model(outlier_data, "nitrate", "North")
    robust = fit_robust_model(outlier_data, "nitrate", "North", method="theil-sen")
    assert ols["slope"] < 0.4
    assert robust["slope"] == pytest.approx(TRUE_SLOPE, abs=0.05)
    assert robust["slope_ci_lower"] <= robust["slope"] <= robust["slope_ci_upper"]
    np.testing.assert_allclose(robust["fitted"] + robust["residuals"], robust["y"])


def test_siegel_resists_outlier(outlier_data):
    robust = fit_robust_model(outlier_data, "nitrate", "North", method="siegel")
    assert robust["method"] == "siegel"
    assert robust["slope"] == pytest.approx(TRUE_SLOPE, abs=0.05)
    assert np.isnan(robust["slope_ci_lower"])


def test_fit_with_diagnostics_prefers_robust_when_unreliable(outlier_data, caplog):
    with caplog.at_level(logging.WARNING):
        summary = fit_with_diagnostics(outlier_data, "nitrate", "North")
    assert summary["preferred"] == "robust"
    assert summary["robust"]["method"] == "theil-sen"
    assert summary["diagnostics"]["unreliable"]
    assert "preferring the theil-sen slope" in caplog.text


def test_fit_with_diagnostics_keeps_ols_when_reliable(clean_data):
    summary = fit_with_diagnostics(clean_data, "nitrate", "North")
    assert summary["preferred"] == "ols"
    assert summary["robust"] is None
    assert summary["tributary"] == "North"
    assert summary["feature"] == "sum_five"


def test_always_fit_robust(clean_data):
    summary = fit_with_diagnostics(clean_data, "nitrate", "North", always_fit_robust=True)
    assert summary["preferred"] == "ols"
    assert summary["robust"]["slope"] == pytest.approx(TRUE_SLOPE, abs=0.05)


def test_too_few_points_raises():
    joined = make_joined(n_points=4)
    with pytest.raises(ValueError, match="Not enough valid data points"):
        fit_log_rainfall_model(joined, "nitrate", "North")


def test_zero_variance_predictor_raises(clean_data):
    clean_data["sum_five"] = 2.0
    with pytest.raises(ValueError, match="zero variance"):
        fit_log_rainfall_model(clean_data, "nitrate", "North")


def test_unknown_tributary_raises(clean_data):
    with pytest.raises(ValueError, match="No measurements found"):
        fit_log_rainfall_model(clean_data, "nitrate", "West")


def test_unknown_robust_method_raises(clean_data):
    with pytest.raises(ValueError, match="Unknown robust method"):
        fit_robust_model(clean_data, "nitrate", "North", method="huber")


@pytest.mark.parametrize("ci", [0, 100, 120])
def test_invalid_ci_raises(clean_data, ci):
    with pytest.raises(ValueError, match="'ci' must be between 0 and 100"):
        fit_log_rainfall_model(clean_data, "nitrate", "North", ci=ci)
