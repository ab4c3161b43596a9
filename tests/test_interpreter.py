import numpy as np
import pandas as pd
import pytest

from nitroRain.fitter import fit_with_diagnostics
from nitroRain.interpreter import (
    feature_label,
    interpret_pairwise_tests,
    interpret_rainfall_correlations,
    interpret_regression,
    interpret_results,
    significance_phrase,
    species_label,
)


def make_fit_summary(ols_slope=0.8, robust_slope=None, preferred="ols", ci=95):
    ols = {
        "slope": ols_slope,
        "intercept": 0.5,
        "slope_ci_lower": ols_slope - 0.1,
        "slope_ci_upper": ols_slope + 0.1,
        "p_value": 0.0004,
        "r_squared": 0.91,
        "n": 30,
        "ci": ci,
    }
    robust = None
    if robust_slope is not None:
        robust = {"method": "theil-sen", "slope": robust_slope, "intercept": 0.4}
    return {
        "species": "nitrate",
        "tributary": "North",
        "feature": "sum_five",
        "ols": ols,
        "diagnostics": {"n_outliers": 1, "n_high_leverage": 2, "n_influential": 1},
        "robust": robust,
        "preferred": preferred,
    }


@pytest.mark.parametrize(
    "p_value, expected",
    [
        (0.0001, "highly significant (p < 0.001)"),
        (0.02, "significant (p = 0.020)"),
        (0.3, "not significant (p = 0.300)"),
        (np.nan, "not testable"),
        (None, "not testable"),
    ],
)
def test_significance_phrase(p_value, expected):
    assert significance_phrase(p_value) == expected


def test_labels_fall_back_to_column_names():
    assert species_label("nitrate") == "Nitrate-N"
    assert species_label("phosphate") == "phosphate"
    assert feature_label("sum_three") == "3-day antecedent rainfall"
    assert feature_label("sum_ten") == "sum_ten"


def test_interpret_regression_reports_ols():
    text = interpret_regression(make_fit_summary())
    assert "Nitrate-N at North vs 5-day antecedent rainfall (n = 30)" in text
    assert "0.800 * log1p(R)" in text
    assert "increases with rainfall" in text
    assert "highly significant" in text
    assert "1 outlier(s)" in text
    assert "Robust" not in text


def test_interpret_regression_labels_confidence_level():
    x = np.linspace(0.0, 3.0, 20)
    joined = pd.DataFrame(
        {
            "date": pd.date_range("2020-04-01", periods=20, freq="7D"),
            "tributary": "North",
            "nitrate": np.exp(0.3 + 0.3 * x + np.where(np.arange(20) % 2 == 0, 0.02, -0.02)),
            "sum_five": np.expm1(x),
        }
    )
    summary = fit_with_diagnostics(joined, "nitrate", "North", ci=90)
    text = interpret_regression(summary)
    assert "90% CI on slope" in text
    assert "95% CI" not in text

    assert "97.5% CI on slope" in interpret_regression(make_fit_summary(ci=97.5))


def test_interpret_regression_zero_slope():
    text = interpret_regression(make_fit_summary(ols_slope=0.0))
    assert "shows no trend with rainfall" in text
    assert "decreases" not in text


def test_interpret_regression_prefers_robust():
    text = interpret_regression(
        make_fit_summary(ols_slope=-0.05, robust_slope=0.79, preferred="robust")
    )
    assert "Robust (theil-sen): slope = 0.790" in text
    assert "differ in sign" in text
    assert "robust estimate is preferred" in text


def test_interpret_regression_failure():
    text = interpret_regression(
        {"species": "ammonium", "tributary": "South", "failure_reason": "Not enough valid data points"}
    )
    assert text == "Ammonium-N at South: regression failed (Not enough valid data points)."


def test_interpret_pairwise_tests():
    table = pd.DataFrame(
        {
            "species": ["nitrate", "nitrate"],
            "site_a": ["North", "East"],
            "site_b": ["South", "North"],
            "method": ["kendall", "kendall"],
            "n": [20, 2],
            "statistic": [0.61, np.nan],
            "p_value": [0.0002, np.nan],
            "p_value_fdr": [0.0004, np.nan],
        }
    )
    text = interpret_pairwise_tests(table)
    assert "North vs South τ = 0.61 (n = 20), highly significant" in text
    assert "τ = n/a (n = 2), not testable" in text


def test_interpret_pairwise_tests_empty():
    assert "No tributary pairs" in interpret_pairwise_tests(pd.DataFrame())


def test_interpret_rainfall_correlations_picks_strongest():
    table = pd.DataFrame(
        {
            "tributary": ["North", "North", "North"],
            "species": ["nitrate"] * 3,
            "feature": ["lag_one", "sum_three", "sum_five"],
            "n": [30, 30, 30],
            "rho": [0.1, -0.7, 0.4],
            "p_value": [0.5, 0.0001, 0.03],
            "p_value_fdr": [0.5, 0.0003, 0.045],
        }
    )
    text = interpret_rainfall_correlations(table)
    assert "North Nitrate-N: strongest with 3-day antecedent rainfall (ρ = -0.70*, n = 30)" in text


def test_interpret_rainfall_correlations_empty():
    table = pd.DataFrame({"rho": [np.nan]})
    assert interpret_rainfall_correlations(table) == "No rainfall correlations could be computed."


def test_interpret_results_combines_sections():
    results = {
        "coverage_affected_dates": pd.DatetimeIndex(["2020-01-01"]),
        "regressions": [make_fit_summary()],
    }
    interpretation = interpret_results(results, param_name="Lake tributaries")
    summary = interpretation["summary_text"]
    assert summary.startswith("Rainfall analysis for Lake tributaries")
    assert "1 sampling date(s) precede full rainfall coverage" in summary
    assert "Regressions:" in summary
    assert len(interpretation["regression_summaries"]) == 1
