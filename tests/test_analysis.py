import os

import numpy as np
import pandas as pd
import pytest

from nitroRain.analysis import Analysis


def make_rainfall(start="2020-03-20", periods=120, seed=1):
    """A daily rainfall table in tenths of a millimetre."""
    rng = np.random.default_rng(seed)
    wet = rng.random(periods) < 0.4
    prcp = np.where(wet, rng.gamma(1.2, 60.0, periods), 0.0).round().astype(int)
    return pd.DataFrame(
        {
            "STATION": "USC00000001",
            "DATE": pd.date_range(start, periods=periods, freq="D").strftime("%Y-%m-%d"),
            "PRCP": prcp,
        }
    )


def make_measurements(rainfall, seed=2):
    """
    Weekly samples at North and South driven by five-day antecedent rainfall,
    plus a sparsely sampled East tributary.
    """
    rng = np.random.default_rng(seed)
    precip_mm = rainfall["PRCP"].to_numpy() / 10.0
    sum_five = pd.Series(precip_mm).shift(1, fill_value=0).rolling(5, min_periods=1).sum()
    dates = pd.to_datetime(rainfall["DATE"])

    rows = []
    for i in range(14, len(rainfall), 7):
        for site, offset in (("North", 0.0), ("South", 0.3)):
            nitrate = np.exp(offset - 0.5 + 0.35 * np.log1p(sum_five[i]) + rng.normal(0, 0.1))
            ammonium = rng.uniform(0.02, 0.2)
            organic = rng.uniform(0.2, 0.6)
            rows.append(
                {
                    "Date": dates[i].strftime("%Y-%m-%d"),
                    "Site": site,
                    "TN": round(nitrate + ammonium + organic, 4),
                    "NO3": round(nitrate, 4),
                    "NH4": round(ammonium, 4),
                    "ON": round(organic, 4),
                }
            )
    for i in (20, 48, 76):
        rows.append(
            {
                "Date": dates[i].strftime("%Y-%m-%d"),
                "Site": "East",
                "TN": 1.2,
                "NO3": 0.6,
                "NH4": 0.1,
                "ON": 0.5,
            }
        )
    return pd.DataFrame(rows)


@pytest.fixture
def rainfall_df():
    return make_rainfall()


@pytest.fixture
def measurements_df(rainfall_df):
    return make_measurements(rainfall_df)


@pytest.fixture
def analysis(measurements_df, rainfall_df):
    return Analysis(
        measurements=measurements_df,
        rainfall=rainfall_df,
        date_col="Date",
        site_col="Site",
        param_name="Test Tributaries",
    )


def test_init_loads_and_joins(analysis, measurements_df):
    assert analysis.tributaries == ["East", "North", "South"]
    assert len(analysis.joined) == len(measurements_df)
    assert {"precipitation", "lag_one", "sum_three", "sum_five"} <= set(analysis.joined.columns)
    assert analysis.feature_names == ["lag_one", "sum_three", "sum_five"]
    assert len(analysis.coverage_affected_dates) == 0
    assert not analysis.joined["sum_five"].isna().any()


def test_joined_rainfall_matches_manual_sum(analysis, rainfall_df):
    row = analysis.joined.iloc[0]
    dates = pd.to_datetime(rainfall_df["DATE"])
    prior = rainfall_df.loc[
        (dates < row["date"]) & (dates >= row["date"] - pd.Timedelta(days=5)), "PRCP"
    ]
    assert row["sum_five"] == pytest.approx(prior.sum() / 10.0)


def test_init_from_files(measurements_df, rainfall_df, tmp_path):
    measurement_file = tmp_path / "chem.csv"
    rainfall_file = tmp_path / "rain.csv"
    measurements_df.to_csv(measurement_file, index=False)
    rainfall_df.to_csv(rainfall_file, index=False)

    analysis = Analysis(
        measurement_file=str(measurement_file),
        rainfall_file=str(rainfall_file),
        date_col="Date",
        site_col="Site",
    )
    assert len(analysis.joined) == len(measurements_df)
    assert analysis.rainfall["precipitation"].max() == pytest.approx(
        rainfall_df["PRCP"].max() / 10.0
    )


def test_init_requires_one_source_per_dataset(measurements_df, rainfall_df):
    with pytest.raises(ValueError, match="exactly one measurement source"):
        Analysis(rainfall=rainfall_df, date_col="Date", site_col="Site")
    with pytest.raises(ValueError, match="exactly one rainfall source"):
        Analysis(
            measurements=measurements_df,
            rainfall=rainfall_df,
            rainfall_file="rain.csv",
            date_col="Date",
            site_col="Site",
        )


def test_early_samples_trigger_coverage_warning(measurements_df, rainfall_df):
    late_rainfall = rainfall_df.iloc[12:].reset_index(drop=True)
    with pytest.warns(UserWarning, match="start of the rainfall series"):
        analysis = Analysis(
            measurements=measurements_df,
            rainfall=late_rainfall,
            date_col="Date",
            site_col="Site",
        )
    assert len(analysis.coverage_affected_dates) > 0


def test_strict_coverage_raises(measurements_df, rainfall_df):
    with pytest.raises(ValueError, match="start of the rainfall series"):
        Analysis(
            measurements=measurements_df,
            rainfall=rainfall_df.iloc[12:].reset_index(drop=True),
            date_col="Date",
            site_col="Site",
            strict_coverage=True,
        )


def test_run_full_analysis_writes_outputs(analysis, tmp_path):
    output_dir = tmp_path / "results"
    results = analysis.run_full_analysis(
        str(output_dir), species=["nitrate", "ammonium"], figure_formats=("png",)
    )

    assert set(results["correlation_matrices"]) == {"nitrate", "ammonium"}
    assert results["correlation_matrices"]["nitrate"].shape == (3, 3)
    assert len(results["pairwise_tests"]) == 2 * 3
    assert "p_value_fdr" in results["rainfall_correlations"].columns
    assert len(results["regressions"]) == 2 * 3

    for path in results["outputs"]["tables"] + results["outputs"]["figures"]:
        assert os.path.exists(path)
    assert (output_dir / "Test_Tributaries_joined_data.csv").exists()
    assert (output_dir / "Test_Tributaries_ternary.png").exists()
    assert (output_dir / "Test_Tributaries_nitrate_North_diagnostics.png").exists()

    summary = (output_dir / "Test_Tributaries_summary.txt").read_text(encoding="utf-8")
    assert summary == results["summary_text"]
    assert "Rainfall analysis for Test Tributaries" in summary
    assert analysis.results is results


def test_failed_regression_is_recorded(analysis, tmp_path):
    results = analysis.run_full_analysis(
        str(tmp_path), species=["nitrate"], figure_formats=("png",)
    )
    east = [r for r in results["regressions"] if r["tributary"] == "East"][0]
    assert "Not enough valid data points" in east["failure_reason"]
    assert "regression failed" in results["summary_text"]
    assert not (tmp_path / "Test_Tributaries_nitrate_East_diagnostics.png").exists()

    north = [r for r in results["regressions"] if r["tributary"] == "North"][0]
    assert north["ols"]["slope"] > 0


def test_stop_on_fit_error_reraises(analysis, tmp_path):
    with pytest.raises(ValueError, match="Not enough valid data points"):
        analysis.run_full_analysis(
            str(tmp_path),
            species=["nitrate"],
            regression_tributaries=["East"],
            figure_formats=("png",),
            stop_on_fit_error=True,
        )
    assert analysis.results is None


def test_regression_subset_and_feature(analysis, tmp_path):
    results = analysis.run_full_analysis(
        str(tmp_path),
        species=["nitrate"],
        regression_tributaries=["North"],
        feature="sum_three",
        always_fit_robust=True,
        figure_formats=("svg",),
    )
    assert len(results["regressions"]) == 1
    fit = results["regressions"][0]
    assert fit["feature"] == "sum_three"
    assert fit["robust"] is not None
    assert (tmp_path / "Test_Tributaries_nitrate_North_diagnostics.svg").exists()


@pytest.mark.parametrize(
    "kwargs, match",
    [
        ({"species": ["phosphate"]}, "Unknown species"),
        ({"regression_tributaries": ["West"]}, "not in the data"),
        ({"feature": "sum_ten"}, "`feature` must be one of"),
        ({"correlation_method": "pearson"}, "`correlation_method`"),
        ({"robust_method": "huber"}, "`robust_method`"),
        ({"figure_formats": ("jpg",)}, "`figure_formats`"),
        ({"ci": 100}, "`ci`"),
        ({"alpha": 1.5}, "`alpha`"),
    ],
)
def test_run_full_analysis_validates_parameters(analysis, tmp_path, kwargs, match):
    with pytest.raises(ValueError, match=match):
        analysis.run_full_analysis(str(tmp_path), **kwargs)
