import logging
import os

import numpy as np
import pandas as pd

from nitroRain import Analysis

OUTPUT_DIR = "examples/output"
os.makedirs(OUTPUT_DIR, exist_ok=True)

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")


def make_synthetic_inputs(seed=42):
    """
    Writes a station rainfall CSV (PRCP in tenths of mm) and a workbook with
    one sheet per tributary. Nitrate at each site rises with five-day
    antecedent rainfall; one storm sample at Willow Run is a gross outlier.
    """
    rng = np.random.default_rng(seed)
    days = pd.date_range("2019-04-01", periods=200, freq="D")
    wet = rng.random(len(days)) < 0.3
    prcp = np.where(wet, rng.gamma(1.0, 90.0, len(days)), 0.0).round().astype(int)
    rainfall = pd.DataFrame(
        {"STATION": "USC00123456", "DATE": days.strftime("%Y-%m-%d"), "PRCP": prcp}
    )
    rainfall_file = os.path.join(OUTPUT_DIR, "daily_rainfall.csv")
    rainfall.to_csv(rainfall_file, index=False)

    sum_five = pd.Series(prcp / 10.0).shift(1, fill_value=0).rolling(5, min_periods=1).sum()
    sample_idx = np.arange(7, len(days), 6)

    measurement_file = os.path.join(OUTPUT_DIR, "tributary_nitrogen.xlsx")
    with pd.ExcelWriter(measurement_file, engine="openpyxl") as writer:
        for site, base, slope in (("Cedar Creek", -0.3, 0.30), ("Willow Run", 0.1, 0.20),
                                  ("Mill Brook", -0.6, 0.45)):
            x = np.log1p(sum_five[sample_idx].to_numpy())
            no3 = np.exp(base + slope * x + rng.normal(0, 0.15, len(x)))
            nh4 = rng.lognormal(np.log(0.08), 0.4, len(x))
            on = rng.lognormal(np.log(0.4), 0.25, len(x))
            if site == "Willow Run":
                no3[np.argmax(x)] = 0.02
            table = pd.DataFrame(
                {
                    "Date": days[sample_idx],
                    "TN": (no3 + nh4 + on).round(3),
                    "NO3": no3.round(3),
                    "NH4": nh4.round(3).astype(object),
                }
            )
            # A few ammonium results below the reporting limit
            table.loc[table.index[::9], "NH4"] = "<0.02"
            table.to_excel(writer, sheet_name=site, index=False)

    return measurement_file, rainfall_file


def main():
    measurement_file, rainfall_file = make_synthetic_inputs()

    analysis = Analysis(
        measurement_file=measurement_file,
        rainfall_file=rainfall_file,
        date_col="Date",
        censor_strategy="multiplier",
        param_name="Example tributaries",
    )
    results = analysis.run_full_analysis(OUTPUT_DIR, always_fit_robust=True)

    print(results["summary_text"])
    print(f"\n{len(results['outputs']['figures'])} figures written to {OUTPUT_DIR}")


if __name__ == "__main__":
    main()
