import logging
import os
from typing import Dict, Iterable, Optional, Sequence

import pandas as pd

from .correlation import (
    all_pairwise_tests,
    rainfall_correlation_table,
    species_correlation_matrix,
)
from .data_loader import (
    DATE_COL,
    SITE_COL,
    SPECIES,
    load_measurements,
    load_rainfall,
    process_measurements_dataframe,
    process_rainfall_dataframe,
)
from .fitter import fit_with_diagnostics
from .interpreter import interpret_results, species_label
from .joiner import join_rainfall
from .plotting import (
    plot_correlation_matrix,
    plot_rainfall_scatter,
    plot_regression_diagnostics,
    plot_ternary,
)
from .rainfall_features import (
    check_rainfall_coverage,
    derive_rainfall_features,
    lag_feature_name,
    sum_feature_name,
)
from .utils import sanitize_filename


class Analysis:
    """
    Relates tributary nitrogen concentrations to antecedent rainfall.

    The constructor loads both datasets, derives the rainfall features and
    joins them to the measurements; :meth:`run_full_analysis` runs the
    correlation and regression analyses and writes tables, figures and a
    text summary.
    """

    def __init__(
        self,
        measurement_file: Optional[str] = None,
        rainfall_file: Optional[str] = None,
        measurements: Optional[pd.DataFrame] = None,
        rainfall: Optional[pd.DataFrame] = None,
        date_col: str = DATE_COL,
        species_cols: Optional[Dict[str, str]] = None,
        site_col: Optional[str] = None,
        site_name: Optional[str] = None,
        sheet_name=None,
        tributaries: Optional[Iterable[str]] = None,
        rain_date_col: str = "DATE",
        precip_col: str = "PRCP",
        precip_units: str = "tenths_mm",
        censor_strategy: str = "drop",
        censor_options: Optional[Dict] = None,
        lag_days: Sequence[int] = (1,),
        sum_windows: Sequence[int] = (3, 5),
        fill_missing_days: bool = False,
        strict_coverage: bool = False,
        param_name: str = "Tributary nitrogen",
    ):
        """
        Initializes the Analysis object by loading, deriving and joining data.

        Each dataset comes from exactly one source: a file path or a
        DataFrame.

        Args:
            measurement_file (str, optional): Spreadsheet/CSV of nitrogen
                measurements.
            rainfall_file (str, optional): CSV of daily rainfall.
            measurements (pd.DataFrame, optional): Raw measurement table.
            rainfall (pd.DataFrame, optional): Raw rainfall table.
            date_col (str): Sample date column in the measurements.
            species_cols (dict, optional): Canonical species to source column.
            site_col (str, optional): Tributary column in the measurements.
            site_name (str, optional): Tributary name for a single-site
                measurement DataFrame.
            sheet_name (optional): Workbook sheet(s) to read; None reads all.
            tributaries (iterable of str, optional): Allowed tributary names.
            rain_date_col (str): Date column in the rainfall data.
            precip_col (str): Precipitation column in the rainfall data.
            precip_units (str): ``'tenths_mm'`` or ``'mm'``.
            censor_strategy (str): Strategy for censored concentrations.
            censor_options (dict, optional): Options for the censoring strategy.
            lag_days (sequence of int): Rainfall lags to derive.
            sum_windows (sequence of int): Trailing rainfall windows to derive.
            fill_missing_days (bool): Fill missing rainfall days with 0 mm.
            strict_coverage (bool): Raise instead of warning when sampling
                dates precede full rainfall coverage.
            param_name (str): Descriptive name used in outputs.
        """
        self.param_name = param_name
        self.logger = logging.getLogger(__name__)

        if (measurement_file is None) == (measurements is None):
            raise ValueError(
                "Please provide exactly one measurement source: `measurement_file` "
                "or `measurements`."
            )
        if (rainfall_file is None) == (rainfall is None):
            raise ValueError(
                "Please provide exactly one rainfall source: `rainfall_file` or `rainfall`."
            )

        self.logger.info("Loading measurement and rainfall data...")
        if measurement_file is not None:
            self.measurements = load_measurements(
                measurement_file,
                date_col=date_col,
                species_cols=species_cols,
                site_col=site_col,
                sheet_name=sheet_name,
                tributaries=tributaries,
                censor_strategy=censor_strategy,
                censor_options=censor_options,
            )
        else:
            self.measurements = process_measurements_dataframe(
                measurements,
                date_col=date_col,
                species_cols=species_cols,
                site_col=site_col,
                site_name=site_name,
                tributaries=tributaries,
                censor_strategy=censor_strategy,
                censor_options=censor_options,
            )

        if rainfall_file is not None:
            self.rainfall = load_rainfall(
                rainfall_file, date_col=rain_date_col, precip_col=precip_col, units=precip_units
            )
        else:
            self.rainfall = process_rainfall_dataframe(
                rainfall, date_col=rain_date_col, precip_col=precip_col, units=precip_units
            )

        self.logger.info("Deriving antecedent rainfall features...")
        self.features = derive_rainfall_features(
            self.rainfall,
            lag_days=lag_days,
            sum_windows=sum_windows,
            fill_missing_days=fill_missing_days,
        )
        self.feature_names = [lag_feature_name(d) for d in lag_days] + [
            sum_feature_name(w) for w in sum_windows
        ]

        self.coverage_affected_dates = check_rainfall_coverage(
            self.features,
            self.measurements[DATE_COL],
            max_window=max(list(lag_days) + list(sum_windows)),
            strict=strict_coverage,
        )

        self.logger.info("Joining rainfall features to measurements...")
        self.joined = join_rainfall(self.measurements, self.features)
        self.tributaries = sorted(self.joined[SITE_COL].unique())
        self.logger.info(
            f"Data ready: {len(self.joined)} measurements at {len(self.tributaries)} "
            "tributaries."
        )

        self.results = None

    def _validate_run_parameters(
        self,
        species,
        regression_tributaries,
        feature,
        correlation_method,
        robust_method,
        figure_formats,
        ci,
        alpha,
    ):
        """Validates parameters for the `run_full_analysis` method."""
        unknown = [s for s in species if s not in SPECIES]
        if unknown:
            raise ValueError(f"Unknown species {unknown}. Choose from {list(SPECIES)}.")
        missing_sites = [t for t in regression_tributaries if t not in self.tributaries]
        if missing_sites:
            raise ValueError(
                f"Tributary name(s) {missing_sites} not in the data. "
                f"Available: {self.tributaries}."
            )
        if feature not in self.feature_names:
            raise ValueError(
                f"`feature` must be one of the derived features {self.feature_names}."
            )
        if correlation_method not in ["kendall", "spearman"]:
            raise ValueError("`correlation_method` must be 'kendall' or 'spearman'.")
        if robust_method not in ["theil-sen", "siegel"]:
            raise ValueError("`robust_method` must be 'theil-sen' or 'siegel'.")
        for fmt in figure_formats:
            if fmt not in ["png", "pdf", "svg"]:
                raise ValueError("`figure_formats` may only contain 'png', 'pdf' or 'svg'.")
        if not (isinstance(ci, (int, float)) and 0 < ci < 100):
            raise ValueError("`ci` must be a number between 0 and 100.")
        if not (isinstance(alpha, float) and 0 < alpha < 1):
            raise ValueError("`alpha` must be a float between 0 and 1.")

    def _run_regressions(
        self, species, tributaries, feature, robust_method, always_fit_robust, ci,
        stop_on_fit_error,
    ):
        regressions = []
        for sp in species:
            for site in tributaries:
                self.logger.info(f"Fitting {sp} ~ {feature} for {site}...")
                try:
                    fit = fit_with_diagnostics(
                        self.joined,
                        sp,
                        site,
                        feature=feature,
                        robust_method=robust_method,
                        always_fit_robust=always_fit_robust,
                        ci=ci,
                        logger=self.logger,
                    )
                except ValueError as e:
                    self.logger.error(f"Regression of {sp} for {site} failed: {e}")
                    if stop_on_fit_error:
                        raise
                    fit = {
                        "species": sp,
                        "tributary": site,
                        "feature": feature,
                        "failure_reason": str(e),
                    }
                regressions.append(fit)
        return regressions

    def _save_figure(self, plot_func, output_dir, stem, figure_formats, *args, **kwargs):
        paths = []
        for fmt in figure_formats:
            path = os.path.join(output_dir, f"{stem}.{fmt}")
            plot_func(*args, output_path=path, **kwargs)
            paths.append(path)
        return paths

    def _generate_outputs(self, results, output_dir, figure_formats):
        """Writes tables, figures and the summary text file."""
        self.logger.info(f"Generating outputs in directory: {output_dir}")
        os.makedirs(output_dir, exist_ok=True)
        name = sanitize_filename(self.param_name)
        outputs = {"tables": [], "figures": []}

        joined_path = os.path.join(output_dir, f"{name}_joined_data.csv")
        self.joined.to_csv(joined_path, index=False, date_format="%Y-%m-%d")
        outputs["tables"].append(joined_path)

        for sp, matrix in results["correlation_matrices"].items():
            path = os.path.join(output_dir, f"{name}_{sp}_correlation.csv")
            matrix.to_csv(path)
            outputs["tables"].append(path)
            outputs["figures"] += self._save_figure(
                plot_correlation_matrix, output_dir, f"{name}_{sp}_correlation",
                figure_formats, matrix, title=f"{species_label(sp)}: Spearman ρ between tributaries",
            )

        for key in ("pairwise_tests", "rainfall_correlations"):
            path = os.path.join(output_dir, f"{name}_{key}.csv")
            results[key].to_csv(path, index=False)
            outputs["tables"].append(path)

        outputs["figures"] += self._save_figure(
            plot_ternary, output_dir, f"{name}_ternary", figure_formats, self.joined
        )
        outputs["figures"] += self._save_figure(
            plot_rainfall_scatter, output_dir, f"{name}_rainfall_scatter", figure_formats,
            self.joined, species=results["species"], features=self.feature_names,
        )
        for fit in results["regressions"]:
            if "failure_reason" in fit:
                continue
            stem = sanitize_filename(f"{name}_{fit['species']}_{fit['tributary']}_diagnostics")
            outputs["figures"] += self._save_figure(
                plot_regression_diagnostics, output_dir, stem, figure_formats, fit
            )

        summary_path = os.path.join(output_dir, f"{name}_summary.txt")
        with open(summary_path, "w", encoding="utf-8") as f:
            f.write(results["summary_text"])
        outputs["summary"] = summary_path

        self.logger.info(f"{len(outputs['figures'])} figure(s) saved to {output_dir}")
        self.logger.info(f"Summary saved to {summary_path}")
        return outputs

    def run_full_analysis(
        self,
        output_dir,
        species: Optional[Sequence[str]] = None,
        regression_tributaries: Optional[Sequence[str]] = None,
        feature: str = "sum_five",
        correlation_method: str = "kendall",
        robust_method: str = "theil-sen",
        always_fit_robust: bool = False,
        ci: float = 95,
        alpha: float = 0.05,
        figure_formats: Sequence[str] = ("png", "pdf"),
        stop_on_fit_error: bool = False,
    ):
        """
        Runs the correlation and regression analyses and saves all outputs.

        Args:
            output_dir (str): Directory for tables, figures and the summary.
            species (sequence of str, optional): Species to analyse. Defaults
                to all four.
            regression_tributaries (sequence of str, optional): Tributaries to
                fit regressions for. Defaults to every tributary.
            feature (str): Rainfall feature used as the regression predictor.
                Defaults to the five-day antecedent sum.
            correlation_method (str): ``'kendall'`` (default) or
                ``'spearman'`` for the between-tributary significance tests.
                Correlation matrices are always Spearman.
            robust_method (str): ``'theil-sen'`` (default) or ``'siegel'``.
            always_fit_robust (bool): Fit the robust model even when the OLS
                diagnostics look fine.
            ci (float): Confidence level (percent) for slope intervals.
            alpha (float): False discovery rate for the adjusted p-values.
            figure_formats (sequence of str): Figure file types to write;
                ``'png'`` is raster, ``'pdf'`` and ``'svg'`` are vector.
            stop_on_fit_error (bool): Re-raise the first regression failure
                instead of recording it and continuing.

        Returns:
            dict: All analysis results, including ``summary_text`` and the
            paths of the written ``outputs``.
        """
        species = list(SPECIES if species is None else species)
        if regression_tributaries is None:
            regression_tributaries = self.tributaries
        regression_tributaries = list(regression_tributaries)
        figure_formats = list(figure_formats)
        self._validate_run_parameters(
            species,
            regression_tributaries,
            feature,
            correlation_method,
            robust_method,
            figure_formats,
            ci,
            alpha,
        )

        self.logger.info("Computing between-tributary correlation matrices...")
        correlation_matrices = {
            sp: species_correlation_matrix(self.joined, sp, method="spearman") for sp in species
        }

        self.logger.info(f"Testing tributary pairs with {correlation_method} correlation...")
        pairwise = all_pairwise_tests(
            self.joined, species=species, method=correlation_method, alpha=alpha
        )

        self.logger.info("Correlating concentrations with rainfall features...")
        rain_corr = rainfall_correlation_table(
            self.joined, species=species, features=["precipitation", *self.feature_names],
            alpha=alpha,
        )

        regressions = self._run_regressions(
            species, regression_tributaries, feature, robust_method, always_fit_robust, ci,
            stop_on_fit_error,
        )

        results = {
            "species": species,
            "feature": feature,
            "correlation_matrices": correlation_matrices,
            "pairwise_tests": pairwise,
            "rainfall_correlations": rain_corr,
            "regressions": regressions,
            "coverage_affected_dates": self.coverage_affected_dates,
        }

        self.logger.info("Interpreting results and generating summary...")
        results.update(interpret_results(results, param_name=self.param_name))
        results["outputs"] = self._generate_outputs(results, output_dir, figure_formats)

        self.results = results
        self.logger.info(f"Analysis complete. Outputs saved to '{output_dir}'.")
        return results
