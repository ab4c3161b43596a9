import numpy as np
import pandas as pd

from .data_loader import SITE_COL

SPECIES_LABELS = {
    "total_nitrogen": "Total N",
    "nitrate": "Nitrate-N",
    "ammonium": "Ammonium-N",
    "organic_nitrogen": "Organic N",
}

FEATURE_LABELS = {
    "precipitation": "same-day rainfall",
    "lag_one": "previous-day rainfall",
    "sum_three": "3-day antecedent rainfall",
    "sum_five": "5-day antecedent rainfall",
}

SIGNIFICANCE_LEVEL = 0.05


def species_label(species):
    return SPECIES_LABELS.get(species, species)


def feature_label(feature):
    return FEATURE_LABELS.get(feature, feature)


def significance_phrase(p_value, alpha=SIGNIFICANCE_LEVEL):
    """Describes a p-value in words."""
    if p_value is None or not np.isfinite(p_value):
        return "not testable"
    if p_value < 0.001:
        return "highly significant (p < 0.001)"
    if p_value < alpha:
        return f"significant (p = {p_value:.3f})"
    return f"not significant (p = {p_value:.3f})"


def interpret_regression(fit_summary):
    """
    Summarizes the result of :func:`~nitroRain.fitter.fit_with_diagnostics`.

    The slope is an elasticity-like coefficient: a one-unit increase in
    ``log1p(rainfall)`` changes concentration by a factor of ``exp(slope)``.
    """
    if "failure_reason" in fit_summary:
        return (
            f"{species_label(fit_summary['species'])} at {fit_summary['tributary']}: "
            f"regression failed ({fit_summary['failure_reason']})."
        )

    ols = fit_summary["ols"]
    diagnostics = fit_summary["diagnostics"]
    robust = fit_summary.get("robust")

    if ols["slope"] > 0:
        trend = "increases with rainfall"
    elif ols["slope"] < 0:
        trend = "decreases with rainfall"
    else:
        trend = "shows no trend with rainfall"
    lines = [
        f"{species_label(fit_summary['species'])} at {fit_summary['tributary']} vs "
        f"{feature_label(fit_summary['feature'])} (n = {ols['n']}):",
        f"  OLS: ln(C) = {ols['intercept']:.3f} + {ols['slope']:.3f} * log1p(R), "
        f"R² = {ols['r_squared']:.3f}; concentration {trend}, "
        f"{significance_phrase(ols['p_value'])}.",
        f"  {ols['ci']:g}% CI on slope: [{ols['slope_ci_lower']:.3f}, {ols['slope_ci_upper']:.3f}].",
        f"  Diagnostics: {diagnostics['n_outliers']} outlier(s), "
        f"{diagnostics['n_high_leverage']} high-leverage point(s), "
        f"{diagnostics['n_influential']} influential point(s).",
    ]
    if robust is not None:
        lines.append(
            f"  Robust ({robust['method']}): slope = {robust['slope']:.3f}, "
            f"intercept = {robust['intercept']:.3f}."
        )
        if np.sign(robust["slope"]) != np.sign(ols["slope"]):
            lines.append(
                "  Warning: the robust and OLS slopes differ in sign; the OLS "
                "trend is not supported by the bulk of the data."
            )
    if fit_summary.get("preferred") == "robust":
        lines.append("  The OLS fit is unreliable; the robust estimate is preferred.")
    return "\n".join(lines)


def interpret_pairwise_tests(pairwise: pd.DataFrame):
    """Lists tributary pairs whose concentrations co-vary."""
    if pairwise.empty:
        return "No tributary pairs had enough shared sampling dates to test."

    lines = []
    for _, row in pairwise.iterrows():
        symbol = "τ" if row["method"] == "kendall" else "ρ"
        if np.isfinite(row["statistic"]):
            stat_text = f"{symbol} = {row['statistic']:.2f}"
        else:
            stat_text = f"{symbol} = n/a"
        lines.append(
            f"  {species_label(row['species'])}: {row['site_a']} vs {row['site_b']} "
            f"{stat_text} (n = {row['n']}), {significance_phrase(row.get('p_value_fdr'))} "
            "after FDR adjustment."
        )
    return "Between-tributary correlations:\n" + "\n".join(lines)


def interpret_rainfall_correlations(table: pd.DataFrame, alpha=SIGNIFICANCE_LEVEL):
    """Reports the strongest rainfall association per tributary and species."""
    valid = table.dropna(subset=["rho"])
    if valid.empty:
        return "No rainfall correlations could be computed."

    lines = []
    for (site, sp), group in valid.groupby([SITE_COL, "species"], sort=True):
        best = group.loc[group["rho"].abs().idxmax()]
        marker = "*" if best["p_value_fdr"] < alpha else ""
        lines.append(
            f"  {site} {species_label(sp)}: strongest with "
            f"{feature_label(best['feature'])} (ρ = {best['rho']:.2f}{marker}, n = {best['n']})"
        )
    return (
        "Rainfall correlations (Spearman; * = significant after FDR adjustment):\n"
        + "\n".join(lines)
    )


def interpret_results(results, param_name="Tributary nitrogen"):
    """
    Builds the text report from the results of
    :meth:`~nitroRain.analysis.Analysis.run_full_analysis`.

    Returns:
        dict: ``summary_text`` and the individual ``regression_summaries``.
    """
    sections = [f"Rainfall analysis for {param_name}", "=" * 40]

    coverage = results.get("coverage_affected_dates")
    if coverage is not None and len(coverage) > 0:
        sections.append(
            f"Note: {len(coverage)} sampling date(s) precede full rainfall coverage; "
            "their antecedent rainfall is understated."
        )

    if "pairwise_tests" in results:
        sections.append(interpret_pairwise_tests(results["pairwise_tests"]))
    if "rainfall_correlations" in results:
        sections.append(interpret_rainfall_correlations(results["rainfall_correlations"]))

    regression_summaries = [interpret_regression(r) for r in results.get("regressions", [])]
    if regression_summaries:
        sections.append("Regressions:\n" + "\n\n".join(regression_summaries))

    return {
        "summary_text": "\n\n".join(sections),
        "regression_summaries": regression_summaries,
    }
