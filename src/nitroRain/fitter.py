import logging
from typing import Dict, Optional

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import stats
from statsmodels.stats.outliers_influence import OLSInfluence

from .data_loader import DATE_COL, SITE_COL
from .preprocessor import log1p_transform, log_transform

MIN_REGRESSION_POINTS = 5

# Thresholds used to flag points in the ordinary least-squares fit.
OUTLIER_STUDENTIZED_THRESHOLD = 2.0
LEVERAGE_MULTIPLIER = 2.0  # high leverage: h_ii > LEVERAGE_MULTIPLIER * p / n
COOKS_DISTANCE_MULTIPLIER = 4.0  # influential: D_i > COOKS_DISTANCE_MULTIPLIER / n
COOKS_DISTANCE_CUTOFF = 1.0  # a single point above this dominates the fit


def prepare_regression_data(
    joined: pd.DataFrame, species: str, tributary: str, feature: str = "sum_five"
) -> Dict:
    """
    Selects one tributary and returns ``x = log1p(feature)`` and
    ``y = ln(concentration)`` over rows where both are finite.

    Raises:
        ValueError: If the tributary is absent, fewer than
            ``MIN_REGRESSION_POINTS`` usable rows remain, or ``x`` is constant.
    """
    for col in (DATE_COL, SITE_COL, species, feature):
        if col not in joined.columns:
            raise ValueError(f"Column '{col}' not found in the joined data.")

    subset = joined[joined[SITE_COL] == tributary]
    if subset.empty:
        raise ValueError(f"No measurements found for tributary '{tributary}'.")

    x = log1p_transform(subset[feature].to_numpy(dtype=float))
    y = log_transform(subset[species].to_numpy(dtype=float))
    mask = np.isfinite(x) & np.isfinite(y)
    n_points = int(np.sum(mask))
    if n_points < MIN_REGRESSION_POINTS:
        raise ValueError(
            f"Not enough valid data points ({n_points}) to regress '{species}' on "
            f"'{feature}' for '{tributary}'. Minimum required: {MIN_REGRESSION_POINTS}."
        )
    if np.ptp(x[mask]) == 0:
        raise ValueError(
            f"'{feature}' has zero variance for '{tributary}'; the regression is undefined."
        )

    return {
        "x": x[mask],
        "y": y[mask],
        "dates": subset[DATE_COL].to_numpy()[mask],
        "species": species,
        "tributary": tributary,
        "feature": feature,
        "n": n_points,
    }


def fit_log_rainfall_model(
    joined: pd.DataFrame,
    species: str,
    tributary: str,
    feature: str = "sum_five",
    ci: float = 95,
) -> Dict:
    """
    Ordinary least-squares fit of ``ln(concentration) ~ log1p(rainfall)``
    for one tributary.

    Args:
        joined (pd.DataFrame): Measurements joined with rainfall features.
        species (str): Concentration column.
        tributary (str): Tributary to restrict the fit to.
        feature (str): Rainfall feature used as the predictor.
        ci (float): Confidence level, in percent, for the slope interval.

    Returns:
        dict: ``slope``, ``intercept``, their standard errors, the slope
        confidence interval, ``p_value`` of the slope, ``r_squared``,
        ``adj_r_squared``, ``n``, the transformed ``x``/``y``, ``fitted``
        values, ``residuals`` and the statsmodels results under ``model``.
    """
    if not 0 < ci < 100:
        raise ValueError("'ci' must be between 0 and 100.")

    data = prepare_regression_data(joined, species, tributary, feature)
    x, y = data["x"], data["y"]

    model = sm.OLS(y, sm.add_constant(x, has_constant="add")).fit()
    conf_int = np.asarray(model.conf_int(alpha=1 - ci / 100))

    return {
        **data,
        "method": "ols",
        "ci": ci,
        "slope": float(model.params[1]),
        "intercept": float(model.params[0]),
        "slope_stderr": float(model.bse[1]),
        "intercept_stderr": float(model.bse[0]),
        "slope_ci_lower": float(conf_int[1, 0]),
        "slope_ci_upper": float(conf_int[1, 1]),
        "p_value": float(model.pvalues[1]),
        "r_squared": float(model.rsquared),
        "adj_r_squared": float(model.rsquared_adj),
        "fitted": np.asarray(model.fittedvalues),
        "residuals": np.asarray(model.resid),
        "model": model,
    }


def compute_influence_diagnostics(fit_results: Dict) -> Dict:
    """
    Outlier, leverage and influence diagnostics for an OLS fit.

    Points are flagged as outliers (``|studentized residual| >
    OUTLIER_STUDENTIZED_THRESHOLD``), high leverage (``h_ii > 2p/n``) and
    influential (Cook's distance above ``4/n``). The fit is marked
    ``unreliable`` when a Cook's distance exceeds ``COOKS_DISTANCE_CUTOFF``
    or when an observation is both an outlier and a high-leverage point.
    """
    model = fit_results.get("model")
    if model is None:
        raise ValueError("Influence diagnostics require an OLS fit with a 'model' entry.")

    influence = OLSInfluence(model)
    n_obs = int(model.nobs)
    n_params = len(model.params)

    studentized = np.asarray(influence.resid_studentized_external)
    leverage = np.asarray(influence.hat_matrix_diag)
    cooks_distance = np.asarray(influence.cooks_distance[0])

    leverage_threshold = LEVERAGE_MULTIPLIER * n_params / n_obs
    cooks_threshold = COOKS_DISTANCE_MULTIPLIER / n_obs

    is_outlier = np.abs(studentized) > OUTLIER_STUDENTIZED_THRESHOLD
    is_high_leverage = leverage > leverage_threshold
    is_influential = cooks_distance > cooks_threshold

    unreliable = bool(
        np.any(cooks_distance > COOKS_DISTANCE_CUTOFF)
        or np.any(is_outlier & is_high_leverage)
    )

    return {
        "studentized_residuals": studentized,
        "leverage": leverage,
        "cooks_distance": cooks_distance,
        "leverage_threshold": leverage_threshold,
        "cooks_threshold": cooks_threshold,
        "is_outlier": is_outlier,
        "is_high_leverage": is_high_leverage,
        "is_influential": is_influential,
        "n_outliers": int(np.sum(is_outlier)),
        "n_high_leverage": int(np.sum(is_high_leverage)),
        "n_influential": int(np.sum(is_influential)),
        "unreliable": unreliable,
    }


def fit_robust_model(
    joined: pd.DataFrame,
    species: str,
    tributary: str,
    feature: str = "sum_five",
    method: str = "theil-sen",
    ci: float = 95,
) -> Dict:
    """
    Median-slope regression of ``ln(concentration) ~ log1p(rainfall)``.

    ``'theil-sen'`` uses the median of pairwise slopes and also reports a
    slope confidence interval; ``'siegel'`` uses repeated medians, which
    tolerates a larger fraction of outliers.
    """
    if method not in ["theil-sen", "siegel"]:
        raise ValueError(f"Unknown robust method: '{method}'. Choose 'theil-sen' or 'siegel'.")
    if not 0 < ci < 100:
        raise ValueError("'ci' must be between 0 and 100.")

    data = prepare_regression_data(joined, species, tributary, feature)
    x, y = data["x"], data["y"]

    results = {**data, "method": method, "ci": ci}
    if method == "theil-sen":
        slope, intercept, low_slope, high_slope = stats.theilslopes(y, x, alpha=1 - (ci / 100))
        results.update({"slope_ci_lower": float(low_slope), "slope_ci_upper": float(high_slope)})
    else:
        slope, intercept = stats.siegelslopes(y, x)
        results.update({"slope_ci_lower": np.nan, "slope_ci_upper": np.nan})

    fitted = intercept + slope * x
    results.update(
        {
            "slope": float(slope),
            "intercept": float(intercept),
            "fitted": fitted,
            "residuals": y - fitted,
        }
    )
    return results


def fit_with_diagnostics(
    joined: pd.DataFrame,
    species: str,
    tributary: str,
    feature: str = "sum_five",
    robust_method: str = "theil-sen",
    always_fit_robust: bool = False,
    ci: float = 95,
    logger: Optional[logging.Logger] = None,
) -> Dict:
    """
    Fits OLS, checks its influence diagnostics, and adds a robust fit when
    the diagnostics show the OLS estimate is driven by a few points.

    Returns:
        dict: ``ols``, ``diagnostics``, ``robust`` (None unless fitted) and
        ``preferred`` (``'ols'`` or ``'robust'``).
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    ols = fit_log_rainfall_model(joined, species, tributary, feature=feature, ci=ci)
    diagnostics = compute_influence_diagnostics(ols)

    robust = None
    preferred = "ols"
    if diagnostics["unreliable"] or always_fit_robust:
        robust = fit_robust_model(
            joined, species, tributary, feature=feature, method=robust_method, ci=ci
        )
    if diagnostics["unreliable"]:
        preferred = "robust"
        logger.warning(
            f"OLS fit of {species} on {feature} for {tributary} is driven by "
            "outlying or high-leverage points; preferring the "
            f"{robust_method} slope ({robust['slope']:.3f} vs OLS {ols['slope']:.3f})."
        )

    return {
        "species": species,
        "tributary": tributary,
        "feature": feature,
        "ols": ols,
        "diagnostics": diagnostics,
        "robust": robust,
        "preferred": preferred,
    }
