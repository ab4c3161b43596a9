from typing import Dict, Iterable, Optional

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from scipy import stats

from .data_loader import SITE_COL
from .interpreter import feature_label, species_label
from .preprocessor import ternary_fractions

_SQRT3_OVER_2 = np.sqrt(3) / 2.0


def _finish_figure(fig, output_path=None, show=False):
    """Saves (format from the file extension), optionally shows, then closes."""
    if output_path:
        fig.savefig(output_path, dpi=300)
    if show:
        plt.show()
    plt.close(fig)
    return fig


def _site_colors(sites):
    cmap = plt.get_cmap("tab10")
    return {site: cmap(i % 10) for i, site in enumerate(sites)}


def _ternary_xy(bottom_left, bottom_right, top):
    """Barycentric to Cartesian coordinates on a unit equilateral triangle."""
    x = np.asarray(bottom_right) + 0.5 * np.asarray(top)
    y = _SQRT3_OVER_2 * np.asarray(top)
    return x, y


def _draw_ternary_frame(ax, labels, n_gridlines=5):
    corners_x = [0.0, 1.0, 0.5, 0.0]
    corners_y = [0.0, 0.0, _SQRT3_OVER_2, 0.0]
    ax.plot(corners_x, corners_y, "k-", linewidth=1.2)

    for i in range(1, n_gridlines):
        frac = i / n_gridlines
        # Lines of constant fraction for each of the three components
        for a, b in (((frac, 1 - frac, 0), (frac, 0, 1 - frac)),
                     ((1 - frac, frac, 0), (0, frac, 1 - frac)),
                     ((1 - frac, 0, frac), (0, 1 - frac, frac))):
            x, y = _ternary_xy([a[0], b[0]], [a[1], b[1]], [a[2], b[2]])
            ax.plot(x, y, color="grey", linestyle=":", linewidth=0.6)

    ax.text(-0.04, -0.04, labels[0], ha="right", va="top", fontsize=11)
    ax.text(1.04, -0.04, labels[1], ha="left", va="top", fontsize=11)
    ax.text(0.5, _SQRT3_OVER_2 + 0.04, labels[2], ha="center", va="bottom", fontsize=11)
    ax.set_xlim(-0.15, 1.15)
    ax.set_ylim(-0.12, _SQRT3_OVER_2 + 0.12)
    ax.set_aspect("equal")
    ax.axis("off")


def plot_ternary(
    joined: pd.DataFrame,
    components=("nitrate", "ammonium", "organic_nitrogen"),
    output_path: Optional[str] = None,
    title: str = "Nitrogen speciation",
    show: bool = False,
):
    """
    Ternary diagram of the nitrate / ammonium / organic nitrogen composition
    of each sample, coloured by tributary.

    Returns:
        matplotlib.figure.Figure: The figure object for the plot.
    """
    fractions = ternary_fractions(joined, components=components)
    fractions[SITE_COL] = joined[SITE_COL].to_numpy()
    fractions = fractions.dropna()

    fig, ax = plt.subplots(figsize=(7, 6.5))
    _draw_ternary_frame(ax, [species_label(c) for c in components])

    sites = sorted(fractions[SITE_COL].unique())
    colors = _site_colors(sites)
    for site in sites:
        group = fractions[fractions[SITE_COL] == site]
        x, y = _ternary_xy(group[components[0]], group[components[1]], group[components[2]])
        ax.scatter(x, y, s=25, alpha=0.7, color=colors[site], label=site, edgecolors="none")

    if len(fractions) == 0:
        ax.text(0.5, 0.3, "No complete samples", ha="center", va="center")
    else:
        ax.legend(loc="upper right", frameon=False)
    ax.set_title(title, fontsize=14)
    plt.tight_layout()
    return _finish_figure(fig, output_path, show)


def plot_rainfall_scatter(
    joined: pd.DataFrame,
    species: Iterable[str] = ("total_nitrogen", "nitrate", "ammonium", "organic_nitrogen"),
    features: Iterable[str] = ("lag_one", "sum_three", "sum_five"),
    output_path: Optional[str] = None,
    show: bool = False,
):
    """
    Grid of concentration (log scale) against antecedent rainfall, one row
    per species and one column per rainfall feature.

    Returns:
        matplotlib.figure.Figure: The figure object for the plot.
    """
    species = list(species)
    features = list(features)
    missing = [c for c in species + features if c not in joined.columns]
    if missing:
        raise ValueError(f"Columns not found for scatterplots: {missing}")

    fig, axes = plt.subplots(
        len(species),
        len(features),
        figsize=(4 * len(features), 3.2 * len(species)),
        sharex="col",
        squeeze=False,
    )
    sites = sorted(joined[SITE_COL].dropna().unique())
    colors = _site_colors(sites)

    for i, sp in enumerate(species):
        for j, feature in enumerate(features):
            ax = axes[i][j]
            for site in sites:
                group = joined[(joined[SITE_COL] == site) & (joined[sp] > 0)]
                ax.scatter(
                    group[feature], group[sp], s=14, alpha=0.7,
                    color=colors[site], label=site,
                )
            ax.set_yscale("log")
            ax.grid(True, which="both", ls="--", alpha=0.4)
            if i == len(species) - 1:
                ax.set_xlabel(f"{feature_label(feature)} (mm)")
            if j == 0:
                ax.set_ylabel(f"{species_label(sp)} (mg/L)")

    handles, labels = axes[0][0].get_legend_handles_labels()
    if handles:
        fig.legend(handles, labels, loc="upper center", ncol=len(sites), frameon=False)
    plt.tight_layout(rect=[0, 0, 1, 0.96])
    return _finish_figure(fig, output_path, show)


def plot_regression_diagnostics(
    fit_summary: Dict,
    output_path: Optional[str] = None,
    show: bool = False,
):
    """
    Four-panel diagnostic plot for a log-log rainfall regression: the data
    with OLS (and robust) lines, residuals vs fitted, a normal Q-Q plot and
    studentized residuals vs leverage with points sized by Cook's distance.

    Args:
        fit_summary (dict): Output of
            :func:`~nitroRain.fitter.fit_with_diagnostics`.

    Returns:
        matplotlib.figure.Figure: The figure object for the plot.
    """
    ols = fit_summary["ols"]
    diagnostics = fit_summary["diagnostics"]
    robust = fit_summary.get("robust")
    x, y = ols["x"], ols["y"]
    flagged = diagnostics["is_outlier"] | diagnostics["is_influential"]

    fig, axes = plt.subplots(2, 2, figsize=(11, 9))
    ax_fit, ax_resid, ax_qq, ax_lev = axes.ravel()

    order = np.argsort(x)
    ax_fit.scatter(x[~flagged], y[~flagged], s=18, color="tab:blue", label="Samples")
    ax_fit.scatter(x[flagged], y[flagged], s=30, color="tab:red", label="Flagged")
    ax_fit.plot(x[order], ols["fitted"][order], "k-", linewidth=2,
                label=f"OLS (slope ≈ {ols['slope']:.2f})")
    if robust is not None:
        ax_fit.plot(x[order], robust["fitted"][order], "m--", linewidth=2,
                    label=f"{robust['method']} (slope ≈ {robust['slope']:.2f})")
    ax_fit.set_xlabel(f"log1p({fit_summary['feature']})")
    ax_fit.set_ylabel(f"ln({fit_summary['species']})")
    ax_fit.set_title("Fit")
    ax_fit.legend(fontsize=8)

    ax_resid.scatter(ols["fitted"], ols["residuals"], s=18, color="tab:blue")
    ax_resid.scatter(ols["fitted"][flagged], ols["residuals"][flagged], s=30, color="tab:red")
    ax_resid.axhline(0, color="k", linestyle="--", linewidth=1)
    ax_resid.set_xlabel("Fitted values")
    ax_resid.set_ylabel("Residuals")
    ax_resid.set_title("Residuals vs fitted")

    (theoretical, ordered), (qq_slope, qq_intercept, _) = stats.probplot(
        ols["residuals"], dist="norm"
    )
    ax_qq.scatter(theoretical, ordered, s=18, color="tab:blue")
    ax_qq.plot(theoretical, qq_intercept + qq_slope * theoretical, "k-", linewidth=1)
    ax_qq.set_xlabel("Theoretical quantiles")
    ax_qq.set_ylabel("Ordered residuals")
    ax_qq.set_title("Normal Q-Q")

    sizes = 20 + 400 * diagnostics["cooks_distance"] / max(np.max(diagnostics["cooks_distance"]), 1e-12)
    ax_lev.scatter(diagnostics["leverage"], diagnostics["studentized_residuals"],
                   s=sizes, alpha=0.6, color="tab:blue")
    ax_lev.axvline(diagnostics["leverage_threshold"], color="tab:red", linestyle=":",
                   label="High leverage")
    ax_lev.axhline(0, color="k", linestyle="--", linewidth=1)
    ax_lev.set_xlabel("Leverage")
    ax_lev.set_ylabel("Studentized residuals")
    ax_lev.set_title("Residuals vs leverage (size ∝ Cook's D)")
    ax_lev.legend(fontsize=8)

    fig.suptitle(
        f"{species_label(fit_summary['species'])} at {fit_summary['tributary']} vs "
        f"{feature_label(fit_summary['feature'])}",
        fontsize=14,
    )
    plt.tight_layout(rect=[0, 0, 1, 0.96])
    return _finish_figure(fig, output_path, show)


def plot_correlation_matrix(
    matrix: pd.DataFrame,
    title: str = "Spearman correlation",
    output_path: Optional[str] = None,
    show: bool = False,
):
    """
    Annotated heatmap of a tributary correlation matrix.

    Returns:
        matplotlib.figure.Figure: The figure object for the plot.
    """
    fig, ax = plt.subplots(figsize=(1.6 * len(matrix.columns) + 2.5, 1.4 * len(matrix.index) + 1.5))
    image = ax.imshow(matrix.to_numpy(dtype=float), vmin=-1, vmax=1, cmap="RdBu_r")
    ax.set_xticks(range(len(matrix.columns)))
    ax.set_xticklabels(matrix.columns, rotation=45, ha="right")
    ax.set_yticks(range(len(matrix.index)))
    ax.set_yticklabels(matrix.index)

    for i in range(len(matrix.index)):
        for j in range(len(matrix.columns)):
            value = matrix.iat[i, j]
            text = "n/a" if pd.isna(value) else f"{value:.2f}"
            ax.text(j, i, text, ha="center", va="center", fontsize=10)

    fig.colorbar(image, ax=ax, fraction=0.046, pad=0.04)
    ax.set_title(title, fontsize=13)
    plt.tight_layout()
    return _finish_figure(fig, output_path, show)
