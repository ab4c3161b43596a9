from importlib.metadata import version, PackageNotFoundError

"""
nitroRain: tributary nitrogen concentrations versus antecedent rainfall.
"""

try:
    __version__ = version("nitroRain")
except PackageNotFoundError:
    # If the package is not installed, we don't have a version number
    __version__ = "unknown"

from .analysis import Analysis
from .correlation import (
    all_pairwise_tests,
    pairwise_correlation_test,
    rainfall_correlation_table,
    species_correlation_matrix,
)
from .data_loader import load_measurements, load_rainfall
from .fitter import (
    compute_influence_diagnostics,
    fit_log_rainfall_model,
    fit_robust_model,
    fit_with_diagnostics,
)
from .interpreter import interpret_results
from .joiner import join_rainfall
from .plotting import (
    plot_correlation_matrix,
    plot_rainfall_scatter,
    plot_regression_diagnostics,
    plot_ternary,
)
from .rainfall_features import check_rainfall_coverage, derive_rainfall_features
from .workflow import run_analysis

__all__ = [
    "Analysis",
    "run_analysis",
    "load_measurements",
    "load_rainfall",
    "derive_rainfall_features",
    "check_rainfall_coverage",
    "join_rainfall",
    "species_correlation_matrix",
    "pairwise_correlation_test",
    "all_pairwise_tests",
    "rainfall_correlation_table",
    "fit_log_rainfall_model",
    "fit_robust_model",
    "compute_influence_diagnostics",
    "fit_with_diagnostics",
    "interpret_results",
    "plot_ternary",
    "plot_rainfall_scatter",
    "plot_regression_diagnostics",
    "plot_correlation_matrix",
]
