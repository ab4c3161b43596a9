import itertools
import logging
import warnings
from typing import Dict, Iterable, Optional

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.multitest import fdrcorrection

from .data_loader import DATE_COL, SITE_COL, SPECIES

logger = logging.getLogger(__name__)

# Below this many paired observations a rank correlation is not reported.
MIN_PAIRED_OBSERVATIONS = 3


def _check_columns(joined: pd.DataFrame, columns: Iterable[str]):
    missing = [c for c in [DATE_COL, SITE_COL, *columns] if c not in joined.columns]
    if missing:
        raise ValueError(f"Required column(s) not found: {missing}")


def pivot_species(joined: pd.DataFrame, species: str) -> pd.DataFrame:
    """
    Reshapes one species into a ``date x tributary`` table.

    Replicate samples of a tributary on the same date are averaged.
    """
    _check_columns(joined, [species])
    return joined.pivot_table(
        index=DATE_COL, columns=SITE_COL, values=species, aggfunc="mean"
    ).sort_index(axis=1)


def species_correlation_matrix(
    joined: pd.DataFrame,
    species: str,
    method: str = "spearman",
    min_periods: int = MIN_PAIRED_OBSERVATIONS,
) -> pd.DataFrame:
    """
    Rank correlation of one nitrogen species between tributaries.

    Each pair of tributaries is correlated over the dates on which both were
    sampled (pairwise-complete observations), so a missing value only removes
    that date from the pairs involving it.

    Args:
        joined (pd.DataFrame): Measurements with ``date`` and ``tributary``.
        species (str): The species column to correlate.
        method (str): ``'spearman'`` (default) or ``'kendall'``.
        min_periods (int): Minimum number of paired dates per coefficient.

    Returns:
        pd.DataFrame: A symmetric ``tributary x tributary`` matrix. The
        diagonal is 1 for every tributary with at least two distinct values,
        even when it has fewer than ``min_periods`` of them; off-diagonal
        pairs below ``min_periods`` are NaN. A constant tributary has a NaN
        diagonal.
    """
    if method not in ["spearman", "kendall"]:
        raise ValueError("`method` must be 'spearman' or 'kendall'.")

    table = pivot_species(joined, species)
    matrix = table.corr(method=method, min_periods=min_periods)

    values = matrix.to_numpy(copy=True)
    values = (values + values.T) / 2.0
    # A site correlates perfectly with itself whenever its ranks vary
    varies = table.nunique().to_numpy() >= 2
    diagonal = np.where(varies, 1.0, np.nan)
    np.fill_diagonal(values, diagonal)

    matrix = pd.DataFrame(values, index=matrix.index, columns=matrix.columns)
    matrix.index.name = SITE_COL
    matrix.columns.name = SITE_COL
    return matrix


def pairwise_correlation_test(
    joined: pd.DataFrame,
    species: str,
    site_a: str,
    site_b: str,
    method: str = "kendall",
) -> Dict:
    """
    Tests the rank correlation of one species between two tributaries.

    Returns:
        dict: ``statistic`` (tau or rho), two-sided ``p_value``, the number
        of paired dates ``n``, and the ``method``. With fewer than
        ``MIN_PAIRED_OBSERVATIONS`` pairs the statistic and p-value are NaN.
    """
    if method not in ["kendall", "spearman"]:
        raise ValueError("`method` must be 'kendall' or 'spearman'.")

    table = pivot_species(joined, species)
    for site in (site_a, site_b):
        if site not in table.columns:
            raise ValueError(f"Tributary '{site}' has no '{species}' values.")

    pairs = table[[site_a, site_b]].dropna()
    n = len(pairs)
    result = {
        "species": species,
        "site_a": site_a,
        "site_b": site_b,
        "method": method,
        "n": n,
        "statistic": np.nan,
        "p_value": np.nan,
    }
    if n < MIN_PAIRED_OBSERVATIONS:
        warnings.warn(
            f"Only {n} paired date(s) for '{species}' between '{site_a}' and "
            f"'{site_b}'; correlation not computed.",
            UserWarning,
        )
        return result

    if method == "kendall":
        res = stats.kendalltau(pairs[site_a], pairs[site_b])
    else:
        res = stats.spearmanr(pairs[site_a], pairs[site_b])
    result["statistic"] = float(res[0])
    result["p_value"] = float(res[1])
    return result


def _add_fdr_column(table: pd.DataFrame, alpha: float) -> pd.DataFrame:
    table["p_value_fdr"] = np.nan
    table["significant_fdr"] = False
    finite = np.isfinite(table["p_value"].to_numpy(dtype=float))
    if finite.any():
        rejected, adjusted = fdrcorrection(
            table.loc[finite, "p_value"].to_numpy(dtype=float), alpha=alpha
        )
        table.loc[finite, "p_value_fdr"] = adjusted
        table.loc[finite, "significant_fdr"] = rejected
    return table


def all_pairwise_tests(
    joined: pd.DataFrame,
    species: Optional[Iterable[str]] = None,
    method: str = "kendall",
    alpha: float = 0.05,
) -> pd.DataFrame:
    """
    Runs :func:`pairwise_correlation_test` for every pair of tributaries and
    every species, with Benjamini-Hochberg adjusted p-values.
    """
    species = list(SPECIES if species is None else species)
    _check_columns(joined, species)
    sites = sorted(joined[SITE_COL].dropna().unique())

    rows = []
    for sp in species:
        table = pivot_species(joined, sp)
        for site_a, site_b in itertools.combinations(sites, 2):
            if site_a not in table.columns or site_b not in table.columns:
                logger.info(f"Skipping '{sp}' for {site_a}/{site_b}: a site has no values.")
                continue
            rows.append(pairwise_correlation_test(joined, sp, site_a, site_b, method=method))

    columns = ["species", "site_a", "site_b", "method", "n", "statistic", "p_value"]
    table = pd.DataFrame(rows, columns=columns)
    return _add_fdr_column(table, alpha)


def rainfall_correlation_table(
    joined: pd.DataFrame,
    species: Optional[Iterable[str]] = None,
    features: Iterable[str] = ("precipitation", "lag_one", "sum_three", "sum_five"),
    alpha: float = 0.05,
) -> pd.DataFrame:
    """
    Spearman correlation of each species with each rainfall feature, computed
    separately for every tributary over pairwise-complete rows.

    Returns:
        pd.DataFrame: One row per (tributary, species, feature) with ``rho``,
        ``p_value``, ``n`` and FDR-adjusted p-values.
    """
    species = list(SPECIES if species is None else species)
    features = [f for f in features if f in joined.columns]
    if not features:
        raise ValueError("None of the requested rainfall features are in the data.")
    _check_columns(joined, species)

    rows = []
    for site, group in joined.groupby(SITE_COL, sort=True):
        for sp in species:
            for feature in features:
                pairs = group[[sp, feature]].dropna()
                n = len(pairs)
                rho, p_value = np.nan, np.nan
                if n >= MIN_PAIRED_OBSERVATIONS and pairs[sp].nunique() > 1 and pairs[feature].nunique() > 1:
                    res = stats.spearmanr(pairs[sp], pairs[feature])
                    rho, p_value = float(res[0]), float(res[1])
                rows.append(
                    {
                        SITE_COL: site,
                        "species": sp,
                        "feature": feature,
                        "n": n,
                        "rho": rho,
                        "p_value": p_value,
                    }
                )

    table = pd.DataFrame(rows, columns=[SITE_COL, "species", "feature", "n", "rho", "p_value"])
    return _add_fdr_column(table, alpha)
