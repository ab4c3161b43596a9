import re
import warnings

import numpy as np
import pandas as pd


def handle_censored_data(
    data_series,
    strategy="drop",
    lower_multiplier=0.5,
    upper_multiplier=1.1,
    left_censor_symbol="<",
    right_censor_symbol=">",
    non_detect_symbols=None,
    decimal_separator=".",
):
    """
    Converts a column of laboratory concentrations to floats, resolving
    censored entries such as ``"<0.01"`` or ``"ND"``.

    Non-detect symbols are always converted to ``np.nan``. Values carrying a
    censor symbol are replaced according to ``strategy``:

    - ``'drop'``: replaced with NaN.
    - ``'use_detection_limit'``: replaced with the reported limit.
    - ``'multiplier'``: the limit times ``lower_multiplier`` (left-censored)
      or ``upper_multiplier`` (right-censored).

    Args:
        data_series (pd.Series or array-like): The raw concentration column.
        strategy (str): How censored values are substituted.
        lower_multiplier (float): Factor applied to left-censored limits.
        upper_multiplier (float): Factor applied to right-censored limits.
        left_censor_symbol (str): Symbol marking a below-limit value.
        right_censor_symbol (str): Symbol marking an above-limit value.
        non_detect_symbols (list of str, optional): Strings treated as
            non-detects. Defaults to ``["ND", "non-detect", "BDL"]``.
        decimal_separator (str): ``'.'`` or ``','``.

    Returns:
        np.ndarray: Float array, NaN where no numeric value could be resolved.
    """
    if not isinstance(data_series, pd.Series):
        series = pd.Series(data_series).copy()
    else:
        series = data_series.copy()

    if pd.api.types.is_numeric_dtype(series):
        return series.to_numpy(dtype=float)

    if strategy not in ["drop", "use_detection_limit", "multiplier"]:
        raise ValueError(
            "Invalid censor strategy. Choose from "
            "['drop', 'use_detection_limit', 'multiplier']"
        )
    if decimal_separator not in [".", ","]:
        raise ValueError("`decimal_separator` must be either '.' or ','.")
    if non_detect_symbols is None:
        non_detect_symbols = ["ND", "non-detect", "BDL"]

    thousands_separator = "," if decimal_separator == "." else "."
    col_name = series.name if series.name is not None else "concentration"

    def _to_float(text):
        cleaned = text.replace(thousands_separator, "").replace(decimal_separator, ".")
        return float(cleaned)

    str_series = series.astype(str).str.strip()
    values = np.full(len(series), np.nan)
    num_censored = 0

    if non_detect_symbols:
        nd_pattern = "|".join(map(re.escape, non_detect_symbols))
        nd_mask = str_series.str.fullmatch(nd_pattern, case=False, na=False).to_numpy()
    else:
        nd_mask = np.zeros(len(series), dtype=bool)
    num_censored += int(nd_mask.sum())

    pattern = re.compile(
        f"^({re.escape(left_censor_symbol)}|{re.escape(right_censor_symbol)})"
        r"\s*([0-9.,]+(?:[eE][+-]?[0-9]+)?)\s*.*$"
    )
    unresolved = []

    for i, (raw, text) in enumerate(zip(series.to_numpy(), str_series.to_numpy())):
        if nd_mask[i] or pd.isna(raw):
            continue
        if isinstance(raw, (int, float, np.integer, np.floating)):
            values[i] = float(raw)
            continue
        match = pattern.match(text)
        if match:
            num_censored += 1
            limit = _to_float(match.group(2))
            if strategy == "use_detection_limit":
                values[i] = limit
            elif strategy == "multiplier":
                if match.group(1) == left_censor_symbol:
                    values[i] = limit * lower_multiplier
                else:
                    values[i] = limit * upper_multiplier
            continue
        try:
            values[i] = _to_float(text)
        except ValueError:
            unresolved.append(raw)

    if unresolved:
        warnings.warn(
            f"{len(unresolved)} non-numeric value(s) in '{col_name}' were "
            f"converted to NaN. Examples: {unresolved[:5]}",
            UserWarning,
        )
    if num_censored > 0:
        warnings.warn(
            f"{num_censored} censored or non-detect value(s) resolved in "
            f"'{col_name}' using strategy '{strategy}'.",
            UserWarning,
        )

    return values


def derive_organic_nitrogen(total_nitrogen, nitrate, ammonium):
    """
    Organic nitrogen by difference: TN - NO3 - NH4.

    Negative differences (analytical noise when the inorganic species make up
    nearly all of TN) are set to NaN.
    """
    total_nitrogen = np.asarray(total_nitrogen, dtype=float)
    nitrate = np.asarray(nitrate, dtype=float)
    ammonium = np.asarray(ammonium, dtype=float)

    organic = total_nitrogen - nitrate - ammonium
    negative_mask = organic < 0
    if np.any(negative_mask):
        warnings.warn(
            f"{int(np.sum(negative_mask))} derived organic nitrogen value(s) were "
            "negative (nitrate + ammonium exceeds total nitrogen) and were set "
            "to NaN.",
            UserWarning,
        )
        organic = np.where(negative_mask, np.nan, organic)
    return organic


def log_transform(values):
    """Natural log of concentrations. Non-positive values become NaN."""
    values = np.asarray(values, dtype=float)
    with np.errstate(invalid="ignore", divide="ignore"):
        transformed = np.log(values)
    transformed[~(values > 0)] = np.nan
    return transformed


def log1p_transform(values):
    """``log(1 + x)`` for rainfall amounts, which are frequently zero."""
    values = np.asarray(values, dtype=float)
    with np.errstate(invalid="ignore", divide="ignore"):
        transformed = np.log1p(values)
    transformed[values < 0] = np.nan
    return transformed


def ternary_fractions(
    df: pd.DataFrame,
    components=("nitrate", "ammonium", "organic_nitrogen"),
) -> pd.DataFrame:
    """
    Normalizes three nitrogen species to fractions of their sum.

    Rows with a missing component or a zero total are NaN in every fraction,
    so each complete row sums to 1.
    """
    missing = [c for c in components if c not in df.columns]
    if missing:
        raise ValueError(f"Columns required for ternary fractions not found: {missing}")

    parts = df[list(components)].astype(float)
    total = parts.sum(axis=1, skipna=False)
    valid = total > 0
    fractions = parts.div(total.where(valid), axis=0)
    return fractions
