"""
Antecedent rainfall features.

Each daily rainfall record gets lag terms (rainfall a fixed number of days
earlier) and trailing cumulative sums over the days *before* the record. Days
preceding the start of the series contribute zero rainfall, so early records
keep finite features instead of being truncated.
"""

import logging
import warnings
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from .data_loader import DATE_COL, PRECIP_COL

logger = logging.getLogger(__name__)

_NUMBER_WORDS = {
    1: "one",
    2: "two",
    3: "three",
    4: "four",
    5: "five",
    6: "six",
    7: "seven",
    8: "eight",
    9: "nine",
    10: "ten",
}


def lag_feature_name(days: int) -> str:
    """``lag_one``, ``lag_two``, ... falling back to ``lag_<n>``."""
    return f"lag_{_NUMBER_WORDS.get(days, days)}"


def sum_feature_name(days: int) -> str:
    """``sum_three``, ``sum_five``, ... falling back to ``sum_<n>``."""
    return f"sum_{_NUMBER_WORDS.get(days, days)}"


def _validate_offsets(offsets: Iterable[int], name: str) -> list:
    offsets = list(offsets)
    for value in offsets:
        if not isinstance(value, (int, np.integer)) or isinstance(value, bool) or value <= 0:
            raise ValueError(f"`{name}` must contain positive integers, got {value!r}.")
    return offsets


def _prepare_daily_series(rainfall: pd.DataFrame, fill_missing_days: bool) -> pd.Series:
    """Returns precipitation as a gap-free, date-indexed daily series."""
    missing_cols = [c for c in (DATE_COL, PRECIP_COL) if c not in rainfall.columns]
    if missing_cols:
        raise ValueError(f"Rainfall data is missing required columns: {missing_cols}")
    if rainfall.empty:
        raise ValueError("Rainfall data is empty.")

    df = rainfall[[DATE_COL, PRECIP_COL]].copy()
    df[DATE_COL] = pd.to_datetime(df[DATE_COL]).dt.normalize()
    df = df.sort_values(DATE_COL, kind="mergesort")

    duplicated = df[DATE_COL].duplicated(keep="first")
    if duplicated.any():
        warnings.warn(
            f"{int(duplicated.sum())} duplicate rainfall date(s) found; keeping the "
            "first record for each date.",
            UserWarning,
        )
        df = df[~duplicated]

    series = df.set_index(DATE_COL)[PRECIP_COL].astype(float)

    full_index = pd.date_range(series.index[0], series.index[-1], freq="D")
    gap_days = full_index.difference(series.index)
    if len(gap_days) > 0:
        if not fill_missing_days:
            raise ValueError(
                f"Rainfall series has {len(gap_days)} missing calendar day(s); the "
                f"first is {gap_days[0]:%Y-%m-%d}. Set `fill_missing_days=True` to "
                "treat missing days as zero rainfall."
            )
        warnings.warn(
            f"{len(gap_days)} missing calendar day(s) in the rainfall series were "
            "filled with 0 mm.",
            UserWarning,
        )
        series = series.reindex(full_index, fill_value=0.0)
        series.index.name = DATE_COL

    num_missing = int(series.isna().sum())
    if num_missing > 0:
        warnings.warn(
            f"{num_missing} missing precipitation value(s) in the rainfall series; "
            "lag and cumulative features whose window includes them are missing.",
            UserWarning,
        )
    return series


def derive_rainfall_features(
    rainfall: pd.DataFrame,
    lag_days: Iterable[int] = (1,),
    sum_windows: Iterable[int] = (3, 5),
    fill_missing_days: bool = False,
) -> pd.DataFrame:
    """
    Computes lagged and trailing cumulative rainfall for each day.

    For day ``d`` with precipitation ``p``:

    - ``lag_<n>(d) = p(d - n)``
    - ``sum_<w>(d) = p(d - 1) + ... + p(d - w)``; the current day is excluded.

    Offsets before the first day of the series contribute 0. A missing
    precipitation value inside the series stays missing: the lags and sums
    that reach it are NaN.

    Args:
        rainfall (pd.DataFrame): ``date`` and ``precipitation`` (mm), one row
            per calendar day.
        lag_days (iterable of int): Lags to compute. Defaults to ``(1,)``.
        sum_windows (iterable of int): Trailing window widths in days.
            Defaults to ``(3, 5)``.
        fill_missing_days (bool): If True, calendar days absent from the
            input are inserted with 0 mm. Otherwise a gap raises ValueError.

    Returns:
        pd.DataFrame: ``date``, ``precipitation`` and one column per feature,
        one row per day.
    """
    lag_days = _validate_offsets(lag_days, "lag_days")
    sum_windows = _validate_offsets(sum_windows, "sum_windows")

    precipitation = _prepare_daily_series(rainfall, fill_missing_days)
    features = pd.DataFrame(index=precipitation.index)
    features[PRECIP_COL] = precipitation
    for lag in lag_days:
        features[lag_feature_name(lag)] = precipitation.shift(lag, fill_value=0.0)

    # Only offsets before the series start are zero-filled; a missing day
    # inside the series makes every sum that covers it missing.
    for window in sum_windows:
        features[sum_feature_name(window)] = sum(
            precipitation.shift(k, fill_value=0.0) for k in range(1, window + 1)
        )

    logger.info(
        f"Derived {len(lag_days) + len(sum_windows)} rainfall feature(s) for "
        f"{len(features)} days."
    )
    return features.rename_axis(DATE_COL).reset_index()


def check_rainfall_coverage(
    rainfall: pd.DataFrame,
    measurement_dates,
    max_window: int = 5,
    strict: bool = False,
) -> pd.DatetimeIndex:
    """
    Finds measurement dates whose rainfall window reaches before the start of
    the rainfall series.

    The features of such dates were computed with zero-filled offsets and may
    understate antecedent rainfall. Measurement dates before the start or
    after the end of the series are not reported here; they simply have no
    rainfall match.

    Args:
        rainfall (pd.DataFrame): Rainfall with a ``date`` column.
        measurement_dates (array-like): Sample dates.
        max_window (int): Longest lag or window, in days.
        strict (bool): Raise instead of warning.

    Returns:
        pd.DatetimeIndex: The affected measurement dates (unique, sorted).
    """
    if not isinstance(max_window, (int, np.integer)) or max_window < 0:
        raise ValueError("`max_window` must be a non-negative integer.")

    series_start = pd.to_datetime(rainfall[DATE_COL]).min().normalize()
    first_complete_day = series_start + pd.Timedelta(days=int(max_window))

    dates = pd.DatetimeIndex(pd.to_datetime(measurement_dates)).normalize()
    within_edge = (dates >= series_start) & (dates < first_complete_day)
    affected = dates[within_edge].unique().sort_values()

    if len(affected) > 0:
        msg = (
            f"{len(affected)} measurement date(s) fall within {max_window} days of "
            f"the start of the rainfall series ({series_start:%Y-%m-%d}); their "
            "antecedent rainfall features assume zero rainfall before that date. "
            f"First affected date: {affected[0]:%Y-%m-%d}."
        )
        if strict:
            raise ValueError(msg)
        warnings.warn(msg, UserWarning)
    return affected
