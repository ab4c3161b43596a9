import logging
from typing import List, Optional

import pandas as pd

from .data_loader import DATE_COL

logger = logging.getLogger(__name__)


def join_rainfall(
    measurements: pd.DataFrame,
    features: pd.DataFrame,
    feature_cols: Optional[List[str]] = None,
) -> pd.DataFrame:
    """
    Attaches rainfall features to each measurement by exact date lookup.

    The feature table is indexed by date and looked up with the measurement
    dates, so several tributaries sampled on the same day share one rainfall
    row. Dates with no rainfall record get NaN features; the measurement row
    is always kept. There is no interpolation or nearest-date matching.

    Args:
        measurements (pd.DataFrame): Measurements with a ``date`` column.
        features (pd.DataFrame): Rainfall features with a unique ``date``
            column.
        feature_cols (list of str, optional): Feature columns to attach.
            Defaults to every column except ``date``.

    Returns:
        pd.DataFrame: The measurements, in their original order, with the
        feature columns appended.
    """
    for name, df in (("measurements", measurements), ("features", features)):
        if DATE_COL not in df.columns:
            raise ValueError(f"The {name} table has no '{DATE_COL}' column.")

    feature_dates = pd.to_datetime(features[DATE_COL]).dt.normalize()
    if feature_dates.duplicated().any():
        first_duplicate = feature_dates[feature_dates.duplicated()].iloc[0]
        raise ValueError(
            "Rainfall features must have one row per date; found a duplicate "
            f"for {first_duplicate:%Y-%m-%d}."
        )

    lookup = features.drop(columns=[DATE_COL]).set_index(pd.DatetimeIndex(feature_dates))
    if feature_cols is None:
        feature_cols = list(lookup.columns)
    missing = [c for c in feature_cols if c not in lookup.columns]
    if missing:
        raise ValueError(f"Feature columns not found in the rainfall features: {missing}")
    clashes = [c for c in feature_cols if c in measurements.columns]
    if clashes:
        raise ValueError(f"Measurement table already has column(s) {clashes}.")

    measurement_dates = pd.DatetimeIndex(pd.to_datetime(measurements[DATE_COL])).normalize()
    matched = lookup[feature_cols].reindex(measurement_dates)

    joined = measurements.copy()
    for col in feature_cols:
        joined[col] = matched[col].to_numpy()

    is_unmatched = ~measurement_dates.isin(lookup.index)
    num_unmatched = int(is_unmatched.sum())
    if num_unmatched > 0:
        logger.info(
            f"{num_unmatched} of {len(joined)} measurement(s) have no rainfall record "
            "for their date; their rainfall features are missing."
        )
    return joined
