import logging
import os
import warnings
from typing import Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from .preprocessor import derive_organic_nitrogen, handle_censored_data

logger = logging.getLogger(__name__)

# Canonical column names shared by every stage of the pipeline.
DATE_COL = "date"
SITE_COL = "tributary"
PRECIP_COL = "precipitation"
SPECIES = ("total_nitrogen", "nitrate", "ammonium", "organic_nitrogen")

DEFAULT_SPECIES_COLUMNS = {
    "total_nitrogen": "TN",
    "nitrate": "NO3",
    "ammonium": "NH4",
    "organic_nitrogen": "ON",
}

# Daily summaries report precipitation in tenths of a millimetre.
TENTHS_MM_PER_MM = 10.0


def tenths_mm_to_mm(values):
    """Converts precipitation in tenths of a millimetre to millimetres."""
    return np.asarray(values, dtype=float) / TENTHS_MM_PER_MM


def mm_to_tenths_mm(values):
    """Inverse of :func:`tenths_mm_to_mm`, rounded back to integer tenths."""
    return np.rint(np.asarray(values, dtype=float) * TENTHS_MM_PER_MM).astype(np.int64)


def _read_tables(
    file_path: str, sheet_name: Union[int, str, List, None] = 0
) -> Dict[Optional[str], pd.DataFrame]:
    """
    Reads a CSV, JSON or Excel file into a dict of DataFrames.

    CSV and JSON files yield a single table keyed by ``None``. Excel files are
    keyed by sheet name; ``sheet_name=None`` reads every sheet.
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"The specified file was not found: {file_path}")

    _, file_extension = os.path.splitext(str(file_path))
    file_extension = file_extension.lower()
    if file_extension not in [".csv", ".xlsx", ".xls", ".json"]:
        raise ValueError(f"Unsupported file format: {file_extension}")

    try:
        if file_extension == ".csv":
            tables = {None: pd.read_csv(file_path, low_memory=False, index_col=False)}
        elif file_extension == ".json":
            tables = {None: pd.read_json(file_path)}
        else:
            loaded = pd.read_excel(file_path, sheet_name=sheet_name)
            if isinstance(loaded, dict):
                tables = {str(name): df for name, df in loaded.items()}
            else:
                key = sheet_name if isinstance(sheet_name, str) else None
                tables = {key: loaded}
    except Exception as e:
        raise IOError(f"Failed to read the file at {file_path}. Reason: {e}")

    if all(df.empty for df in tables.values()):
        raise ValueError(f"The provided data file is empty: {file_path}")
    return tables


def _column_map(df: pd.DataFrame) -> Dict[str, str]:
    """Maps lower-cased column names to the original names."""
    lower_cols = pd.Series([str(c).lower() for c in df.columns])
    if lower_cols.duplicated().any():
        counts = lower_cols.value_counts()
        duplicates = counts[counts > 1].index.tolist()
        raise ValueError(
            "Duplicate column names found (case-insensitive): "
            f"{duplicates}. Please rename columns to be unique."
        )
    return {str(col).lower(): col for col in df.columns}


def _resolve_column(col_map: Dict[str, str], name: str, role: str) -> str:
    if name is None or name.lower() not in col_map:
        raise ValueError(f"{role} column '{name}' not found in the data.")
    return col_map[name.lower()]


def _parse_dates(raw: pd.Series, col_name: str, date_format: Optional[str]) -> pd.Series:
    """Parses a date column and truncates timestamps to calendar days."""
    if raw.isnull().all():
        raise ValueError(f"The date column '{col_name}' contains no valid data.")

    original_na = raw.isna().sum()
    parsed = pd.to_datetime(raw, format=date_format, errors="coerce")
    coerced_na = parsed.isna().sum()
    if coerced_na > original_na:
        msg = (
            f"{coerced_na - original_na} value(s) in the date column '{col_name}' "
            "could not be parsed as dates."
        )
        if date_format:
            msg += f" Please check that the format string '{date_format}' is correct."
        raise ValueError(msg)
    return parsed.dt.normalize()


def process_measurements_dataframe(
    df: pd.DataFrame,
    date_col: str = DATE_COL,
    species_cols: Optional[Dict[str, str]] = None,
    site_col: Optional[str] = None,
    site_name: Optional[str] = None,
    tributaries: Optional[Iterable[str]] = None,
    date_format: Optional[str] = None,
    censor_strategy: str = "drop",
    censor_options: Optional[Dict] = None,
) -> pd.DataFrame:
    """
    Validates a table of nitrogen measurements and returns it in canonical
    form: ``date``, ``tributary`` and the four species columns in mg/L.

    Args:
        df (pd.DataFrame): Raw measurement table.
        date_col (str): Name of the sample date column.
        species_cols (dict, optional): Maps each canonical species name to
            the source column. Defaults to ``DEFAULT_SPECIES_COLUMNS``. The
            organic nitrogen column is optional and is derived by difference
            when absent.
        site_col (str, optional): Column holding the tributary name.
        site_name (str, optional): Tributary name for a single-site table.
            Exactly one of ``site_col`` and ``site_name`` must be given.
        tributaries (iterable of str, optional): The allowed site names.
        date_format (str, optional): ``strftime`` format of the date column.
        censor_strategy (str): Strategy for censored values, see
            :func:`~nitroRain.preprocessor.handle_censored_data`.
        censor_options (dict, optional): Extra censoring options.

    Returns:
        pd.DataFrame: Measurements sorted by date and tributary.
    """
    if (site_col is None) == (site_name is None):
        raise ValueError("Provide exactly one of `site_col` or `site_name`.")
    if df.empty:
        raise ValueError("The provided measurement table is empty.")
    if species_cols is None:
        species_cols = DEFAULT_SPECIES_COLUMNS
    if censor_options is None:
        censor_options = {}

    unknown_species = set(species_cols) - set(SPECIES)
    if unknown_species:
        raise ValueError(
            f"Unknown species {sorted(unknown_species)}. Choose from {list(SPECIES)}."
        )

    col_map = _column_map(df)
    date_orig = _resolve_column(col_map, date_col, "Date")
    clean_df = pd.DataFrame({DATE_COL: _parse_dates(df[date_orig], date_col, date_format)})

    if site_col is not None:
        site_orig = _resolve_column(col_map, site_col, "Site")
        clean_df[SITE_COL] = df[site_orig].astype("string").str.strip().to_numpy()
    else:
        clean_df[SITE_COL] = str(site_name)

    for species in SPECIES:
        source = species_cols.get(species)
        if source is None or source.lower() not in col_map:
            if species == "organic_nitrogen":
                continue
            raise ValueError(f"Column '{source}' for species '{species}' not found in the data.")

        raw = df[col_map[source.lower()]]
        raw = raw.rename(species)
        values = handle_censored_data(raw, strategy=censor_strategy, **censor_options)
        negative_mask = values < 0
        if np.any(negative_mask):
            warnings.warn(
                f"{int(np.sum(negative_mask))} negative concentration(s) in "
                f"'{source}' were set to NaN.",
                UserWarning,
            )
            values = np.where(negative_mask, np.nan, values)
        clean_df[species] = values

    if "organic_nitrogen" not in clean_df.columns:
        logger.info("No organic nitrogen column found; deriving it as TN - NO3 - NH4.")
        clean_df["organic_nitrogen"] = derive_organic_nitrogen(
            clean_df["total_nitrogen"], clean_df["nitrate"], clean_df["ammonium"]
        )

    initial_rows = len(clean_df)
    clean_df = clean_df.dropna(subset=[DATE_COL, SITE_COL])
    if len(clean_df) < initial_rows:
        warnings.warn(
            f"{initial_rows - len(clean_df)} rows were dropped due to a missing "
            "date or tributary.",
            UserWarning,
        )
    if clean_df.empty:
        raise ValueError("No valid measurements remain after removing incomplete rows.")

    if tributaries is not None:
        allowed = set(tributaries)
        unexpected = sorted(set(clean_df[SITE_COL]) - allowed)
        if unexpected:
            raise ValueError(
                f"Unknown tributary name(s) {unexpected}. Expected one of {sorted(allowed)}."
            )

    clean_df[SITE_COL] = clean_df[SITE_COL].astype(object)
    clean_df = clean_df.sort_values([DATE_COL, SITE_COL], kind="mergesort")
    return clean_df[[DATE_COL, SITE_COL, *SPECIES]].reset_index(drop=True)


def load_measurements(
    file_path: str,
    date_col: str = DATE_COL,
    species_cols: Optional[Dict[str, str]] = None,
    site_col: Optional[str] = None,
    sheet_name: Union[int, str, List, None] = None,
    tributaries: Optional[Iterable[str]] = None,
    date_format: Optional[str] = None,
    censor_strategy: str = "drop",
    censor_options: Optional[Dict] = None,
) -> pd.DataFrame:
    """
    Loads nitrogen measurements from a spreadsheet, CSV or JSON file.

    Two layouts are supported. A long table names the site of each row in
    ``site_col``. Without ``site_col`` the file must be a workbook holding one
    sheet per tributary, each with the date and concentration columns; the
    sheet name is used as the tributary name.

    Returns:
        pd.DataFrame: Canonical measurements, see
        :func:`process_measurements_dataframe`.
    """
    if site_col is None:
        _, file_extension = os.path.splitext(str(file_path))
        if file_extension.lower() not in [".xlsx", ".xls"]:
            raise ValueError(
                "`site_col` is required unless the measurements are a workbook "
                "with one sheet per tributary."
            )
        tables = _read_tables(file_path, sheet_name=sheet_name)
    else:
        tables = _read_tables(file_path, sheet_name=0 if sheet_name is None else sheet_name)

    frames = []
    for name, df in tables.items():
        if df.empty:
            logger.info(f"Skipping empty sheet '{name}'.")
            continue
        if site_col is None and name is None:
            raise ValueError(
                "Cannot infer the tributary name: pass `sheet_name` as a sheet "
                "name (or None for all sheets), or set `site_col`."
            )
        frames.append(
            process_measurements_dataframe(
                df,
                date_col=date_col,
                species_cols=species_cols,
                site_col=site_col,
                site_name=name if site_col is None else None,
                tributaries=tributaries,
                date_format=date_format,
                censor_strategy=censor_strategy,
                censor_options=censor_options,
            )
        )

    measurements = pd.concat(frames, ignore_index=True)
    measurements = measurements.sort_values([DATE_COL, SITE_COL], kind="mergesort")
    measurements = measurements.reset_index(drop=True)
    logger.info(
        f"Loaded {len(measurements)} measurements for "
        f"{measurements[SITE_COL].nunique()} tributaries from {file_path}."
    )
    return measurements


def process_rainfall_dataframe(
    df: pd.DataFrame,
    date_col: str = "DATE",
    precip_col: str = "PRCP",
    units: str = "tenths_mm",
    date_format: Optional[str] = None,
) -> pd.DataFrame:
    """
    Validates a daily rainfall table and returns ``date`` and
    ``precipitation`` (mm), sorted by date. Other columns are ignored.

    Args:
        df (pd.DataFrame): Raw rainfall table.
        date_col (str): Name of the date column.
        precip_col (str): Name of the precipitation column.
        units (str): ``'tenths_mm'`` (divided by 10) or ``'mm'``.
        date_format (str, optional): ``strftime`` format of the date column.
    """
    if units not in ["tenths_mm", "mm"]:
        raise ValueError("Invalid units. Choose from 'tenths_mm' or 'mm'.")
    if df.empty:
        raise ValueError("The provided rainfall table is empty.")

    col_map = _column_map(df)
    date_orig = _resolve_column(col_map, date_col, "Date")
    precip_orig = _resolve_column(col_map, precip_col, "Precipitation")

    dates = _parse_dates(df[date_orig], date_col, date_format)

    original_na = df[precip_orig].isna().sum()
    precip = pd.to_numeric(df[precip_orig], errors="coerce")
    coerced_na = precip.isna().sum()
    if coerced_na > original_na:
        warnings.warn(
            f"{coerced_na - original_na} value(s) in the precipitation column "
            f"'{precip_col}' could not be converted to a numeric type and were set to NaN.",
            UserWarning,
        )
    if (precip.dropna() < 0).any():
        raise ValueError(f"The precipitation column '{precip_col}' contains negative values.")

    values = precip.to_numpy(dtype=float)
    if units == "tenths_mm":
        values = tenths_mm_to_mm(values)

    clean_df = pd.DataFrame({DATE_COL: dates.to_numpy(), PRECIP_COL: values})
    initial_rows = len(clean_df)
    clean_df = clean_df.dropna(subset=[DATE_COL])
    if len(clean_df) < initial_rows:
        warnings.warn(
            f"{initial_rows - len(clean_df)} rainfall rows were dropped due to a missing date.",
            UserWarning,
        )
    if clean_df.empty:
        raise ValueError("No valid rainfall records remain after removing rows without a date.")

    return clean_df.sort_values(DATE_COL, kind="mergesort").reset_index(drop=True)


def load_rainfall(
    file_path: str,
    date_col: str = "DATE",
    precip_col: str = "PRCP",
    units: str = "tenths_mm",
    date_format: Optional[str] = None,
) -> pd.DataFrame:
    """
    Loads a daily rainfall file (typically a station daily-summary CSV with
    ``DATE`` and ``PRCP`` in tenths of a millimetre).

    Returns:
        pd.DataFrame: ``date`` and ``precipitation`` in mm, sorted by date.
    """
    tables = _read_tables(file_path)
    df = next(iter(tables.values()))
    rainfall = process_rainfall_dataframe(
        df, date_col=date_col, precip_col=precip_col, units=units, date_format=date_format
    )
    logger.info(
        f"Loaded {len(rainfall)} rainfall records "
        f"({rainfall[DATE_COL].min():%Y-%m-%d} to {rainfall[DATE_COL].max():%Y-%m-%d}) "
        f"from {file_path}."
    )
    return rainfall
