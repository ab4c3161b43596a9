from .analysis import Analysis


def run_analysis(
    measurement_file,
    rainfall_file,
    output_dir,
    site_col=None,
    species_cols=None,
    date_col="date",
    rain_date_col="DATE",
    precip_col="PRCP",
    param_name="Tributary nitrogen",
    feature="sum_five",
    correlation_method="kendall",
    robust_method="theil-sen",
    figure_formats=("png", "pdf"),
    **analysis_options,
):
    """
    High-level function to run the complete rainfall analysis in one call.

    Args:
        measurement_file (str): Path to the measurement spreadsheet or CSV.
        rainfall_file (str): Path to the daily rainfall CSV.
        output_dir (str): Directory where tables, figures and the summary
            are written.
        site_col (str, optional): Tributary column; omit for a workbook with
            one sheet per tributary.
        species_cols (dict, optional): Canonical species to source column.
        date_col (str, optional): Sample date column. Defaults to 'date'.
        rain_date_col (str, optional): Rainfall date column. Defaults to 'DATE'.
        precip_col (str, optional): Rainfall column, in tenths of mm.
            Defaults to 'PRCP'.
        param_name (str, optional): Name used in titles and file names.
        feature (str, optional): Regression predictor. Defaults to 'sum_five'.
        correlation_method (str, optional): 'kendall' or 'spearman'.
        robust_method (str, optional): 'theil-sen' or 'siegel'.
        figure_formats (tuple, optional): Figure file types to write.
        **analysis_options: Further keyword arguments for :class:`Analysis`
            (e.g. ``censor_strategy``, ``fill_missing_days``).

    Returns:
        dict: A dictionary containing all analysis results.
    """
    analysis = Analysis(
        measurement_file=measurement_file,
        rainfall_file=rainfall_file,
        date_col=date_col,
        species_cols=species_cols,
        site_col=site_col,
        rain_date_col=rain_date_col,
        precip_col=precip_col,
        param_name=param_name,
        **analysis_options,
    )
    return analysis.run_full_analysis(
        output_dir,
        feature=feature,
        correlation_method=correlation_method,
        robust_method=robust_method,
        figure_formats=figure_formats,
    )
