"""Utility functions for turning Polars DataFrames into ID3 records."""

from __future__ import annotations

from collections.abc import Sequence

import polars as pl

from id3kit.exceptions import UnexpectedKeyError, UnexpectedValueError


def dataframe_to_records(df: pl.DataFrame, columns: Sequence[str] | None = None) -> list[dict[str, str]]:
    """Convert a DataFrame into a list of string-valued records.

    Every column is cast to `pl.String`, so integer or boolean codes are
    treated as categories. Null values are rejected because missing-value
    handling is not supported.

    Args:
        df (pl.DataFrame): The DataFrame to convert.
        columns (Sequence[str] | None): Optional subset of columns to keep.
            If None, all columns are kept.

    Returns:
        list[dict[str, str]]: One record per row.

    Raises:
        UnexpectedKeyError: If a requested column is missing from the DataFrame.
        UnexpectedValueError: If any kept column contains null values.

    Examples:
        >>> df = pl.DataFrame({"windy": [True, False], "play": ["no", "yes"]})
        >>> dataframe_to_records(df)
        [{'windy': 'true', 'play': 'no'}, {'windy': 'false', 'play': 'yes'}]
    """
    if columns is not None:
        _validate_columns(columns, df.columns)
        df = df.select(columns)

    null_counts = {series.name: series.null_count() for series in df.get_columns() if series.null_count()}
    if null_counts:
        raise UnexpectedValueError(f"Columns contain null values: {null_counts}")

    return df.select(pl.all().cast(pl.String)).to_dicts()


def _validate_columns(columns: Sequence[str], df_columns: Sequence[str]) -> None:
    """Validate that every requested column exists in the DataFrame.

    Args:
        columns (Sequence[str]): Column names to validate.
        df_columns (Sequence[str]): Column names present in the DataFrame.

    Raises:
        UnexpectedKeyError: For the first requested column that does not exist.
    """
    for name in columns:
        if name not in df_columns:
            raise UnexpectedKeyError(name, available_keys=list(df_columns))
