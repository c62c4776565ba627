"""SQL statement construction for the relational builder.

Every statement is assembled from sqlglot expressions and rendered for the
store's dialect, so identifiers are always quoted and string values are
always emitted as escaped literals. Relation names are additionally checked
against a strict identifier pattern before use.

Columns are grouped, listed and filtered through their text form, so an
integer-coded column splits and filters the same way its string values do in
memory. MySQL compares the binary form because its default collations are
case-insensitive.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Final

from sqlglot import exp

__all__ = [
    "IDENTIFIER_PATTERN",
    "columns_sql",
    "count_by_sql",
    "create_view_sql",
    "distinct_values_sql",
    "drop_view_sql",
    "first_value_sql",
    "quote_identifier",
    "validate_identifier",
]

# Letters, digits and underscores, not starting with a digit, at most 64 characters (MySQL's limit).
IDENTIFIER_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,63}$")

# Cast target per dialect for value comparisons; dialects not listed use TEXT.
_TEXT_CAST_TYPES: Final[dict[str, str]] = {"mysql": "binary"}


def validate_identifier(name: str) -> str:
    """Validate that a relation name is a plain SQL identifier.

    Args:
        name (str): The identifier to validate.

    Returns:
        str: The validated identifier.

    Raises:
        ValueError: If the name does not match `IDENTIFIER_PATTERN`.

    Examples:
        >>> validate_identifier("weather")
        'weather'
    """
    if not IDENTIFIER_PATTERN.match(name):
        msg = f"Relation name must match {IDENTIFIER_PATTERN.pattern!r}, got: {name!r}"
        raise ValueError(msg)
    return name


def quote_identifier(name: str, *, dialect: str) -> str:
    """Render a quoted identifier for a dialect.

    Args:
        name (str): The identifier.
        dialect (str): sqlglot dialect name, e.g. "sqlite" or "mysql".

    Returns:
        str: The quoted identifier.

    Examples:
        >>> quote_identifier("play", dialect="sqlite")
        '"play"'
        >>> quote_identifier("play", dialect="mysql")
        '`play`'
    """
    return exp.to_identifier(name, quoted=True).sql(dialect=dialect)


def columns_sql(relation: str, *, dialect: str) -> str:
    """Statement returning no rows but exposing the relation's column names.

    Args:
        relation (str): Relation to introspect.
        dialect (str): sqlglot dialect name.

    Returns:
        str: `SELECT * FROM relation LIMIT 0`.
    """
    return exp.select(exp.Star()).from_(_table(relation)).limit(0).sql(dialect=dialect)


def count_by_sql(relation: str, columns: Sequence[str], *, dialect: str) -> str:
    """Grouped row count over one or more columns.

    Args:
        relation (str): Relation to aggregate.
        columns (Sequence[str]): Grouping columns, in output order.
        dialect (str): sqlglot dialect name.

    Returns:
        str: `SELECT CAST(c1 AS TEXT), ..., COUNT(*) FROM relation GROUP BY CAST(c1 AS TEXT), ...`.

    Examples:
        >>> count_by_sql("weather", ["play"], dialect="sqlite")
        'SELECT CAST("play" AS TEXT), COUNT(*) FROM "weather" GROUP BY CAST("play" AS TEXT)'
    """
    if not columns:
        raise ValueError("count_by_sql requires at least one grouping column")
    select = exp.select(*(_text_of(name, dialect) for name in columns), exp.Count(this=exp.Star()))
    grouped = select.from_(_table(relation)).group_by(*(_text_of(name, dialect) for name in columns))
    return grouped.sql(dialect=dialect)


def first_value_sql(relation: str, column: str, *, dialect: str) -> str:
    """Statement fetching one column of the relation's first row.

    Args:
        relation (str): Relation to read.
        column (str): Column to read.
        dialect (str): sqlglot dialect name.

    Returns:
        str: `SELECT CAST(column AS TEXT) FROM relation LIMIT 1`.
    """
    return exp.select(_text_of(column, dialect)).from_(_table(relation)).limit(1).sql(dialect=dialect)


def distinct_values_sql(relation: str, column: str, *, dialect: str) -> str:
    """Statement listing the distinct values of one column.

    Args:
        relation (str): Relation to read.
        column (str): Column to enumerate.
        dialect (str): sqlglot dialect name.

    Returns:
        str: `SELECT DISTINCT CAST(column AS TEXT) FROM relation ORDER BY CAST(column AS TEXT)`.
    """
    text = _text_of(column, dialect)
    select = exp.select(text).distinct().from_(_table(relation)).order_by(text.copy())
    return select.sql(dialect=dialect)


def create_view_sql(
    name: str,
    relation: str,
    columns: Sequence[str],
    *,
    attribute: str,
    value: str,
    dialect: str,
) -> str:
    """Statement creating a view over the rows of `relation` where `attribute = value`.

    Args:
        name (str): Name of the new view.
        relation (str): Relation the view selects from.
        columns (Sequence[str]): Columns projected by the view.
        attribute (str): Column to filter on.
        value (str): Value the filter column must equal.
        dialect (str): sqlglot dialect name.

    Returns:
        str: `CREATE VIEW name AS SELECT columns FROM relation WHERE CAST(attribute AS TEXT) = 'value'`.
    """
    if not columns:
        raise ValueError("create_view_sql requires at least one projected column")
    condition = exp.EQ(this=_text_of(attribute, dialect), expression=exp.Literal.string(value))
    select = exp.select(*(_column(column) for column in columns)).from_(_table(relation)).where(condition)
    return f"CREATE VIEW {quote_identifier(name, dialect=dialect)} AS {select.sql(dialect=dialect)}"


def drop_view_sql(name: str, *, dialect: str) -> str:
    """Statement dropping a view if it exists.

    Args:
        name (str): View to drop.
        dialect (str): sqlglot dialect name.

    Returns:
        str: `DROP VIEW IF EXISTS name`.
    """
    return f"DROP VIEW IF EXISTS {quote_identifier(name, dialect=dialect)}"


def _column(name: str) -> exp.Column:
    """Build a quoted column reference.

    Args:
        name (str): Column name.

    Returns:
        exp.Column: The column expression.
    """
    return exp.column(name, quoted=True)


def _text_of(name: str, dialect: str) -> exp.Cast:
    """Build the comparable text form of a column for a dialect.

    Args:
        name (str): Column name.
        dialect (str): sqlglot dialect name.

    Returns:
        exp.Cast: `CAST(column AS TEXT)`, or the dialect's replacement type.
    """
    return exp.cast(_column(name), _TEXT_CAST_TYPES.get(dialect, "text"))


def _table(name: str) -> exp.Table:
    """Build a quoted table reference.

    Args:
        name (str): Relation name.

    Returns:
        exp.Table: The table expression.
    """
    return exp.table_(name, quoted=True)
