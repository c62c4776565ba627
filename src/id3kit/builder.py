"""Single entry point that builds a tree from any supported data source."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import polars as pl

from id3kit.exceptions import UnsupportedSourceError
from id3kit.memory import Dataset, build_from_records
from id3kit.relational import build_from_relation
from id3kit.settings import BuildSettings
from id3kit.store import Connection, SerializedConnection
from id3kit.tree import DecisionTree, Leaf

__all__ = ["Source", "build"]

type Source = Dataset | tuple[Connection | SerializedConnection, str]


def build(
    objective: str,
    source: Source,
    *,
    max_branch_workers: int | None = None,
    settings: BuildSettings | None = None,
) -> Leaf | DecisionTree:
    """Build an ID3 decision tree predicting `objective`.

    Args:
        objective (str): The objective field to predict.
        source (Source): Either a dataset (a sequence of records or a Polars
            DataFrame) built in memory, or a `(connection, relation_name)` pair
            built inside the store.
        max_branch_workers (int | None): Upper bound on worker threads per node
            for relational sources; ignored for datasets.
        settings (BuildSettings | None): Builder settings for relational sources.

    Returns:
        Leaf | DecisionTree: The root of the tree; a single `Leaf` when the
            objective is already pure.

    Raises:
        UnsupportedSourceError: If `source` is neither a dataset nor a connection pair.

    Examples:
        >>> records = [
        ...     {"outlook": "sunny", "windy": "true", "play": "no"},
        ...     {"outlook": "overcast", "windy": "true", "play": "yes"},
        ... ]
        >>> build("play", records).search({"outlook": "overcast", "windy": "false"})
        'yes'
    """
    if isinstance(source, pl.DataFrame):
        return build_from_records(objective, source)
    if _is_relation_source(source):
        connection, relation = source  # type: ignore[misc]
        return build_from_relation(
            objective,
            connection,
            relation,
            max_branch_workers=max_branch_workers,
            settings=settings,
        )
    if isinstance(source, Sequence) and not isinstance(source, (str, bytes)):
        if all(isinstance(record, Mapping) for record in source):
            return build_from_records(objective, source)
    raise UnsupportedSourceError(
        f"Unsupported data source {type(source).__name__}: expected records, a polars DataFrame, "
        "or a (connection, relation_name) pair"
    )


def _is_relation_source(source: object) -> bool:
    """Return True for a `(connection, relation_name)` pair.

    Args:
        source (object): The candidate source.

    Returns:
        bool: Whether `source` names a relation in a store.
    """
    return (
        isinstance(source, tuple)
        and len(source) == 2  # noqa: PLR2004
        and isinstance(source[0], (Connection, SerializedConnection))
        and isinstance(source[1], str)
    )
