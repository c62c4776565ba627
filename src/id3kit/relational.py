"""ID3 induction over a relation in an external store.

Partitions are never copied out of the store. Each branch is materialized as
a view that projects the parent's remaining columns filtered to one value of
the chosen attribute, and all counting happens in grouped aggregate queries.

Sibling branches are built concurrently, one worker thread per branch, while
every statement goes through the single lock held by `SerializedConnection`.
A node is composed only after all of its branch futures have completed, and
the first branch failure is re-raised from that join. Every view a builder
creates is recorded in its view registry and dropped when the builder is
closed, whether or not the build succeeded.
"""

from __future__ import annotations

import itertools
import threading
import time
from collections import defaultdict
from collections.abc import Iterator, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, ClassVar, Final, Self

from loguru import logger
from pydantic import validate_call

from id3kit.entropy import EvaluationSheet, conditional_entropy_from_counts, entropy_from_counts
from id3kit.exceptions import (
    DataSourceError,
    EmptyColumnsetError,
    GeneralFailureError,
    UnexpectedKeyError,
    UnexpectedValueError,
)
from id3kit.memory import MIN_CANDIDATE_ATTRIBUTES
from id3kit.settings import BuildSettings
from id3kit.sql_utils import (
    columns_sql,
    count_by_sql,
    create_view_sql,
    distinct_values_sql,
    drop_view_sql,
    first_value_sql,
    validate_identifier,
)
from id3kit.store import Connection, SerializedConnection
from id3kit.tree import Branch, DecisionTree, Leaf

if TYPE_CHECKING:
    from types import TracebackType

__all__ = ["RelationalBuilder", "build_from_relation"]

# Keeps generated view names within MySQL's 64 character identifier limit.
_VIEW_PREFIX_LENGTH: Final[int] = 32


class RelationalBuilder:
    """Builds a decision tree from a relation by recursively creating filtered views.

    The builder owns its connection wrapper and its view registry. Use it as a
    context manager, or call `close()`, so that every created view is dropped.

    Attributes:
        relation (str): The base relation holding the training rows.
        objective (str): The objective column to predict.

    Examples:
        >>> with RelationalBuilder(SQLiteConnection.open("weather.db"), "weather", "play") as builder:  # doctest: +SKIP
        ...     tree = builder.build()
    """

    _view_ids: ClassVar[Iterator[int]] = itertools.count()
    _view_id_lock: ClassVar[threading.Lock] = threading.Lock()

    @validate_call(config={"arbitrary_types_allowed": True})
    def __init__(
        self,
        connection: Connection | SerializedConnection,
        relation: str,
        objective: str,
        *,
        max_branch_workers: int | None = None,
        settings: BuildSettings | None = None,
    ) -> None:
        """Initialize the builder.

        Args:
            connection (Connection | SerializedConnection): The store connection.
                A bare `Connection` is wrapped; it must not be used elsewhere
                while the builder is alive.
            relation (str): The base relation holding the training rows.
            objective (str): The objective column to predict.
            max_branch_workers (int | None): Upper bound on worker threads per
                node. Overrides `settings.max_branch_workers` when given.
            settings (BuildSettings | None): Builder settings. Defaults to
                `BuildSettings()`, read from `ID3KIT_*` environment variables.

        Raises:
            ValueError: If `relation` is not a plain identifier or
                `max_branch_workers` is less than 1.
        """
        settings = settings or BuildSettings()
        if isinstance(connection, SerializedConnection):
            self._store = connection
        else:
            self._store = SerializedConnection(connection, log_statements=settings.log_statements)
        self.relation = validate_identifier(relation)
        self.objective = objective
        self._max_branch_workers = max_branch_workers if max_branch_workers is not None else settings.max_branch_workers
        if self._max_branch_workers is not None and self._max_branch_workers < 1:
            raise ValueError(f"max_branch_workers must be at least 1, got {self._max_branch_workers}")
        self._views: list[str] = []
        self._closed = False

    def __repr__(self) -> str:
        """Return repr(self).

        Returns:
            str: String representation of the builder.
        """
        return f"RelationalBuilder(relation={self.relation!r}, objective={self.objective!r}, views={len(self.views)})"

    @property
    def views(self) -> tuple[str, ...]:
        """tuple[str, ...]: Names of views created and not yet dropped, in creation order."""
        with self._store.lock:
            return tuple(self._views)

    def build(self) -> Leaf | DecisionTree:
        """Induce the decision tree.

        Returns:
            Leaf | DecisionTree: The root of the tree; a single `Leaf` when the
                objective column is already pure.

        Raises:
            GeneralFailureError: If the builder has been closed.
            UnexpectedKeyError: If the relation has no objective column.
            UnexpectedValueError: If a leaf value cannot be resolved (empty
                relation) or the data contains nulls.
            EmptyColumnsetError: If a partition cannot be split further despite positive entropy.
            DataSourceError: If the store reports a failure.
        """
        if self._closed:
            raise GeneralFailureError("RelationalBuilder has been closed")
        logger.info("Building decision tree from relation", relation=self.relation, objective=self.objective)
        tree = self._build_node(self.relation)
        logger.info(
            "Decision tree built",
            relation=self.relation,
            objective=self.objective,
            depth=tree.depth,
            leaves=tree.leaf_count,
            views=len(self.views),
        )
        return tree

    def evaluate(self, relation: str | None = None) -> EvaluationSheet:
        """Compute objective entropy and per-attribute information gain for a relation.

        Args:
            relation (str | None): Relation or view to evaluate. Defaults to the base relation.

        Returns:
            EvaluationSheet: Objective entropy and per-attribute information gain.

        Raises:
            UnexpectedKeyError: If the relation has no objective column.
            EmptyColumnsetError: If fewer than two attributes remain while entropy is positive.
            DataSourceError: If the store reports a failure.
        """
        relation = relation or self.relation
        return self._evaluate(relation, self._columns(relation))

    def allocate_view(self, relation: str, columns: Sequence[str], *, attribute: str, value: str) -> str:
        """Create a uniquely named view of `relation` restricted to `attribute = value`.

        The name and the registry entry are produced under the connection lock,
        so concurrent allocations never collide or lose an entry.

        Args:
            relation (str): The relation or view to filter.
            columns (Sequence[str]): Columns projected by the new view.
            attribute (str): Column to filter on.
            value (str): Value the filter column must equal.

        Returns:
            str: The new view's name.

        Raises:
            DataSourceError: If the store rejects the statement.
        """
        with self._store.lock:
            name = self._next_view_name()
            statement = create_view_sql(
                name, relation, columns, attribute=attribute, value=value, dialect=self._store.dialect
            )
            self._store.execute(statement)
            self._views.append(name)
        logger.debug("View allocated", view=name, parent=relation, attribute=attribute, value=value)
        return name

    def close(self) -> None:
        """Drop every view this builder created, most recent first.

        Drops run serially. Each drop is attempted even if an earlier one
        fails; views that could not be dropped stay registered.

        Raises:
            DataSourceError: The first drop failure, after all drops were attempted.
        """
        first_error: DataSourceError | None = None
        with self._store.lock:
            self._closed = True
            for name in reversed(list(self._views)):
                try:
                    self._store.execute(drop_view_sql(name, dialect=self._store.dialect))
                except DataSourceError as exc:
                    logger.warning("Failed to drop view", view=name, reason=str(exc))
                    first_error = first_error or exc
                else:
                    self._views.remove(name)
        if first_error is not None:
            raise first_error

    def __enter__(self) -> Self:
        """Enter context manager.

        Returns:
            Self: This builder.
        """
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context manager and drop all views.

        When the block is already failing, a cleanup failure is logged and the
        original exception keeps propagating.

        Args:
            exc_type (type[BaseException] | None): The exception type, if raised.
            exc_val (BaseException | None): The exception instance, if raised.
            exc_tb (TracebackType | None): The traceback, if raised.
        """
        if exc_val is None:
            self.close()
            return
        try:
            self.close()
        except DataSourceError as cleanup_error:
            logger.warning("View cleanup failed after build error", reason=str(cleanup_error), error=repr(exc_val))

    # ------------------------------------------------------------------
    # Recursion
    # ------------------------------------------------------------------

    def _build_node(self, relation: str) -> Branch:
        columns = self._columns(relation)
        sheet = self._evaluate(relation, columns)
        if sheet.gain <= 0.0:
            return Leaf(value=self._first_objective_value(relation))

        primary = sheet.best
        if primary is None:
            raise GeneralFailureError(f"No attribute selected although '{self.objective}' has entropy {sheet.gain}")
        values = self._distinct_values(relation, primary)
        logger.debug(
            "Splitting relation",
            relation=relation,
            attribute=primary,
            gain=sheet.distribution[primary],
            branches=len(values),
        )
        remaining = [column for column in columns if column != primary]
        branches = self._build_branches(relation, primary, values, remaining)
        return DecisionTree(attribute=primary, branches=branches)

    def _build_branches(
        self,
        relation: str,
        attribute: str,
        values: Sequence[str],
        remaining: Sequence[str],
    ) -> dict[str, Branch]:
        """Build one branch per value concurrently and join them.

        Args:
            relation (str): The relation being split.
            attribute (str): The chosen splitting attribute.
            values (Sequence[str]): Distinct values of `attribute`.
            remaining (Sequence[str]): Columns projected into each branch view.

        Returns:
            dict[str, Branch]: Branch per value, merged after all tasks finished.

        Raises:
            Exception: The failure of the first failed branch in `values` order.
        """
        workers = len(values) if self._max_branch_workers is None else min(len(values), self._max_branch_workers)
        futures: dict[str, Future[Branch]] = {}
        with ThreadPoolExecutor(max_workers=max(workers, 1), thread_name_prefix=f"id3kit-{attribute}") as executor:
            for value in values:
                futures[value] = executor.submit(self._build_branch, relation, attribute, value, remaining)

        failures = {value: error for value, future in futures.items() if (error := future.exception()) is not None}
        if failures:
            failed_value, error = next(iter(failures.items()))
            for value, other in list(failures.items())[1:]:
                logger.warning("Branch build failed", attribute=attribute, value=value, error=repr(other))
            logger.debug("Branch build failed", attribute=attribute, value=failed_value, error=repr(error))
            raise error
        return {value: future.result() for value, future in futures.items()}

    def _build_branch(self, relation: str, attribute: str, value: str, remaining: Sequence[str]) -> Branch:
        view = self.allocate_view(relation, remaining, attribute=attribute, value=value)
        return self._build_node(view)

    def _next_view_name(self) -> str:
        with RelationalBuilder._view_id_lock:
            view_id = next(RelationalBuilder._view_ids)
        return f"{self.relation[:_VIEW_PREFIX_LENGTH]}_{int(time.time())}_{view_id}"

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _evaluate(self, relation: str, columns: Sequence[str]) -> EvaluationSheet:
        if self.objective not in columns:
            raise UnexpectedKeyError(self.objective, available_keys=columns)
        objective_counts = self._count_by(relation, [self.objective])
        gain = entropy_from_counts(count for (_, count) in objective_counts)
        if gain <= 0.0:
            return EvaluationSheet(gain=0.0)

        factors = sorted(column for column in columns if column != self.objective)
        if len(factors) < MIN_CANDIDATE_ATTRIBUTES:
            raise EmptyColumnsetError(self.objective, columns=factors)

        distribution: dict[str, float] = {}
        for factor in factors:
            table: dict[str, dict[str, int]] = defaultdict(dict)
            for (factor_value, objective_value), count in self._count_by(relation, [factor, self.objective]):
                table[factor_value][objective_value] = count
            distribution[factor] = gain - conditional_entropy_from_counts(table)
        return EvaluationSheet(gain=gain, distribution=distribution)

    def _columns(self, relation: str) -> list[str]:
        return list(self._store.query(columns_sql(relation, dialect=self._store.dialect)).columns)

    def _count_by(self, relation: str, columns: Sequence[str]) -> list[tuple[tuple[str, ...], int]]:
        result = self._store.query(count_by_sql(relation, columns, dialect=self._store.dialect))
        return [
            (tuple(self._text(value, column) for value, column in zip(row[:-1], columns, strict=True)), int(row[-1]))
            for row in result.rows
        ]

    def _distinct_values(self, relation: str, column: str) -> list[str]:
        result = self._store.query(distinct_values_sql(relation, column, dialect=self._store.dialect))
        return sorted({self._text(row[0], column) for row in result.rows})

    def _first_objective_value(self, relation: str) -> str:
        result = self._store.query(first_value_sql(relation, self.objective, dialect=self._store.dialect))
        if not result.rows:
            raise UnexpectedValueError(f"Relation '{relation}' has no rows to take a '{self.objective}' value from")
        return self._text(result.rows[0][0], self.objective)

    @staticmethod
    def _text(value: Any, column: str) -> str:
        if value is None:
            raise UnexpectedValueError(f"Column '{column}' contains NULL values")
        if isinstance(value, bytes):
            return value.decode()
        return str(value)


def build_from_relation(
    objective: str,
    connection: Connection | SerializedConnection,
    relation: str,
    *,
    max_branch_workers: int | None = None,
    settings: BuildSettings | None = None,
) -> Leaf | DecisionTree:
    """Build a decision tree from a relation and drop every temporary view afterwards.

    Args:
        objective (str): The objective column to predict.
        connection (Connection | SerializedConnection): The store connection.
        relation (str): The base relation holding the training rows.
        max_branch_workers (int | None): Upper bound on worker threads per node.
        settings (BuildSettings | None): Builder settings.

    Returns:
        Leaf | DecisionTree: The root of the tree.

    Raises:
        UnexpectedKeyError: If the relation has no objective column.
        UnexpectedValueError: If a leaf value cannot be resolved or the data contains nulls.
        EmptyColumnsetError: If a partition cannot be split further despite positive entropy.
        DataSourceError: If the store reports a failure.
    """
    with RelationalBuilder(
        connection,
        relation,
        objective,
        max_branch_workers=max_branch_workers,
        settings=settings,
    ) as builder:
        return builder.build()
