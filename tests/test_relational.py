"""Tests for relational ID3 induction over SQLite."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

import pytest
from pydantic import ValidationError
from pytest_check import check

from id3kit.exceptions import (
    DataSourceError,
    GeneralFailureError,
    UnexpectedKeyError,
    UnexpectedValueError,
)
from id3kit.memory import build_from_records
from id3kit.relational import RelationalBuilder, build_from_relation
from id3kit.settings import BuildSettings
from id3kit.store import QueryResult, SerializedConnection, SQLiteConnection
from id3kit.tree import DecisionTree, Leaf

type StatementPredicate = Callable[[str], bool]


class InstrumentedConnection:
    """Connection delegating to SQLite that can inject failures and observes concurrent access."""

    dialect = "sqlite"

    def __init__(
        self,
        inner: SQLiteConnection,
        *,
        fail_execute: StatementPredicate | None = None,
        fail_query: StatementPredicate | None = None,
        delay: float = 0.0,
    ) -> None:
        """Initialize the wrapper.

        Args:
            inner (SQLiteConnection): Connection doing the real work.
            fail_execute (StatementPredicate | None): Statements for which `execute` reports failure.
            fail_query (StatementPredicate | None): Statements for which `query` reports failure.
            delay (float): Seconds each call stays "in use" to widen race windows.
        """
        self._inner = inner
        self._fail_execute = fail_execute
        self._fail_query = fail_query
        self._delay = delay
        self._error = ""
        self._guard = threading.Lock()
        self._active = 0
        self.max_active = 0
        self.thread_names: list[str] = []

    def execute(self, statement: str) -> bool:
        """Run a statement, or report the injected failure when `fail_execute` matches it.

        Args:
            statement (str): The statement to run.

        Returns:
            bool: Whether the statement succeeded.
        """
        self._enter()
        try:
            if self._fail_execute is not None and self._fail_execute(statement):
                self._error = "injected execute failure"
                return False
            ok = self._inner.execute(statement)
            self._error = self._inner.error_message()
            return ok
        finally:
            self._leave()

    def query(self, statement: str) -> QueryResult | None:
        """Run a query, or report the injected failure when `fail_query` matches it.

        Args:
            statement (str): The query to run.

        Returns:
            QueryResult | None: The rows, or None on failure.
        """
        self._enter()
        try:
            if self._fail_query is not None and self._fail_query(statement):
                self._error = "injected query failure"
                return None
            result = self._inner.query(statement)
            self._error = self._inner.error_message()
            return result
        finally:
            self._leave()

    def error_message(self) -> str:
        """Return the message of the last failed call.

        Returns:
            str: The message, or an empty string after a success.
        """
        return self._error

    def _enter(self) -> None:
        """Record a call entering the store and the thread making it."""
        with self._guard:
            self._active += 1
            self.max_active = max(self.max_active, self._active)
            self.thread_names.append(threading.current_thread().name)
        if self._delay:
            time.sleep(self._delay)

    def _leave(self) -> None:
        """Record a call leaving the store."""
        with self._guard:
            self._active -= 1


class TestBuildFromRelation:
    """Tests for successful relational builds."""

    def test_weather_tree(
        self,
        weather_connection: SQLiteConnection,
        expected_weather_tree: DecisionTree,
        view_count: Callable[[], int],
    ) -> None:
        """Given the weather relation, When built, Then the canonical tree is returned and no view remains.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
            expected_weather_tree (DecisionTree): Expected tree fixture.
            view_count (Callable[[], int]): Counts views in the store.
        """
        # Act
        tree = build_from_relation("play", weather_connection, "weather")

        # Assert
        with check:
            assert tree == expected_weather_tree
        with check:
            assert view_count() == 0

    def test_matches_in_memory_build(
        self,
        weather_connection: SQLiteConnection,
        weather_records: list[dict[str, str]],
    ) -> None:
        """The relational and in-memory builders induce equal trees from the same rows.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
            weather_records (list[dict[str, str]]): Weather dataset fixture.
        """
        assert build_from_relation("play", weather_connection, "weather") == build_from_records(
            "play", weather_records
        )

    def test_single_branch_worker(
        self,
        weather_connection: SQLiteConnection,
        expected_weather_tree: DecisionTree,
    ) -> None:
        """Capping workers at one still builds every branch.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
            expected_weather_tree (DecisionTree): Expected tree fixture.
        """
        tree = build_from_relation("play", weather_connection, "weather", max_branch_workers=1)

        assert tree == expected_weather_tree

    def test_settings_provide_worker_cap(
        self,
        weather_connection: SQLiteConnection,
        expected_weather_tree: DecisionTree,
    ) -> None:
        """A worker cap from settings is honored.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
            expected_weather_tree (DecisionTree): Expected tree fixture.
        """
        settings = BuildSettings(max_branch_workers=2, log_statements=False)

        assert build_from_relation("play", weather_connection, "weather", settings=settings) == expected_weather_tree

    def test_accepts_serialized_connection(
        self,
        weather_connection: SQLiteConnection,
        expected_weather_tree: DecisionTree,
    ) -> None:
        """An already serialized connection is used as is.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
            expected_weather_tree (DecisionTree): Expected tree fixture.
        """
        store = SerializedConnection(weather_connection)

        assert build_from_relation("play", store, "weather") == expected_weather_tree

    def test_pure_relation_builds_leaf(self, weather_connection: SQLiteConnection) -> None:
        """A relation whose objective is pure yields a single leaf without creating views.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
        """
        weather_connection.raw.execute("CREATE TABLE overcast_days AS SELECT * FROM weather WHERE outlook = 'overcast'")

        assert build_from_relation("play", weather_connection, "overcast_days") == Leaf(value="true")

    def test_integer_coded_columns(
        self,
        weather_connection: SQLiteConnection,
        view_count: Callable[[], int],
    ) -> None:
        """Given untyped columns holding integers, When built, Then branches filter on their text form.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
            view_count (Callable[[], int]): Counts views in the store.
        """
        # Arrange
        weather_connection.raw.execute("CREATE TABLE coded (a, b, play)")
        weather_connection.raw.executemany(
            "INSERT INTO coded VALUES (?, ?, ?)", [(1, 1, 0), (1, 2, 1), (2, 1, 0), (2, 2, 1)]
        )

        # Act
        tree = build_from_relation("play", weather_connection, "coded")

        # Assert
        with check:
            assert tree == DecisionTree(attribute="b", branches={"1": "0", "2": "1"})
        with check:
            assert view_count() == 0

    def test_integer_and_text_spellings_share_a_branch(self, weather_connection: SQLiteConnection) -> None:
        """An integer and its text spelling in one column fall into one branch, as they do in memory.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
        """
        rows = [(1, "x", "p", 0), ("1", "y", "p", 0), (2, "x", "p", 1), (2, "y", "q", 1)]
        weather_connection.raw.execute("CREATE TABLE mixed (a, b, c, play)")
        weather_connection.raw.executemany("INSERT INTO mixed VALUES (?, ?, ?, ?)", rows)
        records = [{"a": str(a), "b": b, "c": c, "play": str(play)} for a, b, c, play in rows]

        tree = build_from_relation("play", weather_connection, "mixed")

        with check:
            assert tree == DecisionTree(attribute="a", branches={"1": "0", "2": "1"})
        with check:
            assert tree == build_from_records("play", records)

    def test_statements_are_serialized(
        self,
        weather_connection: SQLiteConnection,
        expected_weather_tree: DecisionTree,
    ) -> None:
        """Sibling branches run on worker threads, but never touch the connection at the same time.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
            expected_weather_tree (DecisionTree): Expected tree fixture.
        """
        # Arrange
        connection = InstrumentedConnection(weather_connection, delay=0.001)

        # Act
        tree = build_from_relation("play", connection, "weather")

        # Assert
        with check:
            assert tree == expected_weather_tree
        with check:
            assert connection.max_active == 1
        with check:
            assert any(name.startswith("id3kit-outlook") for name in connection.thread_names)


class TestFailures:
    """Tests for error propagation and view cleanup on failure."""

    def test_create_view_failure_propagates_and_cleans_up(
        self,
        weather_connection: SQLiteConnection,
        view_count: Callable[[], int],
    ) -> None:
        """Given a store rejecting one branch view, When built, Then DataSourceError is raised and no view remains.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
            view_count (Callable[[], int]): Counts views in the store.
        """
        # Arrange
        connection = InstrumentedConnection(
            weather_connection,
            fail_execute=lambda statement: statement.startswith("CREATE VIEW") and "'rain'" in statement,
        )

        # Act
        with pytest.raises(DataSourceError) as exc_info:
            build_from_relation("play", connection, "weather")

        # Assert
        with check:
            assert str(exc_info.value) == "injected execute failure"
        with check:
            assert exc_info.value.statement is not None and "'rain'" in exc_info.value.statement
        with check:
            assert view_count() == 0

    def test_nested_query_failure_propagates_and_cleans_up(
        self,
        weather_connection: SQLiteConnection,
        view_count: Callable[[], int],
    ) -> None:
        """A failing aggregate inside a branch view surfaces from the root build and all views are dropped.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
            view_count (Callable[[], int]): Counts views in the store.
        """
        connection = InstrumentedConnection(
            weather_connection,
            fail_query=lambda s: 'GROUP BY CAST("windy" AS TEXT)' in s and 'FROM "weather"' not in s,
        )

        with pytest.raises(DataSourceError):
            build_from_relation("play", connection, "weather")

        assert view_count() == 0

    def test_drop_failure_is_raised_after_success(self, weather_connection: SQLiteConnection) -> None:
        """When the build succeeds but a view cannot be dropped, the drop failure is raised.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
        """
        connection = InstrumentedConnection(weather_connection, fail_execute=lambda s: s.startswith("DROP VIEW"))

        with pytest.raises(DataSourceError) as exc_info:
            build_from_relation("play", connection, "weather")

        assert exc_info.value.statement is not None and exc_info.value.statement.startswith("DROP VIEW")

    def test_build_error_wins_over_drop_failure(self, weather_connection: SQLiteConnection) -> None:
        """When both the build and the cleanup fail, the build error propagates.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
        """
        connection = InstrumentedConnection(
            weather_connection,
            fail_execute=lambda s: s.startswith("DROP VIEW"),
            fail_query=lambda s: 'GROUP BY CAST("humid" AS TEXT)' in s and 'FROM "weather"' not in s,
        )

        with pytest.raises(DataSourceError) as exc_info:
            build_from_relation("play", connection, "weather")

        assert str(exc_info.value) == "injected query failure"

    def test_missing_objective_raises(self, weather_connection: SQLiteConnection) -> None:
        """A relation without the objective column raises UnexpectedKeyError.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
        """
        with pytest.raises(UnexpectedKeyError) as exc_info:
            build_from_relation("temperature", weather_connection, "weather")

        assert exc_info.value.key == "temperature"

    def test_empty_relation_raises(self, weather_connection: SQLiteConnection) -> None:
        """An empty relation has no value to put in a leaf.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
        """
        weather_connection.raw.execute("CREATE TABLE empty_weather (outlook TEXT, windy TEXT, play TEXT)")

        with pytest.raises(UnexpectedValueError):
            build_from_relation("play", weather_connection, "empty_weather")

    def test_null_values_raise(self, weather_connection: SQLiteConnection) -> None:
        """NULL objective values are rejected.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
        """
        weather_connection.raw.execute("INSERT INTO weather VALUES ('sunny', 'true', 'true', NULL)")

        with pytest.raises(UnexpectedValueError):
            build_from_relation("play", weather_connection, "weather")

    def test_missing_relation_raises(self, weather_connection: SQLiteConnection) -> None:
        """A relation that does not exist is reported by the store.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
        """
        with pytest.raises(DataSourceError):
            build_from_relation("play", weather_connection, "climate")

    @pytest.mark.parametrize("relation", ["weather; DROP TABLE weather", "1weather", "", "w" * 65])
    def test_invalid_relation_name_raises(self, weather_connection: SQLiteConnection, relation: str) -> None:
        """Relation names that are not plain identifiers are rejected before any statement runs.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
            relation (str): Invalid relation name.
        """
        with pytest.raises(ValueError, match="Relation name must match"):
            RelationalBuilder(weather_connection, relation, "play")

    def test_wrong_connection_type_is_rejected(self) -> None:
        """An object that is not a store connection fails validation before any statement runs."""
        with pytest.raises(ValidationError):
            RelationalBuilder(object(), "weather", "play")  # type: ignore[arg-type]

    def test_worker_cap_below_one_raises(self, weather_connection: SQLiteConnection) -> None:
        """A worker cap of zero is rejected.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
        """
        with pytest.raises(ValueError, match="max_branch_workers"):
            RelationalBuilder(weather_connection, "weather", "play", max_branch_workers=0)


class TestRelationalBuilder:
    """Tests for the builder's view registry and lifecycle."""

    def test_evaluate_ranks_attributes(self, weather_connection: SQLiteConnection) -> None:
        """Evaluating the base relation ranks outlook, windy, humid.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
        """
        with RelationalBuilder(weather_connection, "weather", "play") as builder:
            sheet = builder.evaluate()

        with check:
            assert sheet.sorted == ["outlook", "windy", "humid"]
        with check:
            assert sheet.gain == pytest.approx(0.9402859586706311)

    def test_concurrent_allocations_are_unique_and_dropped(
        self,
        weather_connection: SQLiteConnection,
        view_count: Callable[[], int],
    ) -> None:
        """Concurrent view allocations never collide, are all registered, and are all dropped on close.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
            view_count (Callable[[], int]): Counts views in the store.
        """
        # Arrange
        builder = RelationalBuilder(weather_connection, "weather", "play")

        def allocate(index: int) -> str:
            value = ("sunny", "rain", "overcast")[index % 3]
            return builder.allocate_view("weather", ["humid", "windy", "play"], attribute="outlook", value=value)

        # Act
        with ThreadPoolExecutor(max_workers=8) as executor:
            names = list(executor.map(allocate, range(24)))

        # Assert
        with check:
            assert len(set(names)) == 24
        with check:
            assert set(builder.views) == set(names)
        with check:
            assert view_count() == 24
        with check:
            assert all(name.startswith("weather_") for name in names)

        builder.close()

        with check:
            assert builder.views == ()
        with check:
            assert view_count() == 0

    def test_view_names_are_unique_across_builders(self, weather_connection: SQLiteConnection) -> None:
        """Two builders over the same relation never produce the same view name.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
        """
        with (
            RelationalBuilder(weather_connection, "weather", "play") as first,
            RelationalBuilder(weather_connection, "weather", "play") as second,
        ):
            a = first.allocate_view("weather", ["windy", "play"], attribute="outlook", value="sunny")
            b = second.allocate_view("weather", ["windy", "play"], attribute="outlook", value="sunny")

            assert a != b

    def test_view_filters_rows(self, weather_connection: SQLiteConnection) -> None:
        """An allocated view projects the requested columns of the matching rows only.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
        """
        with RelationalBuilder(weather_connection, "weather", "play") as builder:
            name = builder.allocate_view("weather", ["windy", "play"], attribute="outlook", value="overcast")
            cursor = weather_connection.raw.execute(f'SELECT * FROM "{name}"')
            rows = cursor.fetchall()
            columns = [description[0] for description in cursor.description]

        with check:
            assert columns == ["windy", "play"]
        with check:
            assert len(rows) == 4
        with check:
            assert {play for _, play in rows} == {"true"}

    def test_build_after_close_raises(self, weather_connection: SQLiteConnection) -> None:
        """A closed builder refuses to build.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
        """
        builder = RelationalBuilder(weather_connection, "weather", "play")
        builder.close()

        with pytest.raises(GeneralFailureError):
            builder.build()

    def test_views_are_kept_until_close(
        self,
        weather_connection: SQLiteConnection,
        view_count: Callable[[], int],
    ) -> None:
        """Views created by a build stay registered until the builder is closed.

        Args:
            weather_connection (SQLiteConnection): Store fixture.
            view_count (Callable[[], int]): Counts views in the store.
        """
        builder = RelationalBuilder(weather_connection, "weather", "play")
        builder.build()

        # outlook (3) + humid under sunny (2) + windy under rain (2)
        with check:
            assert len(builder.views) == 7
        with check:
            assert view_count() == 7

        builder.close()

        assert view_count() == 0
