"""Relational store access for the relational builder.

A store is anything implementing the `Connection` protocol: `execute` and
`query` report failure through their return value, and `error_message` tells
what went wrong. Such connections are not safe for concurrent use, so the
builder never touches one directly. It goes through `SerializedConnection`,
which owns the connection, holds the one re-entrant lock guarding it, and
turns failures into `DataSourceError`.

Two adapters ship with the package: `SQLiteConnection` over the standard
library driver and `MySQLConnection` over PyMySQL.
"""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, Self, runtime_checkable

import pymysql
from loguru import logger

from id3kit.exceptions import DataSourceError
from id3kit.logging import SQL_LEVEL
from id3kit.settings import MySQLSettings

if TYPE_CHECKING:
    from types import TracebackType

__all__ = ["Connection", "MySQLConnection", "QueryResult", "SQLiteConnection", "SerializedConnection"]


@dataclass(frozen=True)
class QueryResult:
    """Rows returned by a query, with positional column access.

    Attributes:
        columns (tuple[str, ...]): Column names in result order.
        rows (tuple[tuple[Any, ...], ...]): Result rows.

    Examples:
        >>> result = QueryResult(columns=("play", "n"), rows=(("yes", 9), ("no", 5)))
        >>> len(result)
        2
        >>> result.rows[0][1]
        9
    """

    columns: tuple[str, ...] = ()
    rows: tuple[tuple[Any, ...], ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        """Return the number of rows.

        Returns:
            int: Row count.
        """
        return len(self.rows)


@runtime_checkable
class Connection(Protocol):
    """A single, pre-connected handle to a relational store.

    Implementations need not be thread safe.
    """

    @property
    def dialect(self) -> str:
        """str: sqlglot dialect name used to render statements for this store."""
        ...

    def execute(self, statement: str) -> bool:
        """Run a statement that returns no rows; False on failure."""
        ...

    def query(self, statement: str) -> QueryResult | None:
        """Run a statement that returns rows; None on failure."""
        ...

    def error_message(self) -> str:
        """Return the message of the most recent failure."""
        ...


class SerializedConnection:
    """Owns a `Connection` and serializes every access through one re-entrant lock.

    Examples:
        >>> store = SerializedConnection(SQLiteConnection.open())
        >>> store.execute("CREATE TABLE t (a TEXT)")
        >>> store.query("SELECT COUNT(*) FROM t").rows
        ((0,),)
    """

    def __init__(self, connection: Connection, *, log_statements: bool = True) -> None:
        """Initialize the wrapper.

        Args:
            connection (Connection): The connection to own. It must not be used
                directly by anyone else while wrapped.
            log_statements (bool): Whether to log each statement at the SQL level.
                Defaults to True.
        """
        self._connection = connection
        self._lock = threading.RLock()
        self._log_statements = log_statements

    @property
    def lock(self) -> threading.RLock:
        """threading.RLock: The lock guarding the connection; hold it to group several calls."""
        return self._lock

    @property
    def dialect(self) -> str:
        """str: sqlglot dialect name of the wrapped connection."""
        return self._connection.dialect

    def execute(self, statement: str) -> None:
        """Run a statement that returns no rows.

        Args:
            statement (str): The statement to run.

        Raises:
            DataSourceError: If the store reports a failure.
        """
        with self._lock:
            self._log(statement)
            if not self._connection.execute(statement):
                raise DataSourceError(self._connection.error_message(), statement=statement)

    def query(self, statement: str) -> QueryResult:
        """Run a statement that returns rows.

        Args:
            statement (str): The statement to run.

        Returns:
            QueryResult: Column names and rows.

        Raises:
            DataSourceError: If the store reports a failure.
        """
        with self._lock:
            self._log(statement)
            result = self._connection.query(statement)
            if result is None:
                raise DataSourceError(self._connection.error_message(), statement=statement)
            return result

    def _log(self, statement: str) -> None:
        if self._log_statements:
            logger.log(SQL_LEVEL, statement)


class SQLiteConnection:
    """`Connection` over a standard library `sqlite3` connection.

    Examples:
        >>> with SQLiteConnection.open() as connection:
        ...     connection.execute("CREATE TABLE t (a TEXT)")
        True
    """

    dialect = "sqlite"

    def __init__(self, connection: sqlite3.Connection) -> None:
        """Initialize the adapter.

        Args:
            connection (sqlite3.Connection): An open connection. When it is
                shared with worker threads it must have been opened with
                `check_same_thread=False`.
        """
        self._connection = connection
        self._error = ""

    @classmethod
    def open(cls, database: str | Path = ":memory:") -> Self:
        """Open a thread-shareable autocommit connection.

        Args:
            database (str | Path): Database path. Defaults to an in-memory database.

        Returns:
            Self: The adapter owning the new connection.
        """
        return cls(sqlite3.connect(database, check_same_thread=False, isolation_level=None))

    @property
    def raw(self) -> sqlite3.Connection:
        """sqlite3.Connection: The underlying driver connection."""
        return self._connection

    def execute(self, statement: str) -> bool:
        """Run a statement that returns no rows.

        Args:
            statement (str): The statement to run.

        Returns:
            bool: True on success, False if the driver raised; see `error_message`.
        """
        try:
            self._connection.execute(statement)
        except sqlite3.Error as exc:
            self._error = str(exc)
            return False
        self._error = ""
        return True

    def query(self, statement: str) -> QueryResult | None:
        """Run a statement that returns rows.

        Args:
            statement (str): The statement to run.

        Returns:
            QueryResult | None: The result, or None if the driver raised; see `error_message`.
        """
        try:
            cursor = self._connection.execute(statement)
            rows = cursor.fetchall()
        except sqlite3.Error as exc:
            self._error = str(exc)
            return None
        self._error = ""
        columns = tuple(description[0] for description in cursor.description or ())
        return QueryResult(columns=columns, rows=tuple(tuple(row) for row in rows))

    def error_message(self) -> str:
        """Return the message of the most recent failure.

        Returns:
            str: The driver's message, or an empty string after a success.
        """
        return self._error

    def close(self) -> None:
        """Close the underlying connection."""
        self._connection.close()

    def __enter__(self) -> Self:
        """Enter context manager.

        Returns:
            Self: This adapter.
        """
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context manager and close the connection.

        Args:
            exc_type (type[BaseException] | None): The exception type, if raised.
            exc_val (BaseException | None): The exception instance, if raised.
            exc_tb (TracebackType | None): The traceback, if raised.
        """
        self.close()


class MySQLConnection:
    """`Connection` over a PyMySQL connection.

    Statements for this dialect compare values in their binary form, so
    results keep the case-sensitive distinctions the in-memory builder makes.
    """

    dialect = "mysql"

    def __init__(self, connection: pymysql.connections.Connection) -> None:
        """Initialize the adapter.

        Args:
            connection (pymysql.connections.Connection): An open connection,
                ideally in autocommit mode.
        """
        self._connection = connection
        self._error = ""

    @classmethod
    def connect(cls, settings: MySQLSettings | None = None) -> Self:
        """Open an autocommit connection from settings.

        Args:
            settings (MySQLSettings | None): Connection parameters. Defaults to
                `MySQLSettings()`, read from `ID3KIT_MYSQL_*` environment variables.

        Returns:
            Self: The adapter owning the new connection.
        """
        settings = settings or MySQLSettings()
        connection = pymysql.connect(
            host=settings.host,
            port=settings.port,
            user=settings.user,
            password=settings.password.get_secret_value(),
            database=settings.database,
            autocommit=True,
        )
        return cls(connection)

    def execute(self, statement: str) -> bool:
        """Run a statement that returns no rows.

        Args:
            statement (str): The statement to run.

        Returns:
            bool: True on success, False if the driver raised; see `error_message`.
        """
        try:
            with self._connection.cursor() as cursor:
                cursor.execute(statement)
        except pymysql.MySQLError as exc:
            self._error = str(exc)
            return False
        self._error = ""
        return True

    def query(self, statement: str) -> QueryResult | None:
        """Run a statement that returns rows.

        Args:
            statement (str): The statement to run.

        Returns:
            QueryResult | None: The result, or None if the driver raised; see `error_message`.
        """
        try:
            with self._connection.cursor() as cursor:
                cursor.execute(statement)
                rows = cursor.fetchall()
                description = cursor.description or ()
        except pymysql.MySQLError as exc:
            self._error = str(exc)
            return None
        self._error = ""
        columns = tuple(column[0] for column in description)
        return QueryResult(columns=columns, rows=tuple(tuple(row) for row in rows))

    def error_message(self) -> str:
        """Return the message of the most recent failure.

        Returns:
            str: The driver's message, or an empty string after a success.
        """
        return self._error

    def close(self) -> None:
        """Close the underlying connection."""
        self._connection.close()
