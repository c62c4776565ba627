"""Shared fixtures: the 14-record weather dataset in memory and in SQLite."""

from __future__ import annotations

from collections.abc import Callable, Generator

import pytest

from id3kit.store import SQLiteConnection
from id3kit.tree import DecisionTree

WEATHER_COLUMNS: tuple[str, ...] = ("outlook", "humid", "windy", "play")

WEATHER_ROWS: tuple[tuple[str, str, str, str], ...] = (
    ("sunny", "true", "false", "false"),
    ("sunny", "true", "true", "false"),
    ("overcast", "true", "false", "true"),
    ("rain", "true", "false", "true"),
    ("rain", "true", "false", "true"),
    ("rain", "false", "true", "false"),
    ("overcast", "false", "true", "true"),
    ("sunny", "true", "false", "false"),
    ("sunny", "false", "false", "true"),
    ("rain", "true", "false", "true"),
    ("sunny", "false", "true", "true"),
    ("overcast", "true", "true", "true"),
    ("overcast", "true", "false", "true"),
    ("rain", "true", "true", "false"),
)


@pytest.fixture
def weather_records() -> list[dict[str, str]]:
    """Create the canonical weather dataset.

    Returns:
        list[dict[str, str]]: 14 records with `outlook`, `humid`, `windy` and objective `play`.
    """
    return [dict(zip(WEATHER_COLUMNS, row, strict=True)) for row in WEATHER_ROWS]


@pytest.fixture
def expected_weather_tree() -> DecisionTree:
    """Create the tree ID3 induces from the weather dataset.

    Returns:
        DecisionTree: Root `outlook` with `humid` under sunny and `windy` under rain.
    """
    return DecisionTree(
        attribute="outlook",
        branches={
            "overcast": "true",
            "sunny": DecisionTree(attribute="humid", branches={"true": "false", "false": "true"}),
            "rain": DecisionTree(attribute="windy", branches={"false": "true", "true": "false"}),
        },
    )


def seed_weather(connection: SQLiteConnection, relation: str = "weather") -> None:
    """Create and fill a weather relation through the raw driver connection.

    Args:
        connection (SQLiteConnection): Target connection.
        relation (str): Name of the table to create.
    """
    columns = ", ".join(f"{name} TEXT" for name in WEATHER_COLUMNS)
    connection.raw.execute(f"CREATE TABLE {relation} ({columns})")
    connection.raw.executemany(f"INSERT INTO {relation} VALUES (?, ?, ?, ?)", WEATHER_ROWS)


@pytest.fixture
def weather_connection() -> Generator[SQLiteConnection]:
    """Create an in-memory SQLite store holding the weather relation.

    Yields:
        Generator[SQLiteConnection]: Connection with a `weather` table; closed after the test.
    """
    connection = SQLiteConnection.open()
    seed_weather(connection)
    yield connection
    connection.close()


@pytest.fixture
def view_count(weather_connection: SQLiteConnection) -> Callable[[], int]:
    """Provide a function counting views in the weather store.

    Args:
        weather_connection (SQLiteConnection): Store fixture.

    Returns:
        Callable[[], int]: Returns the current number of views.
    """

    def _count() -> int:
        return weather_connection.raw.execute("SELECT COUNT(*) FROM sqlite_master WHERE type = 'view'").fetchone()[0]

    return _count
