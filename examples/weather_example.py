"""Demonstrates building the same decision tree in memory and inside SQLite.

id3kit logging is disabled by default. Users opt in by calling ``enable_logging()``,
which returns a ``LoggingHandle``. The handle can be used as a context manager
(``with enable_logging(): ...``) or disabled manually via ``handle.disable()``.

Key concepts shown here:

- ``level``: the custom ``SQL`` level (numeric value 15, between DEBUG and INFO)
  shows every statement the relational builder sends to the store, including
  the statements issued from branch worker threads.
- ``log_format``: ``"short"`` shows ``timestamp | level | thread function - message``;
  ``"full"`` adds the module and line number.
- Cleanup: every temporary view is dropped once the relational build finishes.
"""

import polars as pl

from id3kit import SQLiteConnection, build, enable_logging, extract_rules, score

weather = pl.DataFrame({
    "outlook": ["sunny", "sunny", "overcast", "rain", "rain", "rain", "overcast"]
    + ["sunny", "sunny", "rain", "sunny", "overcast", "overcast", "rain"],
    "humid": ["true", "true", "true", "true", "true", "false", "false"]
    + ["true", "false", "true", "false", "true", "true", "true"],
    "windy": ["false", "true", "false", "false", "false", "true", "true"]
    + ["false", "false", "false", "true", "true", "false", "true"],
    "play": ["false", "false", "true", "true", "true", "false", "true"]
    + ["false", "true", "true", "true", "true", "true", "false"],
})

# In memory
tree = build("play", weather)
print(tree.render())
print()
for rule in extract_rules(tree):
    print(rule)

# Inside SQLite, with every statement logged
with SQLiteConnection.open() as connection:
    connection.raw.execute("CREATE TABLE weather (outlook TEXT, humid TEXT, windy TEXT, play TEXT)")
    connection.raw.executemany("INSERT INTO weather VALUES (?, ?, ?, ?)", weather.rows())

    with enable_logging(level="SQL"):
        relational_tree = build("play", (connection, "weather"))

    views_left = connection.raw.execute("SELECT COUNT(*) FROM sqlite_master WHERE type = 'view'").fetchone()[0]

print()
print(f"Same tree: {relational_tree == tree}, views left behind: {views_left}")
print(score(relational_tree, weather, "play"))
