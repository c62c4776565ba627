"""Opt-in loguru output for tree induction.

id3kit logs through loguru but stays silent until `enable_logging()` is
called. Three levels matter while building:

- INFO: one record when a build starts and one when it finishes.
- SQL (15): every statement a relational build sends to its store, tagged
  with the worker thread that issued it.
- DEBUG: split decisions, view allocation and per-branch failures.

Loguru's default stderr handler (ID 0) is removed on import so enabled output
is not printed twice. Handlers configured before id3kit is imported may
already have replaced it, in which case nothing is removed.
"""

from __future__ import annotations

import contextlib
import sys
import threading
import warnings
from typing import TYPE_CHECKING, ClassVar, Final, Literal

from loguru import logger

if TYPE_CHECKING:
    from types import TracebackType

    from loguru import Record

PACKAGE_NAME: Final[str] = __name__.split(".")[0]

with contextlib.suppress(ValueError):
    logger.remove(0)

SQL_LEVEL: Final[str] = "SQL"
SQL_LEVEL_NUMBER: Final[int] = 15


def _register_sql_level() -> None:
    """Make the SQL level known to loguru.

    Loguru levels are global and their numbers cannot change once added, so a
    pre-existing SQL level with another number is kept and reported with a
    UserWarning.
    """
    try:
        existing_level = logger.level(SQL_LEVEL)
    except ValueError:
        logger.level(SQL_LEVEL, no=SQL_LEVEL_NUMBER, icon="🗄")
        return
    if existing_level.no != SQL_LEVEL_NUMBER:
        msg = f"SQL level already registered with numeric value {existing_level.no}, expected {SQL_LEVEL_NUMBER}"
        warnings.warn(msg, stacklevel=2)


_register_sql_level()

type LogLevel = Literal["TRACE", "DEBUG", "SQL", "INFO", "WARNING", "ERROR", "CRITICAL"]

type LogFormat = Literal["short", "full"]

_PREFIX: Final[str] = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "  # noqa: RUF027
_FORMATS: Final[dict[str, str]] = {
    "short": _PREFIX + "<cyan>{thread.name}</cyan> <cyan>{function}</cyan> - <level>{message}</level>",
    "full": (
        _PREFIX
        + "<cyan>{thread.name}</cyan> <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        + "<level>{message}</level>"
    ),
}


class LoggingHandle:
    """One stderr handler added by `enable_logging()`.

    Handles are tracked process-wide; the package is disabled again only when
    the last open handle is closed, so nested or concurrent builds can each
    enable logging independently.

    Examples:
        >>> with enable_logging(level="SQL"):  # doctest: +SKIP
        ...     tree = build("play", (connection, "weather"))
    """

    _active_ids: ClassVar[set[int]] = set()
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, handler_id: int) -> None:
        """Track a handler.

        Args:
            handler_id (int): ID returned by `logger.add()`.
        """
        self.handler_id: int | None = handler_id
        with LoggingHandle._lock:
            LoggingHandle._active_ids.add(handler_id)

    def disable(self) -> None:
        """Remove the handler; calling it again does nothing."""
        with LoggingHandle._lock:
            if self.handler_id is None:
                return
            LoggingHandle._active_ids.discard(self.handler_id)
            with contextlib.suppress(ValueError):
                logger.remove(self.handler_id)
            self.handler_id = None
            if not LoggingHandle._active_ids:
                logger.disable(PACKAGE_NAME)

    def __enter__(self) -> LoggingHandle:
        """Enter context manager.

        Returns:
            LoggingHandle: This handle instance.
        """
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context manager and remove the handler.

        Args:
            exc_type (type[BaseException] | None): The exception type, if raised.
            exc_val (BaseException | None): The exception instance, if raised.
            exc_tb (TracebackType | None): The traceback, if raised.
        """
        self.disable()


def enable_logging(
    *,
    level: LogLevel = "INFO",
    log_format: LogFormat = "short",
) -> LoggingHandle:
    """Print id3kit records to stderr until the returned handle is closed.

    Args:
        level (LogLevel): Lowest level printed. "SQL" adds store statements to
            the INFO build summaries; "DEBUG" adds split decisions.
        log_format (LogFormat): "short" names the thread and function; "full"
            adds module and line.

    Returns:
        LoggingHandle: Handle owning the new handler.

    Examples:
        >>> handle = enable_logging(level="DEBUG")  # doctest: +SKIP
        >>> tree = build("play", records)  # doctest: +SKIP
        >>> handle.disable()  # doctest: +SKIP
    """
    logger.enable(PACKAGE_NAME)
    handler_id = logger.add(sys.stderr, level=level, filter=_from_package, format=_FORMATS[log_format])
    return LoggingHandle(handler_id)


def _from_package(record: Record) -> bool:
    name = record["name"]
    return name is not None and name.startswith(PACKAGE_NAME)
