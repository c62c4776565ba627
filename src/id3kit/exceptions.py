"""Custom exceptions for id3kit.

Every error raised while building or searching a decision tree derives from
`DecisionTreeError`, so callers can catch the whole family at once. Most
errors also subclass the closest builtin so that generic handlers keep working:

Build errors:
- EmptyDatasetError (ValueError): The dataset holds no records.
- UnexpectedKeyError (LookupError): A record or relation lacks a required field.
- UnexpectedValueError (ValueError): No leaf value is available where one is required.
- EmptyColumnsetError (ValueError): No attributes are left to split on although gain is positive.
- UnsupportedSourceError (TypeError): `build` was given a data source it does not understand.

Search errors:
- InvalidNodeError (LookupError): A record value has no branch in the tree.

Store errors:
- DataSourceError: The relational store reported a failure.

Internal errors:
- GeneralFailureError (RuntimeError): An internal invariant was violated.
"""

from __future__ import annotations

from collections.abc import Sequence


class DecisionTreeError(Exception):
    """Base exception for all id3kit errors."""


class EmptyDatasetError(DecisionTreeError, ValueError):
    """Raised when a dataset or relation contains no records.

    Examples:
        >>> err = EmptyDatasetError()
        >>> str(err)
        'Dataset contains no records'
    """

    def __init__(self, message: str = "Dataset contains no records") -> None:
        """Initialize EmptyDatasetError.

        Args:
            message (str): Description of the error. Defaults to a generic message.
        """
        super().__init__(message)


class UnexpectedKeyError(DecisionTreeError, LookupError):
    """Raised when a record or relation lacks a required field.

    Attributes:
        key (str): The missing field name.
        available_keys (list[str]): Field names that were present, when known.

    Examples:
        >>> err = UnexpectedKeyError("play", available_keys=["outlook", "windy"])
        >>> err.key
        'play'
        >>> str(err)
        "Field 'play' not found. Available fields: ['outlook', 'windy']"
    """

    key: str
    available_keys: list[str]

    def __init__(self, key: str, *, available_keys: Sequence[str] | None = None) -> None:
        """Initialize UnexpectedKeyError.

        Args:
            key (str): The missing field name.
            available_keys (Sequence[str] | None): Field names that were present. Defaults to None.
        """
        self.key = key
        self.available_keys = sorted(available_keys or [])
        message = f"Field '{key}' not found"
        if self.available_keys:
            message = f"{message}. Available fields: {self.available_keys}"
        super().__init__(message)

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Detailed string representation including the missing key.
        """
        return f"{self.__class__.__name__}(key={self.key!r}, available_keys={self.available_keys!r})"


class UnexpectedValueError(DecisionTreeError, ValueError):
    """Raised when no usable value is available where one is required.

    This covers a leaf that cannot be resolved because a partition is empty
    and values that are missing (null) in the source data.
    """


class EmptyColumnsetError(DecisionTreeError, ValueError):
    """Raised when too few attributes remain to split on while gain is still positive.

    This happens with pathological input, typically duplicate attribute rows
    that carry conflicting objective values.

    Attributes:
        objective (str): The objective field being predicted.
        columns (list[str]): The non-objective attributes that remained.

    Examples:
        >>> err = EmptyColumnsetError("play", columns=["windy"])
        >>> err.columns
        ['windy']
    """

    objective: str
    columns: list[str]

    def __init__(self, objective: str, *, columns: Sequence[str]) -> None:
        """Initialize EmptyColumnsetError.

        Args:
            objective (str): The objective field being predicted.
            columns (Sequence[str]): The non-objective attributes that remained.
        """
        super().__init__(
            f"Cannot split on {sorted(columns)} while '{objective}' still has positive entropy: "
            "at least two attributes are required"
        )
        self.objective = objective
        self.columns = list(columns)


class InvalidNodeError(DecisionTreeError, LookupError):
    """Raised when a record value has no branch at the current tree node.

    Attributes:
        attribute (str): The splitting attribute of the node.
        value (str): The record value that has no branch.

    Examples:
        >>> err = InvalidNodeError("outlook", "snowy")
        >>> str(err)
        "No branch for outlook='snowy'"
    """

    attribute: str
    value: str

    def __init__(self, attribute: str, value: str) -> None:
        """Initialize InvalidNodeError.

        Args:
            attribute (str): The splitting attribute of the node.
            value (str): The record value that has no branch.
        """
        super().__init__(f"No branch for {attribute}={value!r}")
        self.attribute = attribute
        self.value = value


class DataSourceError(DecisionTreeError):
    """Raised when the relational store reports a failure.

    Attributes:
        statement (str | None): The statement that failed, when known.
    """

    statement: str | None

    def __init__(self, message: str, statement: str | None = None) -> None:
        """Initialize DataSourceError.

        Args:
            message (str): The error message reported by the store.
            statement (str | None): The statement that failed. Defaults to None.
        """
        super().__init__(message or "Data source reported an unspecified error")
        self.statement = statement

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Detailed string representation including message and statement.
        """
        return f"{self.__class__.__name__}(message={str(self)!r}, statement={self.statement!r})"


class UnsupportedSourceError(DecisionTreeError, TypeError):
    """Raised when `build` receives a data source it cannot read."""


class GeneralFailureError(DecisionTreeError, RuntimeError):
    """Raised when an internal invariant is violated."""
