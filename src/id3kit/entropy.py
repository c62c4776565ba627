"""Frequency, probability and Shannon entropy over discrete columns.

Every function here is pure. The `*_from_counts` variants work on
pre-aggregated counts so that a relational store can do the counting with
`GROUP BY` and hand back only the totals.
"""

from __future__ import annotations

import math
from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping, Sequence
from typing import Final

from pydantic import BaseModel, Field

from id3kit.exceptions import UnexpectedKeyError

__all__ = [
    "EvaluationSheet",
    "conditional_entropy",
    "conditional_entropy_from_counts",
    "entropy",
    "entropy_from_counts",
    "frequency",
    "information_gain",
    "possibility",
]

# Gains closer than this are treated as tied so attribute ranking does not
# depend on float summation order.
GAIN_DECIMAL_PLACES: Final[int] = 12


def frequency(column: Iterable[str]) -> dict[str, int]:
    """Count occurrences of each value in a column.

    Equivalent to `SELECT value, COUNT(*) FROM t GROUP BY value`.

    Args:
        column (Iterable[str]): Discrete column values.

    Returns:
        dict[str, int]: Mapping of value to its number of occurrences.

    Examples:
        >>> frequency(["a", "b", "a"])
        {'a': 2, 'b': 1}
    """
    return dict(Counter(column))


def possibility(column: Iterable[str]) -> dict[str, float]:
    """Return the probability distribution of a column's values.

    Args:
        column (Iterable[str]): Discrete column values.

    Returns:
        dict[str, float]: Mapping of value to its relative frequency in [0, 1].
            An empty column yields an empty distribution.

    Examples:
        >>> possibility(["a", "b", "a", "a"])
        {'a': 0.75, 'b': 0.25}
        >>> possibility([])
        {}
    """
    counts = frequency(column)
    total = sum(counts.values())
    if total == 0:
        return {}
    return {value: count / total for value, count in counts.items()}


def entropy(column: Iterable[str]) -> float:
    """Shannon entropy of a column in bits, i.e. `sum(-p * log2(p))`.

    Args:
        column (Iterable[str]): Discrete column values.

    Returns:
        float: Entropy in bits; 0.0 for an empty or single-valued column.

    Examples:
        >>> entropy(["yes", "no"])
        1.0
        >>> entropy(["yes", "yes"])
        0.0
    """
    return entropy_from_counts(frequency(column).values())


def entropy_from_counts(counts: Iterable[int]) -> float:
    """Shannon entropy in bits computed from value counts.

    Args:
        counts (Iterable[int]): Occurrence count of each distinct value.
            Zero counts are ignored.

    Returns:
        float: Entropy in bits; 0.0 when there are no positive counts.

    Examples:
        >>> entropy_from_counts([2, 2])
        1.0
    """
    positive = [count for count in counts if count > 0]
    total = sum(positive)
    if total == 0:
        return 0.0
    # `0.0 - x` keeps a single-valued column at +0.0 instead of -0.0
    return 0.0 - sum((count / total) * math.log2(count / total) for count in positive)


def conditional_entropy(factor: str, objective: str, dataset: Sequence[Mapping[str, str]]) -> float:
    """Expected entropy of `objective` after partitioning `dataset` by `factor`.

    Each partition's objective entropy is weighted by partition-size / total.

    Args:
        factor (str): The conditioning attribute.
        objective (str): The objective field.
        dataset (Sequence[Mapping[str, str]]): Records holding both fields.

    Returns:
        float: Conditional entropy in bits; 0.0 for an empty dataset.

    Raises:
        UnexpectedKeyError: If any record lacks `factor` or `objective`.
    """
    counts: dict[str, Counter[str]] = defaultdict(Counter)
    for record in dataset:
        for key in (factor, objective):
            if key not in record:
                raise UnexpectedKeyError(key, available_keys=list(record))
        counts[record[factor]][record[objective]] += 1
    return conditional_entropy_from_counts(counts)


def conditional_entropy_from_counts(counts: Mapping[str, Mapping[str, int]]) -> float:
    """Conditional entropy computed from a two-level count table.

    Args:
        counts (Mapping[str, Mapping[str, int]]): `{factor_value: {objective_value: count}}`,
            e.g. the result of `SELECT factor, objective, COUNT(*) ... GROUP BY factor, objective`.

    Returns:
        float: Conditional entropy in bits; 0.0 when the table is empty.

    Examples:
        >>> conditional_entropy_from_counts({"a": {"yes": 2}, "b": {"yes": 1, "no": 1}})
        0.5
    """
    partition_sizes = {value: sum(objectives.values()) for value, objectives in counts.items()}
    total = sum(partition_sizes.values())
    if total == 0:
        return 0.0
    return sum(
        (partition_sizes[value] / total) * entropy_from_counts(objectives.values())
        for value, objectives in counts.items()
    )


def information_gain(factor: str, objective: str, dataset: Sequence[Mapping[str, str]]) -> float:
    """Entropy reduction of `objective` achieved by splitting on `factor`.

    Args:
        factor (str): The candidate splitting attribute.
        objective (str): The objective field.
        dataset (Sequence[Mapping[str, str]]): Records holding both fields.

    Returns:
        float: `entropy(objective) - conditional_entropy(factor, objective)`, in bits.

    Raises:
        UnexpectedKeyError: If any record lacks `factor` or `objective`.
    """
    conditional = conditional_entropy(factor, objective, dataset)
    return entropy(record[objective] for record in dataset) - conditional


class EvaluationSheet(BaseModel):
    """Gain of the objective and information gain of every candidate attribute.

    Produced once per recursive step by a builder and discarded afterwards.

    Attributes:
        gain (float): Entropy of the objective column at this step.
        distribution (dict[str, float]): Information gain per candidate attribute.

    Examples:
        >>> sheet = EvaluationSheet(gain=1.0, distribution={"b": 0.5, "a": 0.5, "c": 0.9})
        >>> sheet.sorted
        ['c', 'a', 'b']
        >>> sheet.best
        'c'
    """

    gain: float = Field(default=0.0, ge=0.0, description="Entropy of the objective column in bits.")
    distribution: dict[str, float] = Field(
        default_factory=dict,
        description="Information gain of each candidate attribute in bits.",
    )

    @property
    def sorted(self) -> list[str]:
        """list[str]: Attributes by information gain descending, ties by name ascending."""
        return [
            name
            for name, _ in sorted(
                self.distribution.items(),
                key=lambda item: (-round(item[1], GAIN_DECIMAL_PLACES), item[0]),
            )
        ]

    @property
    def best(self) -> str | None:
        """str | None: The attribute with maximal information gain, or None without candidates."""
        ranking = self.sorted
        return ranking[0] if ranking else None
