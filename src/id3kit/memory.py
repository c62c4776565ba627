"""In-memory ID3 induction over a fully materialized set of records."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Mapping, Sequence

import polars as pl
from loguru import logger

from id3kit.entropy import EvaluationSheet, conditional_entropy, entropy
from id3kit.exceptions import (
    EmptyColumnsetError,
    EmptyDatasetError,
    GeneralFailureError,
    UnexpectedKeyError,
    UnexpectedValueError,
)
from id3kit.polars_utils import dataframe_to_records
from id3kit.tree import Branch, DecisionTree, Leaf

__all__ = ["Dataset", "Record", "as_records", "build_from_records", "evaluate"]

type Record = Mapping[str, str]

type Dataset = Sequence[Record] | pl.DataFrame

# Fewer non-objective attributes than this cannot be evaluated while the objective is still impure.
MIN_CANDIDATE_ATTRIBUTES = 2


def as_records(dataset: Dataset) -> Sequence[Record]:
    """Normalize a dataset into a sequence of records.

    Args:
        dataset (Dataset): Records, or a Polars DataFrame with one record per row.

    Returns:
        Sequence[Record]: The records; DataFrames are converted with string values.
    """
    if isinstance(dataset, pl.DataFrame):
        return dataframe_to_records(dataset)
    return dataset


def evaluate(objective: str, dataset: Dataset) -> EvaluationSheet:
    """Compute the objective entropy and the information gain of every attribute.

    The attribute set is taken from the first record.

    Args:
        objective (str): The objective field to predict.
        dataset (Dataset): Records sharing one schema.

    Returns:
        EvaluationSheet: Objective entropy and per-attribute information gain. When
            the objective column is pure, `gain` is 0.0 and `distribution` is empty.

    Raises:
        EmptyDatasetError: If the dataset has no records.
        UnexpectedKeyError: If the objective, or an attribute of the first record,
            is missing from any record.
        EmptyColumnsetError: If fewer than two attributes remain while the
            objective entropy is positive.

    Examples:
        >>> records = [
        ...     {"windy": "true", "humid": "true", "play": "no"},
        ...     {"windy": "false", "humid": "true", "play": "yes"},
        ... ]
        >>> sheet = evaluate("play", records)
        >>> sheet.gain, sheet.sorted
        (1.0, ['windy', 'humid'])
    """
    records = as_records(dataset)
    if not records:
        raise EmptyDatasetError

    sample = records[0]
    objective_column: list[str] = []
    for record in records:
        if objective not in record:
            raise UnexpectedKeyError(objective, available_keys=list(record))
        objective_column.append(record[objective])

    gain = entropy(objective_column)
    if gain <= 0.0:
        return EvaluationSheet(gain=0.0)

    factors = sorted(name for name in sample if name != objective)
    if len(factors) < MIN_CANDIDATE_ATTRIBUTES:
        raise EmptyColumnsetError(objective, columns=factors)

    distribution = {factor: gain - conditional_entropy(factor, objective, records) for factor in factors}
    return EvaluationSheet(gain=gain, distribution=distribution)


def build_from_records(objective: str, dataset: Dataset) -> Leaf | DecisionTree:
    """Induce a decision tree from records with ID3.

    At each step the attribute with maximal information gain (ties broken by
    name) becomes the split; it is removed from every record of each partition
    so it is never reconsidered deeper in that branch. A step whose objective
    column is pure yields a leaf holding the first record's objective value.

    Args:
        objective (str): The objective field to predict.
        dataset (Dataset): Records sharing one schema, or a Polars DataFrame.

    Returns:
        Leaf | DecisionTree: The root of the tree; a single `Leaf` when the
            objective is already pure.

    Raises:
        EmptyDatasetError: If the dataset has no records.
        UnexpectedKeyError: If a record lacks the objective or an attribute.
        UnexpectedValueError: If a leaf value cannot be resolved.
        EmptyColumnsetError: If a partition cannot be split further despite positive entropy.
    """
    records = as_records(dataset)
    logger.info("Building decision tree from records", objective=objective, records=len(records))
    tree = _build_recursively(objective, records)
    logger.info("Decision tree built", objective=objective, depth=tree.depth, leaves=tree.leaf_count)
    return tree


def _build_recursively(objective: str, records: Sequence[Record]) -> Branch:
    """Build the subtree for one partition.

    Args:
        objective (str): The objective field to predict.
        records (Sequence[Record]): The partition's records.

    Returns:
        Branch: A leaf for a pure partition, otherwise a node.

    Raises:
        UnexpectedValueError: If the first record has no objective value.
        UnexpectedKeyError: If a record lacks the chosen attribute.
        GeneralFailureError: If a positive-gain sheet names no attribute.
    """
    sheet = evaluate(objective, records)
    if sheet.gain <= 0.0:
        value = records[0].get(objective)
        if value is None:
            raise UnexpectedValueError(f"First record has no value for '{objective}'")
        return Leaf(value=value)

    primary = sheet.best
    if primary is None:
        raise GeneralFailureError(f"No attribute selected although '{objective}' has entropy {sheet.gain}")
    logger.debug("Splitting records", attribute=primary, gain=sheet.distribution[primary], records=len(records))

    partitions: dict[str, list[dict[str, str]]] = defaultdict(list)
    for record in records:
        remainder = dict(record)
        if primary not in remainder:
            raise UnexpectedKeyError(primary, available_keys=list(remainder))
        value = remainder.pop(primary)
        partitions[value].append(remainder)

    branches = {value: _build_recursively(objective, partition) for value, partition in sorted(partitions.items())}
    return DecisionTree(attribute=primary, branches=branches)
