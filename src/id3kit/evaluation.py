"""Rule extraction and accuracy reporting for built trees."""

from __future__ import annotations

from collections import defaultdict

from pydantic import BaseModel, Field, model_validator

from id3kit.exceptions import EmptyDatasetError, InvalidNodeError, UnexpectedKeyError
from id3kit.memory import Dataset, as_records
from id3kit.tree import DecisionTree, Leaf

__all__ = ["Condition", "EvaluationReport", "Rule", "extract_rules", "predict", "score"]


class Condition(BaseModel):
    """One `attribute == value` test on the path to a leaf.

    Examples:
        >>> str(Condition(attribute="outlook", value="sunny"))
        'outlook == sunny'
    """

    attribute: str = Field(description="Splitting attribute tested at a node.")
    value: str = Field(description="Branch value followed from that node.")

    def __str__(self) -> str:
        """Return a human-readable representation of this condition.

        Returns:
            str: The condition as `"<attribute> == <value>"`.
        """
        return f"{self.attribute} == {self.value}"


class Rule(BaseModel):
    """The path from the root to one leaf, with the leaf's prediction.

    Attributes:
        conditions (list[Condition]): Tests along the path, root first. Empty
            when the tree is a single leaf.
        prediction (str): Value predicted for records satisfying every condition.

    Examples:
        >>> rule = Rule(conditions=[Condition(attribute="outlook", value="overcast")], prediction="true")
        >>> str(rule)
        'outlook == overcast -> true'
    """

    conditions: list[Condition] = Field(description="Tests along the path, root first.")
    prediction: str = Field(description="Value predicted at the leaf.")

    def __str__(self) -> str:
        """Return a human-readable representation of this rule.

        Returns:
            str: Conditions joined by `AND`, then `-> prediction`.
        """
        premise = " AND ".join(str(condition) for condition in self.conditions) or "always"
        return f"{premise} -> {self.prediction}"


class EvaluationReport(BaseModel):
    """Accuracy of a tree over labelled records.

    Attributes:
        objective (str): The objective field compared against predictions.
        total (int): Number of records evaluated.
        correct (int): Records whose prediction equals their objective value.
        unresolved (int): Records the tree could not classify (missing attribute
            or unseen category).
        accuracy (float): `correct / total`.
        confusion (dict[str, dict[str, int]]): Counts keyed by actual value,
            then predicted value. Unresolved records are not included.
    """

    objective: str = Field(description="The objective field compared against predictions.")
    total: int = Field(ge=1, description="Number of records evaluated.")
    correct: int = Field(ge=0, description="Records predicted correctly.")
    unresolved: int = Field(ge=0, description="Records the tree could not classify.")
    accuracy: float = Field(ge=0.0, le=1.0, description="Fraction of records predicted correctly.")
    confusion: dict[str, dict[str, int]] = Field(
        default_factory=dict,
        description="Counts keyed by actual value, then predicted value.",
    )

    @model_validator(mode="after")
    def _validate_counts(self) -> EvaluationReport:
        """Validate that correct and unresolved records fit within the total.

        Returns:
            EvaluationReport: The validated model instance.

        Raises:
            ValueError: If `correct + unresolved` exceeds `total`.
        """
        if self.correct + self.unresolved > self.total:
            raise ValueError(
                f"correct ({self.correct}) + unresolved ({self.unresolved}) exceeds total ({self.total})"
            )
        return self


def extract_rules(tree: Leaf | DecisionTree) -> list[Rule]:
    """Return one rule per leaf, in sorted branch order.

    Args:
        tree (Leaf | DecisionTree): A built tree.

    Returns:
        list[Rule]: Rules whose count equals `tree.leaf_count`.

    Examples:
        >>> windy = DecisionTree(attribute="windy", branches={"true": "false", "false": "true"})
        >>> [str(rule) for rule in extract_rules(windy)]
        ['windy == false -> true', 'windy == true -> false']
    """
    rules: list[Rule] = []
    _collect_rules(tree, [], rules)
    return rules


def _collect_rules(node: Leaf | DecisionTree, path: list[Condition], rules: list[Rule]) -> None:
    if isinstance(node, Leaf):
        rules.append(Rule(conditions=list(path), prediction=node.value))
        return
    for value in sorted(node.branches):
        path.append(Condition(attribute=node.attribute, value=value))
        _collect_rules(node.branches[value], path, rules)
        path.pop()


def predict(tree: Leaf | DecisionTree, dataset: Dataset) -> list[str | None]:
    """Predict every record of a dataset.

    Args:
        tree (Leaf | DecisionTree): A built tree.
        dataset (Dataset): Records or a Polars DataFrame.

    Returns:
        list[str | None]: One prediction per record; None where the record lacks
            a visited attribute or holds a category unseen in training.
    """
    predictions: list[str | None] = []
    for record in as_records(dataset):
        try:
            predictions.append(tree.search(record))
        except (UnexpectedKeyError, InvalidNodeError):
            predictions.append(None)
    return predictions


def score(tree: Leaf | DecisionTree, dataset: Dataset, objective: str) -> EvaluationReport:
    """Compare predictions against the objective values of labelled records.

    Args:
        tree (Leaf | DecisionTree): A built tree.
        dataset (Dataset): Labelled records or a Polars DataFrame.
        objective (str): The objective field holding the actual values.

    Returns:
        EvaluationReport: Accuracy and confusion counts.

    Raises:
        EmptyDatasetError: If the dataset has no records.
        UnexpectedKeyError: If a record lacks the objective field.
    """
    records = as_records(dataset)
    if not records:
        raise EmptyDatasetError
    for record in records:
        if objective not in record:
            raise UnexpectedKeyError(objective, available_keys=list(record))

    correct = 0
    unresolved = 0
    confusion: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    for record, predicted in zip(records, predict(tree, records), strict=True):
        if predicted is None:
            unresolved += 1
            continue
        actual = record[objective]
        confusion[actual][predicted] += 1
        correct += predicted == actual

    return EvaluationReport(
        objective=objective,
        total=len(records),
        correct=correct,
        unresolved=unresolved,
        accuracy=correct / len(records),
        confusion={actual: dict(row) for actual, row in confusion.items()},
    )
