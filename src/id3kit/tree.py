"""Decision tree data model and record lookup.

A tree is built from two frozen pydantic models joined by a discriminated
union: a `Leaf` holds a predicted value, a `DecisionTree` node holds a
splitting attribute and one `Branch` per observed attribute value. Because
every child carries its `kind` tag, search and equality never need to guess
what a child is.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from id3kit.exceptions import InvalidNodeError, UnexpectedKeyError

__all__ = ["Branch", "DecisionTree", "Leaf", "search"]


class Leaf(BaseModel):
    """Terminal node holding a predicted objective value.

    Attributes:
        kind (Literal["leaf"]): Discriminator field; always `"leaf"`.
        value (str): The predicted value.

    Examples:
        >>> Leaf(value="true").search({"outlook": "overcast"})
        'true'
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["leaf"] = Field(default="leaf", description='Discriminator field. Always "leaf".')
    value: str = Field(description="Predicted objective value.")

    def search(self, record: Mapping[str, str]) -> str:  # noqa: ARG002
        """Return the predicted value.

        Args:
            record (Mapping[str, str]): The record being classified (unused at a leaf).

        Returns:
            str: The leaf value.
        """
        return self.value

    @property
    def depth(self) -> int:
        """int: Number of splits below this node; always 0 for a leaf."""
        return 0

    @property
    def leaf_count(self) -> int:
        """int: Number of leaves in this subtree; always 1 for a leaf."""
        return 1

    def render(self, indent: int = 0) -> str:  # noqa: ARG002
        """Return the leaf value as text.

        Args:
            indent (int): Unused; kept for a uniform interface with DecisionTree.

        Returns:
            str: The leaf value.
        """
        return self.value


class DecisionTree(BaseModel):
    """Internal node splitting records on one attribute.

    Branch keys are exactly the distinct values of `attribute` observed in the
    partition that produced the node, so a node has at least one branch.
    Branches are held in a read-only mapping, which makes a node immutable and
    hashable. Equality is structural and does not depend on branch insertion
    order. Plain strings passed as branches are accepted as shorthand for leaves.

    Attributes:
        kind (Literal["node"]): Discriminator field; always `"node"`.
        attribute (str): Name of the splitting attribute.
        branches (Mapping[str, Branch]): Read-only mapping with one child per attribute value.

    Examples:
        >>> windy = DecisionTree(attribute="windy", branches={"true": "false", "false": "true"})
        >>> windy.search({"windy": "false"})
        'true'
        >>> windy == DecisionTree(attribute="windy", branches={"false": "true", "true": "false"})
        True
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["node"] = Field(default="node", description='Discriminator field. Always "node".')
    attribute: str = Field(description="Name of the splitting attribute.")
    branches: Mapping[str, Branch] = Field(
        min_length=1, description="One child per observed value of the splitting attribute."
    )

    @field_validator("branches", mode="before")
    @classmethod
    def _coerce_leaf_shorthand(cls, value: Any) -> Any:
        """Wrap plain string branch values into leaf payloads.

        Args:
            value (Any): The raw branches mapping.

        Returns:
            Any: The mapping with string values replaced by leaf payloads.
        """
        if isinstance(value, Mapping):
            return {
                key: {"kind": "leaf", "value": child} if isinstance(child, str) else child
                for key, child in value.items()
            }
        return value

    @field_validator("branches", mode="after")
    @classmethod
    def _freeze_branches(cls, value: Mapping[str, Branch]) -> Mapping[str, Branch]:
        return MappingProxyType(dict(value))

    @field_serializer("branches")
    def _serialize_branches(self, branches: Mapping[str, Branch]) -> dict[str, Branch]:
        return dict(branches)

    def __hash__(self) -> int:
        return hash((self.attribute, frozenset(self.branches.items())))

    def search(self, record: Mapping[str, str]) -> str:
        """Walk the tree with a record and return the predicted value.

        Args:
            record (Mapping[str, str]): Attribute values of the record to classify.

        Returns:
            str: The predicted objective value.

        Raises:
            UnexpectedKeyError: If the record lacks the splitting attribute of a visited node.
            InvalidNodeError: If the record's value has no branch at a visited node.
        """
        if self.attribute not in record:
            raise UnexpectedKeyError(self.attribute, available_keys=list(record))
        value = record[self.attribute]
        child = self.branches.get(value)
        if child is None:
            raise InvalidNodeError(self.attribute, value)
        return child.search(record)

    @property
    def depth(self) -> int:
        """int: Number of splits on the longest root-to-leaf path."""
        return 1 + max((child.depth for child in self.branches.values()), default=0)

    @property
    def leaf_count(self) -> int:
        """int: Number of leaves in this subtree."""
        return sum(child.leaf_count for child in self.branches.values())

    @property
    def attributes(self) -> frozenset[str]:
        """frozenset[str]: Every attribute used as a split anywhere in this subtree."""
        return frozenset(node.attribute for node in self.iter_nodes())

    def iter_nodes(self) -> Iterator[DecisionTree]:
        """Yield this node and every descendant node, depth first.

        Yields:
            DecisionTree: Internal nodes in pre-order; branches visited in sorted key order.
        """
        yield self
        for key in sorted(self.branches):
            child = self.branches[key]
            if isinstance(child, DecisionTree):
                yield from child.iter_nodes()

    def render(self, indent: int = 0) -> str:
        """Return an indented text rendering of the tree.

        Args:
            indent (int): Number of leading spaces for this node's branches.

        Returns:
            str: One line per branch, e.g. `outlook = sunny -> humid`.

        Examples:
            >>> print(DecisionTree(attribute="windy", branches={"true": "false", "false": "true"}).render())
            windy = false -> true
            windy = true -> false
        """
        lines = []
        for key in sorted(self.branches):
            child = self.branches[key]
            if isinstance(child, DecisionTree):
                lines.append(f"{' ' * indent}{self.attribute} = {key} -> {child.attribute}")
                lines.append(child.render(indent + 2))
            else:
                lines.append(f"{' ' * indent}{self.attribute} = {key} -> {child.value}")
        return "\n".join(lines)


# Use this alias wherever a child may be either a leaf or a subtree; pydantic selects the model by `kind`.
type Branch = Annotated[Leaf | DecisionTree, Field(discriminator="kind")]

DecisionTree.model_rebuild()


def search(tree: Leaf | DecisionTree, record: Mapping[str, str]) -> str:
    """Predict the objective value for a record.

    Args:
        tree (Leaf | DecisionTree): A tree returned by a builder.
        record (Mapping[str, str]): Attribute values of the record to classify.

    Returns:
        str: The predicted objective value.

    Raises:
        UnexpectedKeyError: If the record lacks a visited node's splitting attribute.
        InvalidNodeError: If a record value has no branch (a category unseen in training).
    """
    return tree.search(record)
