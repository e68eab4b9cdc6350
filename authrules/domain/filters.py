"""
Filter predicate AST.

A closed tagged union. Nodes are immutable and hashable so compiled output
can be compared structurally. The JSON form uses a "type" discriminator:

    {"type": "eq", "column": "owner_id", "value": {"type": "user_id"}}
    {"type": "in", "column": "org_id", "claim": "org_ids"}
    {"type": "or", "conditions": [...]}

Parsing lives in app-level validation (authrules.compiler.validator) so that
unknown discriminators fail when a rule is defined.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Union

from authrules.domain.enums import NodeType, ValueType

IDENTITY_SUFFIX = "_id"


@dataclass(frozen=True)
class Identity:
    """The caller's own subject id."""

    def to_dict(self) -> dict[str, Any]:
        return {"type": ValueType.USER_ID.value}


@dataclass(frozen=True)
class ClaimMembership:
    """Column value must be in the claim's value set for the caller."""

    claim: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": ValueType.ONE_OF.value, "claim": self.claim}


@dataclass(frozen=True)
class Literal:
    value: str | int | float | bool | None

    def to_dict(self) -> dict[str, Any]:
        return {"type": ValueType.LITERAL.value, "value": self.value}


@dataclass(frozen=True)
class ClaimPropertyCheck:
    """Claim membership plus an equality check on one of the claim's columns."""

    claim: str
    property: str
    allowed_values: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": ValueType.CHECK.value,
            "claim": self.claim,
            "property": self.property,
            "values": list(self.allowed_values),
        }


FilterValue = Union[Identity, ClaimMembership, Literal, ClaimPropertyCheck]


@dataclass(frozen=True)
class Eq:
    column: str
    value: FilterValue

    def to_dict(self) -> dict[str, Any]:
        return {"type": NodeType.EQ.value, "column": self.column, "value": self.value.to_dict()}


@dataclass(frozen=True)
class PropertyCheck:
    """Optional check attached to an InClaim node."""

    property: str
    allowed_values: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"property": self.property, "values": list(self.allowed_values)}


@dataclass(frozen=True)
class InClaim:
    """Shorthand for Eq(column, ClaimMembership | ClaimPropertyCheck)."""

    column: str
    claim: str
    check: PropertyCheck | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": NodeType.IN.value,
            "column": self.column,
            "claim": self.claim,
        }
        if self.check is not None:
            data["check"] = self.check.to_dict()
        return data

    def as_eq(self) -> Eq:
        if self.check is None:
            return Eq(self.column, ClaimMembership(self.claim))
        return Eq(
            self.column,
            ClaimPropertyCheck(self.claim, self.check.property, self.check.allowed_values),
        )


@dataclass(frozen=True)
class Or:
    conditions: tuple[FilterNode, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"type": NodeType.OR.value, "conditions": [c.to_dict() for c in self.conditions]}


@dataclass(frozen=True)
class And:
    conditions: tuple[FilterNode, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"type": NodeType.AND.value, "conditions": [c.to_dict() for c in self.conditions]}


FilterNode = Union[Eq, InClaim, Or, And]
Leaf = Union[Eq, InClaim]


def is_leaf(node: FilterNode) -> bool:
    return isinstance(node, (Eq, InClaim))


def normalize_leaf(node: Leaf) -> Eq:
    """Express an InClaim as the equivalent Eq so consumers handle one shape."""
    return node.as_eq() if isinstance(node, InClaim) else node


def claim_value_column(claim: str, explicit: str | None = None) -> str:
    """
    Column of the claim view that holds the claim's values.

    Without an explicit column, strip one trailing plural "s" and append the
    identity suffix: "org_ids" -> "org_id", "accessible_file_ids" ->
    "accessible_file_id".
    """
    if explicit:
        return explicit
    base = claim[:-1] if claim.endswith("s") else claim
    if base.endswith(IDENTITY_SUFFIX):
        return base
    return base + IDENTITY_SUFFIX


def iter_nodes(nodes: tuple[FilterNode, ...] | list[FilterNode]) -> Iterator[FilterNode]:
    """Depth-first walk over every node, combinators included."""
    for node in nodes:
        yield node
        if isinstance(node, (Or, And)):
            yield from iter_nodes(node.conditions)


def referenced_claims(nodes: tuple[FilterNode, ...] | list[FilterNode]) -> set[str]:
    """Names of all claims a predicate depends on."""
    claims: set[str] = set()
    for node in iter_nodes(nodes):
        if isinstance(node, InClaim):
            claims.add(node.claim)
        elif isinstance(node, Eq) and isinstance(node.value, (ClaimMembership, ClaimPropertyCheck)):
            claims.add(node.value.claim)
    return claims


def filters_to_json(nodes: tuple[FilterNode, ...] | list[FilterNode]) -> list[dict[str, Any]]:
    return [node.to_dict() for node in nodes]
