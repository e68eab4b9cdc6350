"""
In-process predicate evaluation.

Mirrors the SQL produced by `authrules.compiler.render` over plain Python
row mappings, so rules can be exercised without a database:
- Identity compares against the evaluating subject (NULL never matches)
- Claim membership looks up the subject's rows of the claim relation
- Literal None behaves like IS NULL, other literals like "="

Values are compared in their text form, the way PostgreSQL compares a uuid
column with a quoted literal.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from authrules.compiler.render import SUBJECT_COLUMN
from authrules.core.errors import DefinitionError
from authrules.domain.filters import (
    And,
    ClaimMembership,
    ClaimPropertyCheck,
    Eq,
    FilterNode,
    Identity,
    InClaim,
    Literal,
    Or,
    claim_value_column,
)


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class EvaluationContext:
    """
    Who is asking and what the claim relations contain.

    Attributes:
        subject_id: Caller identity (None for an unauthenticated caller)
        claims: Claim name -> rows of the claim relation (all subjects)
        value_columns: Explicit claim -> value column overrides
    """

    subject_id: Any
    claims: Mapping[str, Iterable[Mapping[str, Any]]]
    value_columns: Mapping[str, str] = field(default_factory=dict)

    def claim_values(self, claim: str, check: ClaimPropertyCheck | None = None) -> set[str]:
        """Values the subject holds for a claim, in text form."""
        if claim not in self.claims:
            raise DefinitionError(f"Claim '{claim}' is not defined", details={"claim": claim})

        subject = _text(self.subject_id)
        if subject is None:
            return set()

        value_column = claim_value_column(claim, self.value_columns.get(claim))
        allowed = set(check.allowed_values) if check is not None else None

        values: set[str] = set()
        for row in self.claims[claim]:
            if _text(row.get(SUBJECT_COLUMN)) != subject:
                continue
            if allowed is not None and _text(row.get(check.property)) not in allowed:
                continue
            value = _text(row.get(value_column))
            if value is not None:
                values.add(value)
        return values


def _column_value(row: Mapping[str, Any], column: str) -> str | None:
    if column not in row:
        raise DefinitionError(
            f"Column '{column}' does not exist on the row", details={"column": column}
        )
    return _text(row[column])


def evaluate_leaf(node: Eq | InClaim, row: Mapping[str, Any], context: EvaluationContext) -> bool:
    if isinstance(node, InClaim):
        node = node.as_eq()

    actual = _column_value(row, node.column)
    value = node.value

    if isinstance(value, Literal):
        if value.value is None:
            return actual is None
        return actual is not None and actual == _text(value.value)

    if actual is None:
        return False
    if isinstance(value, Identity):
        return actual == _text(context.subject_id)
    if isinstance(value, ClaimMembership):
        return actual in context.claim_values(value.claim)
    if isinstance(value, ClaimPropertyCheck):
        return actual in context.claim_values(value.claim, value)
    raise TypeError(f"Unsupported filter value: {value!r}")


def evaluate(node: FilterNode, row: Mapping[str, Any], context: EvaluationContext) -> bool:
    """Evaluate a filter node against a single row."""
    if isinstance(node, (Eq, InClaim)):
        return evaluate_leaf(node, row, context)
    if isinstance(node, Or):
        return any(evaluate(c, row, context) for c in node.conditions)
    if isinstance(node, And):
        return all(evaluate(c, row, context) for c in node.conditions)
    raise TypeError(f"Unsupported filter node: {node!r}")


def evaluate_all(
    filters: Iterable[FilterNode], row: Mapping[str, Any], context: EvaluationContext
) -> bool:
    """Top-level filters are AND-ed; an empty list matches every row."""
    return all(evaluate(node, row, context) for node in filters)
