"""
Filter Predicate Parsing and Validation.

Turns untyped JSON payloads into the closed filter AST and validates rule
definitions before anything is stored:
- Every node carries a known "type" discriminator
- Combinators hold a non-empty list of conditions
- Every referenced claim exists
- Read rules project at least one column

This validation is the gatekeeper: unknown node kinds fail here, at
definition time, and never at evaluation time.
"""

import logging
import re
from collections.abc import Iterable
from typing import Any

from authrules.core.errors import DefinitionError
from authrules.domain.enums import NodeType, Operation, ValueType
from authrules.domain.filters import (
    And,
    ClaimMembership,
    ClaimPropertyCheck,
    Eq,
    FilterNode,
    FilterValue,
    Identity,
    InClaim,
    Literal,
    Or,
    PropertyCheck,
    iter_nodes,
    referenced_claims,
)

logger = logging.getLogger(__name__)

MAX_DEPTH = 10
LITERAL_TYPES = (str, int, float, bool, type(None))

# Generated names add prefixes/suffixes ("get_", "_update_guard"), so names
# stay well below PostgreSQL's 63 byte identifier limit.
MAX_NAME_LENGTH = 48
_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def check_name(value: Any, what: str) -> str:
    """
    Validate a relation, column or claim name.

    Raises:
        DefinitionError: If the name is empty, too long or not a plain identifier
    """
    if not isinstance(value, str) or not value.strip():
        raise DefinitionError(f"{what.capitalize()} name cannot be empty", details={what: value})
    value = value.strip()
    if len(value) > MAX_NAME_LENGTH or not _NAME_RE.match(value):
        raise DefinitionError(
            f"Invalid {what} name: {value}",
            details={what: value, "max_length": MAX_NAME_LENGTH},
        )
    return value


def parse_filters(payload: Any) -> tuple[FilterNode, ...]:
    """
    Parse a predicate payload into AST nodes.

    Accepts a single node object or a list of nodes (implicitly AND-ed).
    AST nodes built in Python are checked with the same rules as JSON input.

    Args:
        payload: JSON-like predicate description, AST node(s), or None

    Returns:
        Tuple of filter nodes (empty when payload is None or [])

    Raises:
        DefinitionError: If any node is malformed or of an unknown kind

    Example:
        >>> parse_filters({"type": "in", "column": "org_id", "claim": "org_ids"})
        (InClaim(column='org_id', claim='org_ids', check=None),)
    """
    if payload is None:
        return ()
    if isinstance(payload, (dict, Eq, InClaim, Or, And)):
        payload = [payload]
    if not isinstance(payload, (list, tuple)):
        raise DefinitionError(
            "Predicate must be a node or a list of nodes",
            details={"path": "$", "type": type(payload).__name__},
        )
    return tuple(_parse_node(node, f"$[{i}]", depth=1) for i, node in enumerate(payload))


def _parse_node(node: Any, path: str, depth: int) -> FilterNode:
    if depth > MAX_DEPTH:
        raise DefinitionError(
            f"Predicate nesting exceeds {MAX_DEPTH} levels at {path}", details={"path": path}
        )

    if isinstance(node, (Eq, InClaim, Or, And)):
        return _check_node(node, path, depth)

    if not isinstance(node, dict):
        raise DefinitionError(
            f"Predicate node must be an object at {path}",
            details={"path": path, "type": type(node).__name__},
        )

    raw_type = node.get("type")
    try:
        node_type = NodeType(raw_type)
    except ValueError:
        raise DefinitionError(
            f"Unknown filter type: {raw_type}", details={"path": path, "type": raw_type}
        ) from None

    if node_type is NodeType.EQ:
        column = _require_name(node, "column", path)
        if "value" not in node:
            raise DefinitionError(f"'eq' requires a value at {path}", details={"path": path})
        return Eq(column, _parse_value(node["value"], f"{path}.value"))

    if node_type is NodeType.IN:
        column = _require_name(node, "column", path)
        claim = _require_name(node, "claim", path)
        check = node.get("check")
        if check is None:
            return InClaim(column, claim)
        if not isinstance(check, dict):
            raise DefinitionError(
                f"'check' must be an object at {path}.check", details={"path": f"{path}.check"}
            )
        return InClaim(
            column,
            claim,
            PropertyCheck(
                _require_name(check, "property", f"{path}.check"),
                _parse_allowed_values(check.get("values"), f"{path}.check.values"),
            ),
        )

    children = node.get("conditions")
    if not isinstance(children, list):
        raise DefinitionError(
            f"'conditions' must be a list at {path}",
            details={"path": path, "type": type(children).__name__},
        )
    if len(children) == 0:
        raise DefinitionError(f"'conditions' cannot be empty at {path}", details={"path": path})

    parsed = tuple(
        _parse_node(child, f"{path}.conditions[{i}]", depth + 1) for i, child in enumerate(children)
    )
    return Or(parsed) if node_type is NodeType.OR else And(parsed)


def _check_node(node: FilterNode, path: str, depth: int) -> FilterNode:
    """Validate a node built in Python with the same rules as the JSON form."""
    if isinstance(node, Eq):
        column = _require_name({"column": node.column}, "column", path)
        if not isinstance(node.value, (Identity, ClaimMembership, Literal, ClaimPropertyCheck)):
            raise DefinitionError(
                f"Unsupported filter value at {path}.value",
                details={"path": f"{path}.value", "type": type(node.value).__name__},
            )
        if isinstance(node.value, Literal) and not isinstance(node.value.value, LITERAL_TYPES):
            raise DefinitionError(
                f"Literal must be a scalar at {path}.value",
                details={"path": f"{path}.value", "type": type(node.value.value).__name__},
            )
        return Eq(column, node.value)

    if isinstance(node, InClaim):
        column = _require_name({"column": node.column}, "column", path)
        claim = _require_name({"claim": node.claim}, "claim", path)
        if node.check is not None and not isinstance(node.check, PropertyCheck):
            raise DefinitionError(
                f"'check' must be a PropertyCheck at {path}.check",
                details={"path": f"{path}.check", "type": type(node.check).__name__},
            )
        return InClaim(column, claim, node.check)

    children = node.conditions
    if not isinstance(children, (list, tuple)) or len(children) == 0:
        raise DefinitionError(f"'conditions' cannot be empty at {path}", details={"path": path})
    parsed = tuple(
        _parse_node(child, f"{path}.conditions[{i}]", depth + 1) for i, child in enumerate(children)
    )
    return Or(parsed) if isinstance(node, Or) else And(parsed)


def _parse_value(value: Any, path: str) -> FilterValue:
    if isinstance(value, (Identity, ClaimMembership, Literal, ClaimPropertyCheck)):
        return value

    # Bare scalars are shorthand for literals
    if isinstance(value, LITERAL_TYPES):
        return Literal(value)

    if not isinstance(value, dict):
        raise DefinitionError(
            f"Value must be an object or scalar at {path}",
            details={"path": path, "type": type(value).__name__},
        )

    raw_type = value.get("type")
    try:
        value_type = ValueType(raw_type)
    except ValueError:
        raise DefinitionError(
            f"Unknown value type: {raw_type}", details={"path": path, "type": raw_type}
        ) from None

    if value_type is ValueType.USER_ID:
        return Identity()
    if value_type is ValueType.ONE_OF:
        return ClaimMembership(_require_name(value, "claim", path))
    if value_type is ValueType.LITERAL:
        literal = value.get("value")
        if not isinstance(literal, LITERAL_TYPES):
            raise DefinitionError(
                f"Literal must be a scalar at {path}",
                details={"path": path, "type": type(literal).__name__},
            )
        return Literal(literal)
    return ClaimPropertyCheck(
        _require_name(value, "claim", path),
        _require_name(value, "property", path),
        _parse_allowed_values(value.get("values"), f"{path}.values"),
    )


def _require_name(node: dict, key: str, path: str) -> str:
    value = node.get(key)
    if not isinstance(value, str) or not value.strip():
        raise DefinitionError(
            f"'{key}' must be a non-empty string at {path}", details={"path": path, "key": key}
        )
    return value.strip()


def _parse_allowed_values(values: Any, path: str) -> tuple[str, ...]:
    if not isinstance(values, list) or len(values) == 0:
        raise DefinitionError(
            f"'values' must be a non-empty list at {path}", details={"path": path}
        )
    if not all(isinstance(v, (str, int)) and not isinstance(v, bool) for v in values):
        raise DefinitionError(
            f"'values' must contain strings at {path}", details={"path": path}
        )
    return tuple(str(v) for v in values)


def validate_rule_definition(
    *,
    relation: str,
    operation: Operation,
    columns: Iterable[str] | None,
    filters: tuple[FilterNode, ...],
    known_claims: Iterable[str],
    strict_write_guards: bool = False,
) -> tuple[str, ...] | None:
    """
    Validate a parsed rule definition.

    Args:
        relation: Base relation name
        operation: Rule operation
        columns: Projection columns (read rules only)
        filters: Parsed predicate
        known_claims: Names of currently defined claims
        strict_write_guards: Reject Or/And in write rules instead of ignoring them

    Returns:
        The normalized column tuple for read rules, None for write rules

    Raises:
        DefinitionError: If the definition cannot be compiled
    """
    relation = check_name(relation, "relation")

    for node in iter_nodes(filters):
        if isinstance(node, (Eq, InClaim)):
            check_name(node.column, "column")

    missing = sorted(referenced_claims(filters) - set(known_claims))
    if missing:
        raise DefinitionError(
            f"Rule references undefined claim(s): {', '.join(missing)}",
            details={"relation": relation, "operation": operation.value, "claims": missing},
        )

    if operation.is_write:
        if columns:
            raise DefinitionError(
                "Only read rules take a column projection",
                details={"relation": relation, "operation": operation.value},
            )
        if strict_write_guards and any(isinstance(n, (Or, And)) for n in iter_nodes(filters)):
            raise DefinitionError(
                "Or/And conditions are not supported in write rules",
                details={"relation": relation, "operation": operation.value},
            )
        return None

    normalized = tuple(check_name(c, "column") for c in (columns or ()))
    if not normalized:
        raise DefinitionError(
            "Read rules must project at least one column", details={"relation": relation}
        )
    if len(set(normalized)) != len(normalized):
        raise DefinitionError(
            "Projection columns must be unique",
            details={"relation": relation, "columns": list(normalized)},
        )
    return normalized
