"""Reusable SQLAlchemy validators for the registry tables."""

import uuid
from typing import Any

from authrules.compiler.canonicalizer import canonicalize_json


def validate_uuid_string(_key: str, value: uuid.UUID | str) -> str:
    """Convert UUID to string and validate format.

    Args:
        _key: The field name being validated (unused, required by SQLAlchemy)
        value: UUID object or string representation

    Returns:
        String representation of the UUID

    Raises:
        ValueError: If the value is not a valid UUID format
    """
    if isinstance(value, uuid.UUID):
        return str(value)

    if not isinstance(value, str):
        raise ValueError(f"Expected UUID or str, got {type(value).__name__}")

    try:
        uuid.UUID(value)
        return value
    except ValueError:
        raise ValueError(f"Invalid UUID format: {value}")


def validate_filters_payload(_key: str, value: Any) -> list:
    """Store filter predicates as canonical JSON (sorted keys, no null members)."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"Expected a list of filter nodes, got {type(value).__name__}")
    return canonicalize_json(value)
