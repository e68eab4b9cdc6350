"""
JSON canonicalization for stored rule definitions.

Filters are stored in canonical form so that redefining a rule with an
unchanged predicate is a byte-for-byte no-op.
"""

from typing import Any


def canonicalize_json(obj: Any) -> dict | list | Any:
    """
    Produce a deterministic, canonical representation of a JSON object.

    - All dictionary keys are sorted alphabetically
    - Keys whose value is None are dropped (an absent "check" equals a null one)
    - Nested structures are recursively canonicalized
    - List order is preserved; condition order is meaningful to the accessor

    Example:
        >>> canonicalize_json({"type": "in", "claim": "org_ids", "check": None, "column": "org_id"})
        {'claim': 'org_ids', 'column': 'org_id', 'type': 'in'}
    """
    if isinstance(obj, dict):
        return {k: canonicalize_json(v) for k, v in sorted(obj.items()) if v is not None}

    elif isinstance(obj, (list, tuple)):
        return [canonicalize_json(item) for item in obj]

    else:
        return obj
