"""
Rule and claim compiler.

Turns claim and rule definitions into runtime-enforced database objects.

Key Components:
- validator: Parses filter predicates and validates rule definitions
- compiler: Builds pure IR specs (projection, accessor, guards, claim views)
- ddl: Renders IR specs into PostgreSQL DDL
- evaluator: Evaluates filter predicates in-process
- canonicalizer: Deterministic JSON for stored predicates

Design Principles:
- Determinism: Same definition produces byte-for-byte identical DDL
- Validation: Unknown node kinds and claims fail at definition time
- Explicitness: Silent filtering and explicit denial are separate objects
"""

from authrules.compiler.canonicalizer import canonicalize_json
from authrules.compiler.compiler import CompilerOptions, compile_claim, compile_rule
from authrules.compiler.validator import parse_filters, validate_rule_definition

__all__ = [
    "CompilerOptions",
    "compile_claim",
    "compile_rule",
    "parse_filters",
    "validate_rule_definition",
    "canonicalize_json",
]
