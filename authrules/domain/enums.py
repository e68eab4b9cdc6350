"""
Domain enums shared by the registry tables, the compiler and the API.
"""

from enum import Enum


class Operation(str, Enum):
    """Operation a rule governs. Matches auth_rules.rules.operation."""

    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @property
    def is_write(self) -> bool:
        return self is not Operation.READ


class NodeType(str, Enum):
    """Discriminator of filter predicate nodes."""

    EQ = "eq"
    IN = "in"
    OR = "or"
    AND = "and"


class ValueType(str, Enum):
    """Discriminator of the value side of an eq node."""

    USER_ID = "user_id"
    ONE_OF = "one_of"
    LITERAL = "literal"
    CHECK = "check"


class OwnerType(str, Enum):
    """What a generated artifact record belongs to."""

    RULE = "rule"
    CLAIM = "claim"


class ArtifactKind(str, Enum):
    """
    Role of a generated artifact.

    PROJECTION: silently filtered view for browsing
    ACCESSOR: strict function that raises instead of filtering
    GUARD: write-time check (trigger and trigger function)
    DERIVED_RELATION: claim view
    """

    PROJECTION = "projection"
    ACCESSOR = "accessor"
    GUARD = "guard"
    DERIVED_RELATION = "derived_relation"


class ObjectType(str, Enum):
    """Backing-store object type. Determines the DROP statement."""

    VIEW = "view"
    FUNCTION = "function"
    TRIGGER = "trigger"


class GuardEvent(str, Enum):
    """Trigger event of a write guard."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class DegradationReason(str, Enum):
    """Why part of a rule compiled to less than the full artifact set."""

    COMBINATOR_IN_ACCESSOR = "combinator_in_accessor"
    DUPLICATE_PARAMETER = "duplicate_parameter"
    ACCESSOR_APPLY_FAILED = "accessor_apply_failed"
    COMBINATOR_IN_GUARD = "combinator_in_guard"


OPERATION_TO_EVENT = {
    Operation.CREATE: GuardEvent.INSERT,
    Operation.UPDATE: GuardEvent.UPDATE,
    Operation.DELETE: GuardEvent.DELETE,
}
