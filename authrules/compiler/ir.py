"""
Intermediate representation of compiled rules and claims.

Specs are plain immutable values: they say WHAT to generate and name every
backing-store object it produces (`objects()`), but contain no SQL. DDL is
produced from them by `authrules.compiler.ddl`, in-process checks by
`authrules.services.simulation`.
"""

from dataclasses import dataclass, field
from typing import Any, Union

from authrules.domain.enums import (
    ArtifactKind,
    DegradationReason,
    GuardEvent,
    ObjectType,
    Operation,
)
from authrules.domain.filters import Eq, FilterNode

ACCESSOR_PREFIX = "get_"
PARAMETER_PREFIX = "p_"


@dataclass(frozen=True)
class ArtifactRef:
    """
    One object in the backing store.

    `on_relation` is only set for triggers: the relation (in the same
    schema) the trigger is attached to.
    """

    kind: ArtifactKind
    object_type: ObjectType
    schema: str
    name: str
    on_relation: str | None = None

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "object_type": self.object_type.value,
            "object_schema": self.schema,
            "object_name": self.name,
            "on_relation": self.on_relation,
        }


@dataclass(frozen=True)
class CompileDegradation:
    """A part of a rule that compiled to less than requested. Reported, never raised."""

    reason: DegradationReason
    message: str
    relation: str
    operation: Operation
    details: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "reason": self.reason.value,
            "message": self.message,
            "relation": self.relation,
            "operation": self.operation.value,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class DerivedRelationSpec:
    """A claim compiled to a definer-rights view."""

    schema: str
    name: str
    query: str
    value_column: str
    grant_to: tuple[str, ...]
    required: bool = True

    def objects(self) -> tuple[ArtifactRef, ...]:
        return (ArtifactRef(ArtifactKind.DERIVED_RELATION, ObjectType.VIEW, self.schema, self.name),)


@dataclass(frozen=True)
class ProjectionSpec:
    """Silently filtered view over the base relation."""

    schema: str
    relation: str
    source_schema: str
    columns: tuple[str, ...]
    filters: tuple[FilterNode, ...]
    grant_to: tuple[str, ...]
    required: bool = True

    def objects(self) -> tuple[ArtifactRef, ...]:
        return (ArtifactRef(ArtifactKind.PROJECTION, ObjectType.VIEW, self.schema, self.relation),)


@dataclass(frozen=True)
class AccessorParameter:
    """
    Function parameter derived from one Eq condition.

    Identity-based parameters default to the caller's identity; claim-based
    ones must be supplied.
    """

    name: str
    condition: Eq
    defaults_to_identity: bool

    @property
    def column(self) -> str:
        return self.condition.column


@dataclass(frozen=True)
class AccessorSpec:
    """Strict accessor: validates every parameter and raises instead of filtering."""

    schema: str
    relation: str
    source_schema: str
    columns: tuple[str, ...]
    parameters: tuple[AccessorParameter, ...]
    literal_filters: tuple[Eq, ...]
    grant_to: tuple[str, ...]
    required: bool = False

    @property
    def name(self) -> str:
        return ACCESSOR_PREFIX + self.relation

    def objects(self) -> tuple[ArtifactRef, ...]:
        return (ArtifactRef(ArtifactKind.ACCESSOR, ObjectType.FUNCTION, self.schema, self.name),)


@dataclass(frozen=True)
class GuardSpec:
    """
    Write guard on the projection view.

    create: every condition is checked against the NEW row.
    update/delete: conditions scope the real mutation on the base relation.
    """

    schema: str
    relation: str
    source_schema: str
    event: GuardEvent
    conditions: tuple[Eq, ...]
    columns: tuple[str, ...]
    key_column: str
    grant_to: tuple[str, ...]
    required: bool = True

    @property
    def function_name(self) -> str:
        return f"{self.relation}_{self.event.value}_guard"

    @property
    def trigger_name(self) -> str:
        return f"{self.relation}_{self.event.value}"

    def objects(self) -> tuple[ArtifactRef, ...]:
        return (
            ArtifactRef(ArtifactKind.GUARD, ObjectType.FUNCTION, self.schema, self.function_name),
            ArtifactRef(
                ArtifactKind.GUARD,
                ObjectType.TRIGGER,
                self.schema,
                self.trigger_name,
                on_relation=self.relation,
            ),
        )


ArtifactSpec = Union[DerivedRelationSpec, ProjectionSpec, AccessorSpec, GuardSpec]


@dataclass(frozen=True)
class CompiledRule:
    """Everything one rule compiles to."""

    relation: str
    operation: Operation
    specs: tuple[ArtifactSpec, ...]
    degradations: tuple[CompileDegradation, ...] = ()

    def objects(self) -> tuple[ArtifactRef, ...]:
        return tuple(ref for spec in self.specs for ref in spec.objects())

    @property
    def projection(self) -> ProjectionSpec | None:
        return next((s for s in self.specs if isinstance(s, ProjectionSpec)), None)

    @property
    def accessor(self) -> AccessorSpec | None:
        return next((s for s in self.specs if isinstance(s, AccessorSpec)), None)

    @property
    def guard(self) -> GuardSpec | None:
        return next((s for s in self.specs if isinstance(s, GuardSpec)), None)
