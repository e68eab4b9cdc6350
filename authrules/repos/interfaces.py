"""
Storage interfaces used by the registries and the lifecycle manager.

Two implementations exist: SQLAlchemy/PostgreSQL (`authrules.repos.backend`)
and in-memory (`authrules.repos.memory`) for tests and dry runs. Services
only depend on these protocols.
"""

from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from authrules.compiler.ir import ArtifactRef, ArtifactSpec
from authrules.compiler.render import RenderContext
from authrules.domain.enums import Operation, OwnerType
from authrules.domain.filters import FilterNode


@dataclass(frozen=True)
class ClaimDefinition:
    claim_id: str
    name: str
    query: str
    value_column: str | None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class RuleDefinition:
    rule_id: str
    relation: str
    operation: Operation
    columns: tuple[str, ...] | None
    filters: tuple[FilterNode, ...]
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class ArtifactRecord:
    owner_type: OwnerType
    owner_id: str
    ref: ArtifactRef


class ClaimStore(Protocol):
    async def get(self, name: str) -> ClaimDefinition | None: ...

    async def list_all(self) -> list[ClaimDefinition]: ...

    async def upsert(
        self, name: str, query: str, value_column: str | None
    ) -> ClaimDefinition: ...

    async def delete(self, name: str) -> bool: ...


class RuleStore(Protocol):
    async def get(self, relation: str, operation: Operation) -> RuleDefinition | None: ...

    async def list_all(self) -> list[RuleDefinition]: ...

    async def list_for_relation(self, relation: str) -> list[RuleDefinition]: ...

    async def upsert(
        self,
        relation: str,
        operation: Operation,
        columns: Sequence[str] | None,
        filters: Sequence[FilterNode],
    ) -> RuleDefinition: ...

    async def delete_relation(self, relation: str) -> int: ...


class ArtifactStore(Protocol):
    async def list_for_owner(self, owner_type: OwnerType, owner_id: str) -> list[ArtifactRef]: ...

    async def list_all(self) -> list[ArtifactRecord]: ...

    async def replace(
        self, owner_type: OwnerType, owner_id: str, refs: Sequence[ArtifactRef]
    ) -> None: ...

    async def delete_for_owner(self, owner_type: OwnerType, owner_id: str) -> int: ...


class ObjectStore(Protocol):
    """
    The backing store's catalog of generated objects.

    `create` raises ArtifactApplyError when the store rejects an object.
    `drop` of a missing object is a no-op.
    """

    async def create(self, spec: ArtifactSpec, context: RenderContext) -> None: ...

    async def drop(self, ref: ArtifactRef) -> None: ...


class Backend(Protocol):
    claims: ClaimStore
    rules: RuleStore
    artifacts: ArtifactStore
    objects: ObjectStore

    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Atomic unit; nests as a savepoint inside an open transaction."""
        ...

    async def commit(self) -> None:
        """Make everything done so far durable."""
        ...
