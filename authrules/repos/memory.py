"""
In-memory backend for tests and dry runs.

Behaves like the PostgreSQL backend where it matters to the lifecycle:
- creating an object that already exists fails
- projections need their claim views, accessors and guards need the projection
- dropping a view that another object depends on fails
- dropping a view silently drops the triggers attached to it
- a failed transaction (or savepoint) restores the previous state
"""

import copy
import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import UTC, datetime

from authrules.compiler import ddl
from authrules.compiler.ir import (
    AccessorSpec,
    ArtifactRef,
    ArtifactSpec,
    GuardSpec,
    ProjectionSpec,
)
from authrules.compiler.render import RenderContext
from authrules.core.errors import ArtifactApplyError
from authrules.domain.enums import ObjectType, Operation, OwnerType
from authrules.domain.filters import FilterNode, referenced_claims
from authrules.repos.interfaces import ArtifactRecord, ClaimDefinition, RuleDefinition
from authrules.repos.rule_repo import sort_rules

ObjectKey = tuple[ObjectType, str, str]


def _key(ref: ArtifactRef) -> ObjectKey:
    return (ref.object_type, ref.schema, ref.name)


def _depends_on_view(spec: ArtifactSpec, context: RenderContext, view: ArtifactRef) -> bool:
    if isinstance(spec, ProjectionSpec):
        return view.schema == context.claims_schema and view.name in referenced_claims(
            spec.filters
        )
    if isinstance(spec, AccessorSpec):
        return (spec.schema, spec.relation) == (view.schema, view.name)
    return False


class MemoryClaimStore:
    def __init__(self):
        self.rows: dict[str, ClaimDefinition] = {}

    async def get(self, name: str) -> ClaimDefinition | None:
        return self.rows.get(name)

    async def list_all(self) -> list[ClaimDefinition]:
        return [self.rows[name] for name in sorted(self.rows)]

    async def upsert(self, name: str, query: str, value_column: str | None) -> ClaimDefinition:
        now = datetime.now(UTC)
        existing = self.rows.get(name)
        if existing is None:
            row = ClaimDefinition(str(uuid.uuid4()), name, query, value_column, now, now)
        else:
            row = replace(existing, query=query, value_column=value_column, updated_at=now)
        self.rows[name] = row
        return row

    async def delete(self, name: str) -> bool:
        return self.rows.pop(name, None) is not None


class MemoryRuleStore:
    def __init__(self):
        self.rows: dict[tuple[str, Operation], RuleDefinition] = {}

    async def get(self, relation: str, operation: Operation) -> RuleDefinition | None:
        return self.rows.get((relation, operation))

    async def list_all(self) -> list[RuleDefinition]:
        return sort_rules(list(self.rows.values()))

    async def list_for_relation(self, relation: str) -> list[RuleDefinition]:
        return sort_rules([r for r in self.rows.values() if r.relation == relation])

    async def upsert(
        self,
        relation: str,
        operation: Operation,
        columns: Sequence[str] | None,
        filters: Sequence[FilterNode],
    ) -> RuleDefinition:
        now = datetime.now(UTC)
        column_tuple = tuple(columns) if columns is not None else None
        existing = self.rows.get((relation, operation))
        if existing is None:
            row = RuleDefinition(
                str(uuid.uuid4()), relation, operation, column_tuple, tuple(filters), now, now
            )
        else:
            row = replace(existing, columns=column_tuple, filters=tuple(filters), updated_at=now)
        self.rows[(relation, operation)] = row
        return row

    async def delete_relation(self, relation: str) -> int:
        keys = [key for key in self.rows if key[0] == relation]
        for key in keys:
            del self.rows[key]
        return len(keys)


class MemoryArtifactStore:
    def __init__(self):
        self.rows: dict[tuple[OwnerType, str], list[ArtifactRef]] = {}

    async def list_for_owner(self, owner_type: OwnerType, owner_id: str) -> list[ArtifactRef]:
        return list(self.rows.get((owner_type, owner_id), []))

    async def list_all(self) -> list[ArtifactRecord]:
        records = [
            ArtifactRecord(owner_type, owner_id, ref)
            for (owner_type, owner_id), refs in self.rows.items()
            for ref in refs
        ]
        return sorted(records, key=lambda r: (r.ref.schema, r.ref.name))

    async def replace(
        self, owner_type: OwnerType, owner_id: str, refs: Sequence[ArtifactRef]
    ) -> None:
        if refs:
            self.rows[(owner_type, owner_id)] = list(refs)
        else:
            self.rows.pop((owner_type, owner_id), None)

    async def delete_for_owner(self, owner_type: OwnerType, owner_id: str) -> int:
        return len(self.rows.pop((owner_type, owner_id), []))


class MemoryObjectStore:
    """
    Catalog of objects keyed by (type, schema, name).

    Attributes:
        tables: Optional base relation -> column names; when set, projections
                over unknown relations or columns are rejected
        fail_on: Qualified object names whose creation is rejected
        statements: DDL that would have been executed, in order
    """

    def __init__(self, tables: dict[str, set[str]] | None = None):
        self.tables = tables
        self.fail_on: set[str] = set()
        self.objects: dict[ObjectKey, tuple[ArtifactSpec, RenderContext]] = {}
        self.statements: list[str] = []

    def exists(self, object_type: ObjectType, schema: str, name: str) -> bool:
        return (object_type, schema, name) in self.objects

    def names(self, object_type: ObjectType | None = None) -> set[str]:
        return {
            f"{schema}.{name}"
            for (type_, schema, name) in self.objects
            if object_type is None or type_ is object_type
        }

    async def create(self, spec: ArtifactSpec, context: RenderContext) -> None:
        refs = spec.objects()
        for ref in refs:
            if ref.qualified_name in self.fail_on:
                raise ArtifactApplyError(
                    f"Could not create {ref.qualified_name}: rejected",
                    details={"objects": [ref.qualified_name]},
                )
            if _key(ref) in self.objects:
                raise ArtifactApplyError(
                    f"{ref.object_type.value} {ref.qualified_name} already exists",
                    details={"objects": [ref.qualified_name]},
                )

        self._check_dependencies(spec, context)
        self.statements.extend(ddl.create_statements(spec, context))
        for ref in refs:
            self.objects[_key(ref)] = (spec, context)

    async def drop(self, ref: ArtifactRef) -> None:
        key = _key(ref)
        if key not in self.objects:
            return

        if ref.object_type is ObjectType.VIEW:
            dependents = sorted(
                f"{schema}.{name}"
                for (type_, schema, name), (spec, created_with) in self.objects.items()
                if type_ is not ObjectType.TRIGGER and _depends_on_view(spec, created_with, ref)
            )
            if dependents:
                raise ArtifactApplyError(
                    f"Cannot drop view {ref.qualified_name}: other objects depend on it",
                    details={"object": ref.qualified_name, "dependents": dependents},
                )
            # Triggers go away with the view they are attached to
            for other in [k for k, s in self.objects.items() if k[0] is ObjectType.TRIGGER]:
                spec, _ = self.objects[other]
                if isinstance(spec, GuardSpec) and (spec.schema, spec.relation) == key[1:]:
                    del self.objects[other]

        self.statements.append(ddl.drop_statement(ref))
        del self.objects[key]

    def _check_dependencies(self, spec: ArtifactSpec, context: RenderContext) -> None:
        if isinstance(spec, ProjectionSpec):
            if self.tables is not None:
                columns = self.tables.get(spec.relation)
                if columns is None:
                    raise ArtifactApplyError(
                        f'relation "{spec.source_schema}.{spec.relation}" does not exist',
                        details={"relation": spec.relation},
                    )
                unknown = sorted(set(spec.columns) - columns)
                if unknown:
                    raise ArtifactApplyError(
                        f"column(s) {', '.join(unknown)} do not exist on {spec.relation}",
                        details={"relation": spec.relation, "columns": unknown},
                    )
            for claim in sorted(referenced_claims(spec.filters)):
                if not self.exists(ObjectType.VIEW, context.claims_schema, claim):
                    raise ArtifactApplyError(
                        f'relation "{context.claims_schema}.{claim}" does not exist',
                        details={"claim": claim},
                    )
        elif isinstance(spec, (AccessorSpec, GuardSpec)):
            if not self.exists(ObjectType.VIEW, spec.schema, spec.relation):
                raise ArtifactApplyError(
                    f'relation "{spec.schema}.{spec.relation}" does not exist',
                    details={"relation": spec.relation},
                )


class MemoryBackend:
    """All in-memory stores plus snapshot-based transactions."""

    def __init__(self, tables: dict[str, set[str]] | None = None):
        self.claims = MemoryClaimStore()
        self.rules = MemoryRuleStore()
        self.artifacts = MemoryArtifactStore()
        self.objects = MemoryObjectStore(tables)
        self.depth = 0
        self.commits = 0

    def _snapshot(self) -> tuple:
        return (
            copy.copy(self.claims.rows),
            copy.copy(self.rules.rows),
            {k: list(v) for k, v in self.artifacts.rows.items()},
            copy.copy(self.objects.objects),
            len(self.objects.statements),
        )

    def _restore(self, snapshot: tuple) -> None:
        claims, rules, artifacts, objects, statement_count = snapshot
        self.claims.rows = claims
        self.rules.rows = rules
        self.artifacts.rows = artifacts
        self.objects.objects = objects
        del self.objects.statements[statement_count:]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        snapshot = self._snapshot()
        self.depth += 1
        try:
            yield
        except BaseException:
            self._restore(snapshot)
            raise
        finally:
            self.depth -= 1

    async def commit(self) -> None:
        self.commits += 1
