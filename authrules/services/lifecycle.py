"""
Generated-Object Lifecycle Manager.

Owns every object the compiler puts into the backing store. For each owner
(a rule or a claim) the artifact records mirror exactly what exists, so a
redefinition tears down precisely the previous objects before generating
the new ones, and a drop leaves nothing behind.

Per owner:  Absent -> Compiled -> (recompile) -> Compiled -> (drop) -> Absent

Every define/drop runs in one backend transaction: definition errors roll
back registry rows and DDL together. The optional strict accessor is
applied inside a nested transaction so a rejected accessor never aborts the
projection.

Dependency cascade (PostgreSQL object dependencies):
- guard triggers live on the projection view: rebuilding a read rule
  rebuilds the relation's write rules
- projections read from claim views: rebuilding a claim rebuilds every
  relation whose rules reference it
Teardown goes writes before the read rule, then triggers, functions, views.
"""

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from authrules.compiler import ddl
from authrules.compiler.compiler import CompilerOptions, compile_claim, compile_rule
from authrules.compiler.ir import (
    ArtifactRef,
    ArtifactSpec,
    CompileDegradation,
    CompiledRule,
)
from authrules.compiler.render import RenderContext
from authrules.core.errors import ArtifactApplyError, DefinitionError, DependencyError, OrderingError
from authrules.core.observability import set_compile_subject
from authrules.domain.enums import DegradationReason, Operation, OwnerType
from authrules.domain.filters import FilterNode, referenced_claims
from authrules.repos.interfaces import Backend, ClaimDefinition, RuleDefinition

logger = logging.getLogger(__name__)


@dataclass
class CompileReport:
    """What a define call produced."""

    owner_type: OwnerType
    owner_id: str
    name: str
    artifacts: list[ArtifactRef] = field(default_factory=list)
    degradations: list[CompileDegradation] = field(default_factory=list)
    cascaded: list["CompileReport"] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner_type": self.owner_type.value,
            "owner_id": self.owner_id,
            "name": self.name,
            "artifacts": [ref.to_dict() for ref in self.artifacts],
            "degradations": [d.to_dict() for d in self.degradations],
            "cascaded": [report.to_dict() for report in self.cascaded],
        }


def _rule_label(relation: str, operation: Operation) -> str:
    return f"{relation}.{operation.value}"


def _writes_first(rules: Sequence[RuleDefinition]) -> list[RuleDefinition]:
    return [r for r in rules if r.operation.is_write] + [
        r for r in rules if not r.operation.is_write
    ]


def _read_first(rules: Sequence[RuleDefinition]) -> list[RuleDefinition]:
    return [r for r in rules if not r.operation.is_write] + [
        r for r in rules if r.operation.is_write
    ]


def _record_compile_metrics(
    kind: str,
    operation: str,
    status: str,
    duration: float,
    object_count: int = 0,
    degradations: Sequence[CompileDegradation] = (),
) -> None:
    """
    Record compiler metrics to Prometheus.

    Metrics failures are silently ignored to avoid breaking compilation.
    """
    try:
        from authrules.core.observability import metrics

        metrics.compilations_total.labels(kind=kind, operation=operation, status=status).inc()
        metrics.compile_duration_seconds.labels(kind=kind).observe(duration)
        if status == "success":
            metrics.generated_objects.labels(kind=kind).observe(object_count)
        for degradation in degradations:
            metrics.degradations_total.labels(reason=degradation.reason.value).inc()
    except Exception:
        # Metrics should never break compilation
        pass


class ArtifactLifecycleManager:
    """
    Compiles, applies, tracks and tears down generated objects.

    Args:
        backend: Stores sharing one transaction
        options: Compiler options (schemas, roles, key column)
        identity_sql: SQL expression yielding the caller identity
    """

    def __init__(self, backend: Backend, options: CompilerOptions, identity_sql: str):
        self.backend = backend
        self.options = options
        self.identity_sql = identity_sql

    @classmethod
    def from_settings(cls, backend: Backend, settings) -> "ArtifactLifecycleManager":
        return cls(backend, CompilerOptions.from_settings(settings), settings.identity_sql)

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    async def define_claim(
        self, name: str, query: str, value_column: str | None = None
    ) -> CompileReport:
        """
        Create or replace a claim and its derived relation.

        Relations whose rules reference the claim are rebuilt around it.

        Raises:
            DefinitionError: If the name is invalid or the store rejects the query
        """
        spec = compile_claim(name, query, self.options, value_column)
        set_compile_subject(f"claim:{spec.name}")
        start_time = time.perf_counter()

        try:
            async with self.backend.transaction():
                existing = await self.backend.claims.get(spec.name)
                dependents = await self._rules_referencing(spec.name) if existing else []

                await self._teardown_rules(dependents)
                if existing is not None:
                    await self._teardown_owner(OwnerType.CLAIM, existing.claim_id)

                claim = await self.backend.claims.upsert(spec.name, query, value_column)
                context = await self._render_context()
                refs, degradations = await self._apply(
                    OwnerType.CLAIM, claim.claim_id, (spec,), context
                )
                report = CompileReport(
                    OwnerType.CLAIM, claim.claim_id, spec.name, refs, degradations
                )
                report.cascaded = await self._rebuild_rules(dependents, context)
        except Exception:
            _record_compile_metrics("claim", "claim", "error", time.perf_counter() - start_time)
            raise

        duration = time.perf_counter() - start_time
        logger.info(
            "Compiled claim %s: %d object(s), %d dependent rule(s) rebuilt, duration=%.3fs",
            spec.name,
            len(report.artifacts),
            len(report.cascaded),
            duration,
        )
        _record_compile_metrics("claim", "claim", "success", duration, len(report.artifacts))
        return report

    async def drop_claim(self, name: str) -> bool:
        """
        Remove a claim and its derived relation. Missing claims are a no-op.

        Raises:
            DependencyError: If rules still reference the claim
        """
        set_compile_subject(f"claim:{name}")
        async with self.backend.transaction():
            existing = await self.backend.claims.get(name)
            if existing is None:
                logger.debug("Claim %s does not exist; nothing to drop", name)
                return False

            dependents = [
                r
                for r in await self.backend.rules.list_all()
                if name in referenced_claims(r.filters)
            ]
            if dependents:
                raise DependencyError(
                    f"Claim {name} is still referenced by rules",
                    details={
                        "claim": name,
                        "rules": [_rule_label(r.relation, r.operation) for r in dependents],
                    },
                )

            await self._teardown_owner(OwnerType.CLAIM, existing.claim_id)
            await self.backend.claims.delete(name)

        logger.info("Dropped claim %s", name)
        return True

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    async def define_rule(
        self,
        relation: str,
        operation: Operation,
        columns: Sequence[str] | None,
        filters: Sequence[FilterNode],
    ) -> CompileReport:
        """
        Create or replace the rule for (relation, operation) and regenerate its artifacts.

        A read rule redefinition also rebuilds the relation's write rules,
        since their triggers are attached to the projection.

        Raises:
            OrderingError: If a write rule is defined before the read rule
            DefinitionError: If a required artifact cannot be generated
        """
        set_compile_subject(f"rule:{_rule_label(relation, operation)}")
        start_time = time.perf_counter()

        try:
            async with self.backend.transaction():
                existing_rules = await self.backend.rules.list_for_relation(relation)
                read_rule = next(
                    (r for r in existing_rules if r.operation is Operation.READ), None
                )
                current = next((r for r in existing_rules if r.operation is operation), None)

                if operation is Operation.READ:
                    # Compile everything up front so nothing is torn down on a bad definition
                    compile_rule(relation, operation, columns, filters, self.options)
                    writes = [r for r in existing_rules if r.operation.is_write]
                    for write in writes:
                        compile_rule(
                            relation, write.operation, None, write.filters, self.options, columns
                        )
                    await self._teardown_rules(existing_rules)
                else:
                    if read_rule is None:
                        raise OrderingError(
                            f"Define the read rule for {relation} before its {operation.value} rule",
                            details={"relation": relation, "operation": operation.value},
                        )
                    compile_rule(
                        relation, operation, None, filters, self.options, read_rule.columns
                    )
                    writes = []
                    if current is not None:
                        await self._teardown_rules([current])

                rule = await self.backend.rules.upsert(relation, operation, columns, filters)
                context = await self._render_context()
                reports = await self._rebuild_rules([rule, *writes], context)
        except Exception:
            _record_compile_metrics(
                "rule", operation.value, "error", time.perf_counter() - start_time
            )
            raise

        report = reports[0]
        report.cascaded = reports[1:]
        duration = time.perf_counter() - start_time
        logger.info(
            "Compiled rule %s: %d object(s), %d degradation(s), duration=%.3fs",
            _rule_label(relation, operation),
            len(report.artifacts),
            len(report.degradations),
            duration,
        )
        _record_compile_metrics(
            "rule",
            operation.value,
            "success",
            duration,
            len(report.artifacts),
            report.degradations,
        )
        return report

    async def drop_rule(self, relation: str) -> bool:
        """Remove all rules of a relation and their artifacts. Missing rules are a no-op."""
        set_compile_subject(f"rule:{relation}")
        async with self.backend.transaction():
            rules = await self.backend.rules.list_for_relation(relation)
            if not rules:
                logger.debug("No rules for %s; nothing to drop", relation)
                return False
            await self._teardown_rules(rules)
            await self.backend.rules.delete_relation(relation)

        logger.info("Dropped %d rule(s) for %s", len(rules), relation)
        return True

    async def plan_rule(
        self,
        relation: str,
        operation: Operation,
        columns: Sequence[str] | None,
        filters: Sequence[FilterNode],
    ) -> tuple[CompiledRule, list[str]]:
        """Compile a rule against the current registry without applying anything."""
        read_columns = columns
        if operation.is_write:
            read_rule = await self.backend.rules.get(relation, Operation.READ)
            read_columns = read_rule.columns if read_rule else None
        compiled = compile_rule(
            relation,
            operation,
            columns if operation is Operation.READ else None,
            filters,
            self.options,
            read_columns,
        )
        return compiled, ddl.plan(compiled, await self._render_context())

    async def recompile_all(self) -> list[CompileReport]:
        """
        Rebuild every claim and rule from the registry.

        Objects are dropped by their recorded refs and by the refs a fresh
        compile would produce, so this also repairs a store whose records
        were lost (e.g. after a restore).
        """
        set_compile_subject("recompile_all")
        start_time = time.perf_counter()
        async with self.backend.transaction():
            claims = await self.backend.claims.list_all()
            rules = await self.backend.rules.list_all()

            await self._teardown_rules(rules, include_expected=True)
            for claim in claims:
                spec = compile_claim(claim.name, claim.query, self.options, claim.value_column)
                await self._teardown_owner(OwnerType.CLAIM, claim.claim_id, spec.objects())

            context = await self._render_context()
            reports = []
            for claim in claims:
                reports.append(await self._build_claim(claim, context))
            reports.extend(await self._rebuild_rules(rules, context))

        logger.info(
            "Recompiled %d claim(s) and %d rule(s) in %.3fs",
            len(claims),
            len(rules),
            time.perf_counter() - start_time,
        )
        return reports

    async def artifacts_for_relation(self, relation: str) -> dict[str, list[ArtifactRef]]:
        """Recorded artifacts per operation of a relation."""
        result = {}
        for rule in await self.backend.rules.list_for_relation(relation):
            result[rule.operation.value] = await self.backend.artifacts.list_for_owner(
                OwnerType.RULE, rule.rule_id
            )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _render_context(self) -> RenderContext:
        claims = await self.backend.claims.list_all()
        return RenderContext(
            claims_schema=self.options.claims_schema,
            identity_sql=self.identity_sql,
            value_columns={c.name: c.value_column for c in claims if c.value_column},
        )

    async def _rules_referencing(self, claim: str) -> list[RuleDefinition]:
        """All rules of every relation that has at least one rule referencing the claim."""
        rules = await self.backend.rules.list_all()
        relations = {r.relation for r in rules if claim in referenced_claims(r.filters)}
        return [r for r in rules if r.relation in relations]

    async def _teardown_owner(
        self, owner_type: OwnerType, owner_id: str, expected: Sequence[ArtifactRef] = ()
    ) -> None:
        recorded = await self.backend.artifacts.list_for_owner(owner_type, owner_id)
        refs = list(dict.fromkeys([*recorded, *expected]))
        for ref in ddl.teardown_order(refs):
            try:
                await self.backend.objects.drop(ref)
            except ArtifactApplyError as e:
                raise DependencyError(e.message, details=e.details) from e
        await self.backend.artifacts.delete_for_owner(owner_type, owner_id)

    async def _teardown_rules(
        self, rules: Sequence[RuleDefinition], include_expected: bool = False
    ) -> None:
        """Tear down rules, write rules before the read rule of each relation."""
        for rule in _writes_first(rules):
            expected: tuple[ArtifactRef, ...] = ()
            if include_expected:
                expected = self._expected_objects(rule, rules)
            await self._teardown_owner(OwnerType.RULE, rule.rule_id, expected)

    def _expected_objects(
        self, rule: RuleDefinition, rules: Sequence[RuleDefinition]
    ) -> tuple[ArtifactRef, ...]:
        read_rule = next(
            (r for r in rules if r.relation == rule.relation and r.operation is Operation.READ),
            None,
        )
        try:
            compiled = compile_rule(
                rule.relation,
                rule.operation,
                rule.columns,
                rule.filters,
                self.options,
                read_rule.columns if read_rule else None,
            )
        except (DefinitionError, OrderingError):
            return ()
        return compiled.objects()

    async def _build_claim(self, claim: ClaimDefinition, context: RenderContext) -> CompileReport:
        spec = compile_claim(claim.name, claim.query, self.options, claim.value_column)
        refs, degradations = await self._apply(OwnerType.CLAIM, claim.claim_id, (spec,), context)
        return CompileReport(OwnerType.CLAIM, claim.claim_id, claim.name, refs, degradations)

    async def _rebuild_rules(
        self, rules: Sequence[RuleDefinition], context: RenderContext
    ) -> list[CompileReport]:
        """Compile and apply rules, the read rule of each relation before its writes."""
        read_columns = {
            r.relation: r.columns for r in rules if r.operation is Operation.READ
        }
        reports = []
        for rule in _read_first(rules):
            if rule.operation.is_write and rule.relation not in read_columns:
                read_rule = await self.backend.rules.get(rule.relation, Operation.READ)
                read_columns[rule.relation] = read_rule.columns if read_rule else None
            compiled = compile_rule(
                rule.relation,
                rule.operation,
                rule.columns,
                rule.filters,
                self.options,
                read_columns.get(rule.relation),
            )
            refs, degradations = await self._apply(
                OwnerType.RULE, rule.rule_id, compiled.specs, context, compiled.degradations
            )
            for degradation in degradations:
                logger.warning(
                    "Degraded %s: %s",
                    _rule_label(rule.relation, rule.operation),
                    degradation.message,
                    extra={"reason": degradation.reason.value},
                )
            reports.append(
                CompileReport(
                    OwnerType.RULE,
                    rule.rule_id,
                    _rule_label(rule.relation, rule.operation),
                    refs,
                    degradations,
                )
            )
        return reports

    async def _apply(
        self,
        owner_type: OwnerType,
        owner_id: str,
        specs: Sequence[ArtifactSpec],
        context: RenderContext,
        degradations: Sequence[CompileDegradation] = (),
    ) -> tuple[list[ArtifactRef], list[CompileDegradation]]:
        """Create the objects of each spec and record exactly those that exist."""
        refs: list[ArtifactRef] = []
        degradations = list(degradations)

        for spec in specs:
            if spec.required:
                try:
                    await self.backend.objects.create(spec, context)
                except ArtifactApplyError as e:
                    raise DefinitionError(e.message, details=e.details) from e
            else:
                try:
                    async with self.backend.transaction():
                        await self.backend.objects.create(spec, context)
                except ArtifactApplyError as e:
                    degradations.append(
                        CompileDegradation(
                            reason=DegradationReason.ACCESSOR_APPLY_FAILED,
                            message=f"Accessor could not be created; skipped ({e.message})",
                            relation=getattr(spec, "relation", ""),
                            operation=Operation.READ,
                            details=e.details,
                        )
                    )
                    continue
            refs.extend(spec.objects())

        await self.backend.artifacts.replace(owner_type, owner_id, refs)
        return refs, degradations
