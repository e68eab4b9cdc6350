"""
Rule Registry.

Stores one rule per (relation, operation). Holds no enforcement logic:
definitions are parsed and validated here, then handed to the lifecycle
manager which compiles and applies them.

Ordering invariant: create/update/delete rules may only be defined for a
relation that already has a read rule, because write guards attach to the
read rule's projection.
"""

import logging
from collections.abc import Sequence
from typing import Any

from authrules.compiler.ir import CompiledRule
from authrules.compiler.validator import parse_filters, validate_rule_definition
from authrules.core.errors import DefinitionError, OrderingError
from authrules.domain.enums import Operation
from authrules.domain.filters import FilterNode
from authrules.repos.interfaces import RuleDefinition
from authrules.services.lifecycle import ArtifactLifecycleManager, CompileReport

logger = logging.getLogger(__name__)


def parse_operation(operation: Operation | str) -> Operation:
    if isinstance(operation, Operation):
        return operation
    try:
        return Operation(str(operation).lower())
    except ValueError:
        raise DefinitionError(
            f"Unknown operation: {operation}",
            details={"operation": operation, "allowed": [op.value for op in Operation]},
        ) from None


class RuleRegistry:
    def __init__(self, lifecycle: ArtifactLifecycleManager, strict_write_guards: bool = False):
        self.lifecycle = lifecycle
        self.strict_write_guards = strict_write_guards

    @property
    def backend(self):
        return self.lifecycle.backend

    async def _validated(
        self,
        relation: str,
        operation: Operation | str,
        columns: Sequence[str] | None,
        predicate: Any,
    ) -> tuple[str, Operation, tuple[str, ...] | None, tuple[FilterNode, ...]]:
        operation = parse_operation(operation)
        filters = parse_filters(predicate)
        known_claims = [c.name for c in await self.backend.claims.list_all()]
        normalized = validate_rule_definition(
            relation=relation,
            operation=operation,
            columns=columns,
            filters=filters,
            known_claims=known_claims,
            strict_write_guards=self.strict_write_guards,
        )
        relation = relation.strip()

        if operation.is_write:
            read_rule = await self.backend.rules.get(relation, Operation.READ)
            if read_rule is None:
                raise OrderingError(
                    f"Define the read rule for {relation} before its {operation.value} rule",
                    details={"relation": relation, "operation": operation.value},
                )
        return relation, operation, normalized, filters

    async def define_rule(
        self,
        relation: str,
        operation: Operation | str,
        columns: Sequence[str] | None = None,
        predicate: Any = None,
    ) -> CompileReport:
        """
        Create or replace the rule for (relation, operation).

        Args:
            relation: Base relation name
            operation: read, create, update or delete
            columns: Projection columns (read rules only)
            predicate: Filter node, list of nodes (AND-ed), or None

        Returns:
            CompileReport with generated artifacts and degradations

        Raises:
            DefinitionError: Malformed predicate, unknown claim, bad columns
            OrderingError: Write rule defined before the read rule
        """
        relation, operation, columns, filters = await self._validated(
            relation, operation, columns, predicate
        )
        logger.info("Defining %s rule for %s", operation.value, relation)
        return await self.lifecycle.define_rule(relation, operation, columns, filters)

    async def plan_rule(
        self,
        relation: str,
        operation: Operation | str,
        columns: Sequence[str] | None = None,
        predicate: Any = None,
    ) -> tuple[CompiledRule, list[str]]:
        """Validate and compile a rule without storing or applying it."""
        relation, operation, columns, filters = await self._validated(
            relation, operation, columns, predicate
        )
        return await self.lifecycle.plan_rule(relation, operation, columns, filters)

    async def drop_rule(self, relation: str) -> bool:
        """Remove all four operations of a relation. Missing rules are a no-op."""
        return await self.lifecycle.drop_rule(relation)

    async def list_rules(self) -> list[RuleDefinition]:
        """All rule definitions ordered by (relation, operation)."""
        return await self.backend.rules.list_all()

    async def get_rule(self, relation: str, operation: Operation | str) -> RuleDefinition | None:
        return await self.backend.rules.get(relation, parse_operation(operation))
