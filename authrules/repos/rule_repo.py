"""
Repository for rule definitions.

Filters are stored as canonical JSON and parsed back into AST nodes on the
way out, so every consumer sees the same typed predicate.
"""

import logging
from collections.abc import Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from authrules.compiler.validator import parse_filters
from authrules.db.models import Rule
from authrules.domain.enums import Operation
from authrules.domain.filters import FilterNode, filters_to_json
from authrules.repos.interfaces import RuleDefinition

logger = logging.getLogger(__name__)

# Stable (relation, operation) ordering: read first, then create/update/delete
OPERATION_ORDER = {op: index for index, op in enumerate(Operation)}


def _to_definition(row: Rule) -> RuleDefinition:
    return RuleDefinition(
        rule_id=str(row.rule_id),
        relation=row.relation,
        operation=Operation(row.operation),
        columns=tuple(row.columns) if row.columns is not None else None,
        filters=parse_filters(row.filters),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def sort_rules(rules: Sequence[RuleDefinition]) -> list[RuleDefinition]:
    return sorted(rules, key=lambda r: (r.relation, OPERATION_ORDER[r.operation]))


class SqlAlchemyRuleStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, relation: str, operation: Operation) -> RuleDefinition | None:
        row = await self._get_row(relation, operation)
        return _to_definition(row) if row else None

    async def list_all(self) -> list[RuleDefinition]:
        result = await self.db.execute(select(Rule))
        return sort_rules([_to_definition(row) for row in result.scalars().all()])

    async def list_for_relation(self, relation: str) -> list[RuleDefinition]:
        result = await self.db.execute(select(Rule).where(Rule.relation == relation))
        return sort_rules([_to_definition(row) for row in result.scalars().all()])

    async def upsert(
        self,
        relation: str,
        operation: Operation,
        columns: Sequence[str] | None,
        filters: Sequence[FilterNode],
    ) -> RuleDefinition:
        """Insert or replace the rule for (relation, operation), keeping its id."""
        row = await self._get_row(relation, operation)
        payload = filters_to_json(tuple(filters))
        column_list = list(columns) if columns is not None else None
        if row is None:
            row = Rule(
                relation=relation,
                operation=operation.value,
                columns=column_list,
                filters=payload,
            )
            self.db.add(row)
        else:
            row.columns = column_list
            row.filters = payload
        await self.db.flush()
        await self.db.refresh(row)
        return _to_definition(row)

    async def delete_relation(self, relation: str) -> int:
        result = await self.db.execute(delete(Rule).where(Rule.relation == relation))
        return result.rowcount

    async def _get_row(self, relation: str, operation: Operation) -> Rule | None:
        result = await self.db.execute(
            select(Rule).where(Rule.relation == relation, Rule.operation == operation.value)
        )
        return result.scalar_one_or_none()
