"""
Rule simulation: run compiled rules in-process against sample data.

Lets administrators check what a rule set would allow before (or without)
applying it to a database. The simulator follows the generated objects:
- visible_rows: the projection (silent filtering, projected columns only)
- fetch:        the strict accessor (AuthorizationDenied on a bad parameter)
- check_insert: the create guard (AuthorizationDenied, values never rewritten)
- check_mutation / update / delete: the update and delete guards, which only
  see rows visible through the projection (NotFoundOrUnauthorized otherwise)

Claim relations are supplied as already-resolved rows; claim queries are
opaque SQL and are not executed here.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from authrules.compiler.compiler import CompilerOptions, compile_rule
from authrules.compiler.evaluator import EvaluationContext, evaluate_all, evaluate_leaf
from authrules.compiler.ir import CompiledRule
from authrules.core.errors import AuthorizationDenied, DefinitionError, NotFoundOrUnauthorized
from authrules.domain.enums import Operation
from authrules.repos.interfaces import Backend, RuleDefinition

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class RelationSimulator:
    """
    In-process stand-in for one relation's generated objects.

    Args:
        compiled: Compiled rules of the relation, by operation
        rows: Base relation rows (mutated by insert/update/delete)
        claims: Claim name -> rows of the claim relation
        value_columns: Explicit claim -> value column overrides
    """

    def __init__(
        self,
        compiled: Mapping[Operation, CompiledRule],
        rows: Iterable[Mapping[str, Any]],
        claims: Mapping[str, Iterable[Mapping[str, Any]]],
        value_columns: Mapping[str, str] | None = None,
    ):
        if Operation.READ not in compiled:
            raise DefinitionError("Simulation needs a read rule")
        self.compiled = dict(compiled)
        self.rows: list[Row] = [dict(r) for r in rows]
        self.claims = {name: [dict(r) for r in claim_rows] for name, claim_rows in claims.items()}
        self.value_columns = dict(value_columns or {})

    @classmethod
    def from_rules(
        cls,
        rules: Sequence[RuleDefinition],
        rows: Iterable[Mapping[str, Any]],
        claims: Mapping[str, Iterable[Mapping[str, Any]]],
        options: CompilerOptions | None = None,
        value_columns: Mapping[str, str] | None = None,
    ) -> "RelationSimulator":
        options = options or CompilerOptions()
        read_rule = next((r for r in rules if r.operation is Operation.READ), None)
        if read_rule is None:
            raise DefinitionError("Simulation needs a read rule")
        compiled = {
            rule.operation: compile_rule(
                rule.relation,
                rule.operation,
                rule.columns,
                rule.filters,
                options,
                read_rule.columns,
            )
            for rule in rules
        }
        return cls(compiled, rows, claims, value_columns)

    # ------------------------------------------------------------------

    def context(self, subject_id: Any) -> EvaluationContext:
        return EvaluationContext(subject_id, self.claims, self.value_columns)

    @property
    def projection(self):
        return self.compiled[Operation.READ].projection

    def _project(self, row: Mapping[str, Any]) -> Row:
        return {column: row.get(column) for column in self.projection.columns}

    def _visible(self, subject_id: Any) -> list[Row]:
        context = self.context(subject_id)
        return [row for row in self.rows if evaluate_all(self.projection.filters, row, context)]

    def visible_rows(self, subject_id: Any) -> list[Row]:
        """Rows the subject sees through the projection, projected columns only."""
        return [self._project(row) for row in self._visible(subject_id)]

    def fetch(self, subject_id: Any, **params: Any) -> list[Row]:
        """
        Call the strict accessor.

        Parameters are passed by column name (`owner_id=...`) or by parameter
        name (`p_owner_id=...`). Identity parameters default to the subject.

        Raises:
            DefinitionError: If the relation has no accessor or a required
                             parameter is missing
            AuthorizationDenied: If any parameter fails its condition
        """
        accessor = self.compiled[Operation.READ].accessor
        if accessor is None:
            raise DefinitionError(
                f"No accessor was generated for {self.projection.relation}",
                details={"relation": self.projection.relation},
            )

        context = self.context(subject_id)
        bound: dict[str, Any] = {}
        for param in accessor.parameters:
            if param.name in params:
                value = params[param.name]
            elif param.column in params:
                value = params[param.column]
            elif param.defaults_to_identity:
                value = subject_id
            else:
                raise DefinitionError(
                    f"Missing accessor parameter {param.name}", details={"parameter": param.name}
                )
            if param.defaults_to_identity:
                # IS DISTINCT FROM: a missing subject matches a missing argument
                allowed = str(value) == str(subject_id) if value is not None else subject_id is None
            else:
                allowed = evaluate_leaf(param.condition, {param.column: value}, context)
            if not allowed:
                raise AuthorizationDenied()
            bound[param.column] = value

        matches = []
        for row in self.rows:
            if all(
                _same(row.get(column), value) for column, value in bound.items()
            ) and evaluate_all(accessor.literal_filters, row, context):
                matches.append(self._project(row))
        return matches

    def check_insert(self, subject_id: Any, values: Mapping[str, Any]) -> Row:
        """
        Run the create guard against a new row.

        Returns the row as it would be written (projected columns).

        Raises:
            AuthorizationDenied: If there is no create rule or a condition fails
        """
        guard = self._guard(Operation.CREATE)
        new_row = {column: values.get(column) for column in guard.columns}
        context = self.context(subject_id)
        for condition in guard.conditions:
            if not evaluate_leaf(condition, new_row, context):
                raise AuthorizationDenied()
        return new_row

    def check_mutation(self, subject_id: Any, operation: Operation, key: Any) -> Row:
        """
        Locate the row an update/delete through the projection would touch.

        Raises:
            AuthorizationDenied: If there is no rule for the operation
            NotFoundOrUnauthorized: If the row is not visible or fails the guard
        """
        guard = self._guard(operation)
        context = self.context(subject_id)
        for row in self._visible(subject_id):
            if not _same(row.get(guard.key_column), key):
                continue
            if all(evaluate_leaf(c, row, context) for c in guard.conditions):
                return row
            break
        raise NotFoundOrUnauthorized(details={"key": str(key)})

    def insert(self, subject_id: Any, values: Mapping[str, Any]) -> Row:
        new_row = self.check_insert(subject_id, values)
        stored = {**{k: v for k, v in values.items() if k not in new_row}, **new_row}
        self.rows.append(stored)
        return new_row

    def update(self, subject_id: Any, key: Any, changes: Mapping[str, Any]) -> Row:
        """
        Apply changes to a visible row through the projection.

        Raises:
            DefinitionError: If a changed column is not exposed by the projection
            NotFoundOrUnauthorized: If the row is not visible or fails the guard
        """
        guard = self._guard(Operation.UPDATE)
        unknown = sorted(set(changes) - set(self.projection.columns))
        if unknown:
            raise DefinitionError(
                f"Column(s) not exposed by {self.projection.relation}: {', '.join(unknown)}",
                details={"relation": self.projection.relation, "columns": unknown},
            )
        row = self.check_mutation(subject_id, Operation.UPDATE, key)
        # The trigger never rewrites the key column
        for column, value in changes.items():
            if column in guard.columns:
                row[column] = value
        return self._project(row)

    def delete(self, subject_id: Any, key: Any) -> Row:
        row = self.check_mutation(subject_id, Operation.DELETE, key)
        self.rows.remove(row)
        return self._project(row)

    def _guard(self, operation: Operation):
        compiled = self.compiled.get(operation)
        if compiled is None or compiled.guard is None:
            # No rule means no privilege was granted on the projection
            raise AuthorizationDenied(details={"operation": operation.value})
        return compiled.guard


def _same(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    return str(left) == str(right)


async def simulate_relation(
    backend: Backend,
    relation: str,
    rows: Iterable[Mapping[str, Any]],
    claims: Mapping[str, Iterable[Mapping[str, Any]]],
    options: CompilerOptions | None = None,
) -> RelationSimulator:
    """Build a simulator for a relation from the rules currently in the registry."""
    rules = await backend.rules.list_for_relation(relation)
    value_columns = {
        c.name: c.value_column for c in await backend.claims.list_all() if c.value_column
    }
    return RelationSimulator.from_rules(rules, rows, claims, options, value_columns)

