"""
Predicate rendering.

`render(node, context)` turns a filter AST node into a PostgreSQL boolean
expression. It is pure: no session, no I/O. Everything that depends on the
deployment (schema names, how the caller's identity is obtained, explicit
claim columns) comes in through RenderContext.

Quoting goes through SQLAlchemy's PostgreSQL dialect so identifiers and
literals follow the same rules as the rest of the persistence layer.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from sqlalchemy import literal
from sqlalchemy.dialects import postgresql

from authrules.domain.filters import (
    And,
    ClaimMembership,
    ClaimPropertyCheck,
    Eq,
    FilterNode,
    Identity,
    InClaim,
    Literal,
    Or,
    claim_value_column,
)

# Named paramstyle: rendered literals must not double "%" signs
_DIALECT = postgresql.dialect(paramstyle="named")
_PREPARER = _DIALECT.identifier_preparer

# Every claim view exposes the subject it grants access to under this column
SUBJECT_COLUMN = "user_id"


def quote_ident(name: str) -> str:
    """Quote an identifier only when PostgreSQL requires it (like format('%I'))."""
    return _PREPARER.quote(name)


def qualified(schema: str, name: str) -> str:
    return f"{quote_ident(schema)}.{quote_ident(name)}"


def quote_literal(value: str | int | float | bool | None) -> str:
    """Render a scalar as an inline SQL literal."""
    if value is None:
        return "NULL"
    return str(literal(value).compile(dialect=_DIALECT, compile_kwargs={"literal_binds": True}))


def text_array(values: Sequence[str]) -> str:
    return "ARRAY[" + ", ".join(quote_literal(str(v)) for v in values) + "]::text[]"


@dataclass(frozen=True)
class RenderContext:
    """
    Deployment-specific inputs to rendering.

    Attributes:
        claims_schema: Schema holding claim views
        identity_sql: SQL expression yielding the caller's subject id
        value_columns: Explicit claim -> value column overrides
        row_alias: Qualifier for column references ("NEW", "OLD", "t"), or None
    """

    claims_schema: str
    identity_sql: str
    value_columns: Mapping[str, str] = field(default_factory=dict)
    row_alias: str | None = None

    def claim_column(self, claim: str) -> str:
        return claim_value_column(claim, self.value_columns.get(claim))

    def column(self, name: str) -> str:
        if self.row_alias:
            return f"{self.row_alias}.{quote_ident(name)}"
        return quote_ident(name)

    def with_alias(self, row_alias: str | None) -> "RenderContext":
        return RenderContext(self.claims_schema, self.identity_sql, self.value_columns, row_alias)


def claim_values_subquery(
    claim: str, context: RenderContext, check: ClaimPropertyCheck | None = None
) -> str:
    """SELECT of the claim values granted to the caller, optionally filtered by a property."""
    sql = (
        f"SELECT {quote_ident(context.claim_column(claim))} "
        f"FROM {qualified(context.claims_schema, claim)} "
        f"WHERE {quote_ident(SUBJECT_COLUMN)} = {context.identity_sql}"
    )
    if check is not None:
        sql += f" AND {quote_ident(check.property)}::text = ANY ({text_array(check.allowed_values)})"
    return sql


def claim_exists(
    claim: str,
    context: RenderContext,
    value_sql: str,
    check: ClaimPropertyCheck | None = None,
) -> str:
    """EXISTS test that `value_sql` is among the caller's values for the claim."""
    sql = (
        f"EXISTS (SELECT 1 FROM {qualified(context.claims_schema, claim)} "
        f"WHERE {quote_ident(SUBJECT_COLUMN)} = {context.identity_sql} "
        f"AND {quote_ident(context.claim_column(claim))} = {value_sql}"
    )
    if check is not None:
        sql += f" AND {quote_ident(check.property)}::text = ANY ({text_array(check.allowed_values)})"
    return sql + ")"


def render_leaf(node: Eq | InClaim, context: RenderContext) -> str:
    """Render an Eq/InClaim condition against the row the context points at."""
    if isinstance(node, InClaim):
        node = node.as_eq()

    column = context.column(node.column)
    value = node.value

    if isinstance(value, Identity):
        return f"{column} = {context.identity_sql}"
    if isinstance(value, ClaimMembership):
        return f"{column} IN ({claim_values_subquery(value.claim, context)})"
    if isinstance(value, ClaimPropertyCheck):
        return f"{column} IN ({claim_values_subquery(value.claim, context, value)})"
    if isinstance(value, Literal):
        if value.value is None:
            return f"{column} IS NULL"
        return f"{column} = {quote_literal(value.value)}"
    raise TypeError(f"Unsupported filter value: {value!r}")


def render(node: FilterNode, context: RenderContext) -> str:
    """
    Render a filter node as a boolean SQL expression.

    Example:
        >>> ctx = RenderContext("auth_rules_claims", "auth_rules.current_subject()")
        >>> render(InClaim("org_id", "org_ids"), ctx)
        'org_id IN (SELECT org_id FROM auth_rules_claims.org_ids WHERE user_id = auth_rules.current_subject())'
    """
    if isinstance(node, (Eq, InClaim)):
        return render_leaf(node, context)
    if isinstance(node, Or):
        return "(" + " OR ".join(render(c, context) for c in node.conditions) + ")"
    if isinstance(node, And):
        return "(" + " AND ".join(render(c, context) for c in node.conditions) + ")"
    raise TypeError(f"Unsupported filter node: {node!r}")


def render_conjunction(filters: Sequence[FilterNode], context: RenderContext) -> str | None:
    """AND together top-level filters; None when there is nothing to filter on."""
    if not filters:
        return None
    return " AND ".join(render(node, context) for node in filters)
