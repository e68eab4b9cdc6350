"""
PostgreSQL DDL for compiled specs.

Turns the IR into CREATE/GRANT statements and artifact references into
DROP statements. Output is deterministic so a plan can be diffed and
compared in tests.

Generated objects:
- claim       -> VIEW <claims>.<name> WITH (security_invoker = false)
- projection  -> VIEW <api>.<relation> WITH (security_invoker = false),
                 inheriting the base relation's column defaults
- accessor    -> FUNCTION <api>.get_<relation>(...) SECURITY DEFINER
- guard       -> FUNCTION <api>.<relation>_<event>_guard() SECURITY DEFINER
                 + INSTEAD OF trigger on the projection
"""

from collections.abc import Iterable

from authrules.compiler.ir import (
    AccessorSpec,
    ArtifactRef,
    ArtifactSpec,
    CompiledRule,
    DerivedRelationSpec,
    GuardSpec,
    ProjectionSpec,
)
from authrules.compiler.render import (
    RenderContext,
    claim_exists,
    qualified,
    quote_ident,
    quote_literal,
    render,
    render_conjunction,
)
from authrules.domain.enums import GuardEvent, ObjectType
from authrules.domain.filters import ClaimMembership, ClaimPropertyCheck, Eq, Identity, Literal

# SQLSTATEs raised by generated objects
INSUFFICIENT_PRIVILEGE = "42501"
NO_DATA_FOUND = "P0002"

DENIED_MESSAGE = "Not authorized"
NOT_FOUND_MESSAGE = "Not found or not authorized"

ROW_ALIAS = "t"
FUNCTION_SEARCH_PATH = "SET search_path = pg_catalog, pg_temp"

_TEARDOWN_ORDER = {ObjectType.TRIGGER: 0, ObjectType.FUNCTION: 1, ObjectType.VIEW: 2}

_GUARD_PRIVILEGE = {
    GuardEvent.INSERT: "INSERT",
    GuardEvent.UPDATE: "UPDATE",
    GuardEvent.DELETE: "DELETE",
}


def _roles(roles: Iterable[str]) -> str:
    return ", ".join(quote_ident(r) for r in roles)


def _raise(message: str, sqlstate: str) -> str:
    return f"RAISE EXCEPTION {quote_literal(message)} USING ERRCODE = {quote_literal(sqlstate)};"


def _violation(condition: Eq, value_sql: str, context: RenderContext) -> str:
    """Boolean SQL that is true when `value_sql` fails the condition."""
    value = condition.value
    if isinstance(value, Identity):
        return f"{value_sql} IS DISTINCT FROM {context.identity_sql}"
    if isinstance(value, Literal):
        if value.value is None:
            return f"{value_sql} IS NOT NULL"
        return f"{value_sql} IS DISTINCT FROM {quote_literal(value.value)}"
    if isinstance(value, ClaimMembership):
        return "NOT " + claim_exists(value.claim, context, value_sql)
    if isinstance(value, ClaimPropertyCheck):
        return "NOT " + claim_exists(value.claim, context, value_sql, value)
    raise TypeError(f"Unsupported filter value: {value!r}")


def _checks(conditions: Iterable[tuple[Eq, str]], context: RenderContext) -> list[str]:
    lines = []
    for condition, value_sql in conditions:
        lines.append(f"  IF {_violation(condition, value_sql, context)} THEN")
        lines.append(f"    {_raise(DENIED_MESSAGE, INSUFFICIENT_PRIVILEGE)}")
        lines.append("  END IF;")
    return lines


def derived_relation_ddl(spec: DerivedRelationSpec) -> list[str]:
    name = qualified(spec.schema, spec.name)
    statements = [f"CREATE VIEW {name} WITH (security_invoker = false) AS\n{spec.query}"]
    if spec.grant_to:
        statements.append(f"GRANT SELECT ON {name} TO {_roles(spec.grant_to)}")
    return statements


def projection_ddl(spec: ProjectionSpec, context: RenderContext) -> list[str]:
    name = qualified(spec.schema, spec.relation)
    source = qualified(spec.source_schema, spec.relation)
    columns = ", ".join(quote_ident(c) for c in spec.columns)

    sql = f"CREATE VIEW {name} WITH (security_invoker = false) AS\nSELECT {columns}\nFROM {source}"
    predicate = render_conjunction(spec.filters, context.with_alias(None))
    if predicate:
        sql += f"\nWHERE {predicate}"

    # Inserts through the view must see the base table's defaults (e.g. generated keys)
    column_array = "ARRAY[" + ", ".join(quote_literal(c) for c in spec.columns) + "]::name[]"
    defaults = (
        "DO $do$\n"
        "DECLARE\n"
        "  col record;\n"
        "BEGIN\n"
        "  FOR col IN\n"
        "    SELECT a.attname, pg_get_expr(d.adbin, d.adrelid) AS expr\n"
        "    FROM pg_catalog.pg_attribute a\n"
        "    JOIN pg_catalog.pg_attrdef d ON d.adrelid = a.attrelid AND d.adnum = a.attnum\n"
        f"    WHERE a.attrelid = {quote_literal(source)}::regclass\n"
        f"      AND a.attname = ANY ({column_array})\n"
        "  LOOP\n"
        f"    EXECUTE format('ALTER VIEW %s ALTER COLUMN %I SET DEFAULT %s', "
        f"{quote_literal(name)}, col.attname, col.expr);\n"
        "  END LOOP;\n"
        "END\n"
        "$do$"
    )

    statements = [sql, defaults]
    if spec.grant_to:
        statements.append(f"GRANT SELECT ON {name} TO {_roles(spec.grant_to)}")
    return statements


def accessor_ddl(spec: AccessorSpec, context: RenderContext) -> list[str]:
    name = qualified(spec.schema, spec.name)
    source = qualified(spec.source_schema, spec.relation)
    row_type = qualified(spec.schema, spec.relation)

    signature = []
    for param in spec.parameters:
        arg = f"{quote_ident(param.name)} {source}.{quote_ident(param.column)}%TYPE"
        if param.defaults_to_identity:
            arg += f" DEFAULT {context.identity_sql}"
        signature.append(arg)

    body = _checks(((p.condition, quote_ident(p.name)) for p in spec.parameters), context)

    row_context = context.with_alias(ROW_ALIAS)
    where = [f"{row_context.column(p.column)} = {quote_ident(p.name)}" for p in spec.parameters]
    where += [render(condition, row_context) for condition in spec.literal_filters]
    columns = ", ".join(row_context.column(c) for c in spec.columns)
    query = f"  RETURN QUERY SELECT {columns} FROM {source} AS {ROW_ALIAS}"
    if where:
        query += " WHERE " + " AND ".join(where)
    body.append(query + ";")

    sql = (
        f"CREATE FUNCTION {name}({', '.join(signature)})\n"
        f"RETURNS SETOF {row_type}\n"
        "LANGUAGE plpgsql\n"
        "STABLE\n"
        "SECURITY DEFINER\n"
        f"{FUNCTION_SEARCH_PATH}\n"
        "AS $function$\n"
        "BEGIN\n" + "\n".join(body) + "\nEND;\n$function$"
    )

    statements = [sql, f"REVOKE EXECUTE ON FUNCTION {name} FROM PUBLIC"]
    if spec.grant_to:
        statements.append(f"GRANT EXECUTE ON FUNCTION {name} TO {_roles(spec.grant_to)}")
    return statements


def _guard_body(spec: GuardSpec, context: RenderContext) -> list[str]:
    source = qualified(spec.source_schema, spec.relation)

    if spec.event is GuardEvent.INSERT:
        new_context = context.with_alias("NEW")
        body = _checks(((c, new_context.column(c.column)) for c in spec.conditions), context)
        columns = ", ".join(quote_ident(c) for c in spec.columns)
        values = ", ".join(new_context.column(c) for c in spec.columns)
        body.append(f"  INSERT INTO {source} ({columns}) VALUES ({values});")
        body.append("  RETURN NEW;")
        return body

    row_context = context.with_alias(ROW_ALIAS)
    scope = [f"{row_context.column(spec.key_column)} = OLD.{quote_ident(spec.key_column)}"]
    scope += [render(c, row_context) for c in spec.conditions]
    where = " AND ".join(scope)

    if spec.event is GuardEvent.UPDATE:
        assigned = spec.columns or (spec.key_column,)
        assignments = ", ".join(f"{quote_ident(c)} = NEW.{quote_ident(c)}" for c in assigned)
        body = [f"  UPDATE {source} AS {ROW_ALIAS} SET {assignments} WHERE {where};"]
        returned = "NEW"
    else:
        body = [f"  DELETE FROM {source} AS {ROW_ALIAS} WHERE {where};"]
        returned = "OLD"

    body += [
        "  IF NOT FOUND THEN",
        f"    {_raise(NOT_FOUND_MESSAGE, NO_DATA_FOUND)}",
        "  END IF;",
        f"  RETURN {returned};",
    ]
    return body


def guard_ddl(spec: GuardSpec, context: RenderContext) -> list[str]:
    function = qualified(spec.schema, spec.function_name)
    view = qualified(spec.schema, spec.relation)

    sql = (
        f"CREATE FUNCTION {function}()\n"
        "RETURNS trigger\n"
        "LANGUAGE plpgsql\n"
        "SECURITY DEFINER\n"
        f"{FUNCTION_SEARCH_PATH}\n"
        "AS $function$\n"
        "BEGIN\n" + "\n".join(_guard_body(spec, context)) + "\nEND;\n$function$"
    )
    trigger = (
        f"CREATE TRIGGER {quote_ident(spec.trigger_name)} "
        f"INSTEAD OF {spec.event.value.upper()} ON {view} "
        f"FOR EACH ROW EXECUTE FUNCTION {function}()"
    )

    statements = [sql, f"REVOKE EXECUTE ON FUNCTION {function} FROM PUBLIC", trigger]
    if spec.grant_to:
        statements.append(
            f"GRANT {_GUARD_PRIVILEGE[spec.event]} ON {view} TO {_roles(spec.grant_to)}"
        )
    return statements


def create_statements(spec: ArtifactSpec, context: RenderContext) -> list[str]:
    """All statements that bring one spec into existence."""
    if isinstance(spec, DerivedRelationSpec):
        return derived_relation_ddl(spec)
    if isinstance(spec, ProjectionSpec):
        return projection_ddl(spec, context)
    if isinstance(spec, AccessorSpec):
        return accessor_ddl(spec, context)
    if isinstance(spec, GuardSpec):
        return guard_ddl(spec, context)
    raise TypeError(f"Unsupported spec: {spec!r}")


def drop_statement(ref: ArtifactRef) -> str:
    """DROP statement for one generated object. Missing objects are not an error."""
    name = qualified(ref.schema, ref.name)
    if ref.object_type is ObjectType.TRIGGER:
        table = qualified(ref.schema, ref.on_relation or "")
        return (
            "DO $do$\n"
            "BEGIN\n"
            f"  IF to_regclass({quote_literal(table)}) IS NOT NULL THEN\n"
            f"    DROP TRIGGER IF EXISTS {quote_ident(ref.name)} ON {table};\n"
            "  END IF;\n"
            "END\n"
            "$do$"
        )
    if ref.object_type is ObjectType.FUNCTION:
        return f"DROP FUNCTION IF EXISTS {name}"
    if ref.object_type is ObjectType.VIEW:
        return f"DROP VIEW IF EXISTS {name}"
    raise TypeError(f"Unsupported object type: {ref.object_type!r}")


def teardown_order(refs: Iterable[ArtifactRef]) -> list[ArtifactRef]:
    """Triggers first, then functions, then views; stable otherwise."""
    return sorted(refs, key=lambda ref: _TEARDOWN_ORDER[ref.object_type])


def plan(compiled: CompiledRule, context: RenderContext) -> list[str]:
    """Every CREATE/GRANT statement a compiled rule produces, in apply order."""
    return [stmt for spec in compiled.specs for stmt in create_statements(spec, context)]
