"""
One-time installation of the schemas, roles and helper functions the
generated objects rely on, plus the registry tables.

Safe to run repeatedly: every statement is IF NOT EXISTS / OR REPLACE.

Caller identity is transaction-local configuration:
- `<subject_setting>` holds the authenticated subject id
- `<link_token_setting>` holds a share-link token for anonymous access;
  with a token and no subject, the identity is the anonymous subject id
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from authrules.compiler.render import quote_ident, quote_literal
from authrules.core.config import Settings
from authrules.db.models import Base

logger = logging.getLogger(__name__)

_RAW = {"no_parameters": True}


def install_statements(settings: Settings) -> list[str]:
    """DDL run before the registry tables are created."""
    rules = quote_ident(settings.rules_schema)
    roles = list(dict.fromkeys(settings.reader_roles_list + settings.writer_roles_list))
    role_list = ", ".join(quote_ident(r) for r in roles)

    statements = [
        f"CREATE SCHEMA IF NOT EXISTS {quote_ident(schema)}"
        for schema in (settings.rules_schema, settings.claims_schema, settings.api_schema)
    ]

    for role in roles:
        statements.append(
            "DO $do$\n"
            "BEGIN\n"
            f"  IF NOT EXISTS (SELECT 1 FROM pg_catalog.pg_roles WHERE rolname = {quote_literal(role)}) THEN\n"
            f"    CREATE ROLE {quote_ident(role)} NOLOGIN;\n"
            "  END IF;\n"
            "END\n"
            "$do$"
        )

    statements.append(
        f"CREATE OR REPLACE FUNCTION {rules}.current_link_token()\n"
        "RETURNS text\n"
        "LANGUAGE sql\n"
        "STABLE\n"
        "AS $function$\n"
        f"  SELECT NULLIF(current_setting({quote_literal(settings.link_token_setting)}, true), '')\n"
        "$function$"
    )
    subject = f"NULLIF(current_setting({quote_literal(settings.subject_setting)}, true), '')"
    statements.append(
        f"CREATE OR REPLACE FUNCTION {rules}.current_subject()\n"
        f"RETURNS {settings.subject_id_type}\n"
        "LANGUAGE sql\n"
        "STABLE\n"
        "AS $function$\n"
        "  SELECT CASE\n"
        f"    WHEN {subject} IS NOT NULL THEN {subject}::{settings.subject_id_type}\n"
        f"    WHEN {rules}.current_link_token() IS NOT NULL\n"
        f"      THEN {quote_literal(settings.anonymous_subject_id)}::{settings.subject_id_type}\n"
        "  END\n"
        "$function$"
    )

    if role_list:
        statements += [
            f"GRANT USAGE ON SCHEMA {rules} TO {role_list}",
            f"GRANT EXECUTE ON FUNCTION {rules}.current_link_token() TO {role_list}",
            f"GRANT EXECUTE ON FUNCTION {rules}.current_subject() TO {role_list}",
            f"GRANT USAGE ON SCHEMA {quote_ident(settings.api_schema)} TO {role_list}",
            f"GRANT USAGE ON SCHEMA {quote_ident(settings.claims_schema)} TO {role_list}",
        ]
    return statements


async def install(db: AsyncSession, settings: Settings) -> None:
    """Create schemas, roles, identity functions and registry tables, then commit."""
    conn = await db.connection()
    for statement in install_statements(settings):
        await conn.exec_driver_sql(statement, execution_options=_RAW)
    await conn.run_sync(Base.metadata.create_all)
    await db.commit()
    logger.info(
        "Installed rule registry in schema %s (claims: %s, api: %s)",
        settings.rules_schema,
        settings.claims_schema,
        settings.api_schema,
    )
