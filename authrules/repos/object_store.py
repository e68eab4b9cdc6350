"""
PostgreSQL object store: executes generated DDL on the session's connection.

Statements run through the raw driver with no parameter processing, since
claim queries and plpgsql bodies legitimately contain "%" and ":".
"""

import logging

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from authrules.compiler import ddl
from authrules.compiler.ir import ArtifactRef, ArtifactSpec
from authrules.compiler.render import RenderContext
from authrules.core.errors import ArtifactApplyError

logger = logging.getLogger(__name__)

_RAW = {"no_parameters": True}


def _sqlstate(error: DBAPIError) -> str | None:
    return getattr(error.orig, "sqlstate", None)


class PostgresObjectStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def execute(self, statement: str) -> None:
        conn = await self.db.connection()
        await conn.exec_driver_sql(statement, execution_options=_RAW)

    async def create(self, spec: ArtifactSpec, context: RenderContext) -> None:
        """
        Create every object of a spec.

        Raises:
            ArtifactApplyError: If PostgreSQL rejects a statement
        """
        names = [ref.qualified_name for ref in spec.objects()]
        for statement in ddl.create_statements(spec, context):
            try:
                await self.execute(statement)
            except DBAPIError as e:
                logger.warning("PostgreSQL rejected generated object(s) %s: %s", names, e.orig)
                raise ArtifactApplyError(
                    f"Could not create {', '.join(names)}: {e.orig}",
                    details={"objects": names, "sqlstate": _sqlstate(e)},
                ) from e

    async def drop(self, ref: ArtifactRef) -> None:
        try:
            await self.execute(ddl.drop_statement(ref))
        except DBAPIError as e:
            raise ArtifactApplyError(
                f"Could not drop {ref.object_type.value} {ref.qualified_name}: {e.orig}",
                details={"object": ref.qualified_name, "sqlstate": _sqlstate(e)},
            ) from e
