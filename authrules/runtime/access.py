"""
Data access through the generated objects.

Applications never touch base relations directly: they read the projection
views, call the strict accessors, and write through the guarded views.
`DataApi` wraps one session, sets the caller identity for the current
transaction, and maps the generated objects' failures to domain errors:

- SQLSTATE 42501 (insufficient privilege) -> AuthorizationDenied
- SQLSTATE P0002 (no data found), or a write touching no row
  -> NotFoundOrUnauthorized
"""

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from authrules.compiler.ddl import INSUFFICIENT_PRIVILEGE, NO_DATA_FOUND
from authrules.compiler.ir import ACCESSOR_PREFIX, PARAMETER_PREFIX
from authrules.compiler.render import qualified, quote_ident
from authrules.compiler.validator import check_name
from authrules.core.config import Settings, settings as default_settings
from authrules.core.errors import AuthorizationDenied, NotFoundOrUnauthorized

logger = logging.getLogger(__name__)

Row = dict[str, Any]


def _sqlstate(error: DBAPIError) -> str | None:
    return getattr(error.orig, "sqlstate", None)


class DataApi:
    """
    Caller-side access to one schema of generated objects.

    Usage:
        api = DataApi(db)
        await api.as_subject(user_id, role="authenticated")
        folders = await api.select("folders")
        files = await api.fetch("files", folder_id=folder_id)
    """

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        self.db = db
        self.settings = settings or default_settings
        self.schema = self.settings.api_schema

    async def _set(self, setting: str, value: str) -> None:
        await self.db.execute(
            text("SELECT set_config(:setting, :value, true)"),
            {"setting": setting, "value": value},
        )

    async def _set_role(self, role: str | None) -> None:
        if role:
            await self.db.execute(text(f"SET LOCAL ROLE {quote_ident(check_name(role, 'role'))}"))

    async def as_subject(self, subject_id: Any, role: str | None = None) -> None:
        """Act as an authenticated subject for the rest of the transaction."""
        await self._set(self.settings.subject_setting, str(subject_id))
        await self._set(self.settings.link_token_setting, "")
        await self._set_role(role)

    async def as_link_token(self, token: str, role: str | None = None) -> None:
        """Act as an anonymous holder of a share-link token."""
        await self._set(self.settings.subject_setting, "")
        await self._set(self.settings.link_token_setting, token)
        await self._set_role(role)

    async def _run(self, statement, params: Mapping[str, Any]):
        try:
            async with self.db.begin_nested():
                return await self.db.execute(statement, dict(params))
        except DBAPIError as e:
            sqlstate = _sqlstate(e)
            if sqlstate == INSUFFICIENT_PRIVILEGE:
                raise AuthorizationDenied() from e
            if sqlstate == NO_DATA_FOUND:
                raise NotFoundOrUnauthorized() from e
            raise

    def _relation(self, relation: str) -> str:
        return qualified(self.schema, check_name(relation, "relation"))

    async def select(self, relation: str, **where: Any) -> list[Row]:
        """Rows visible through the projection, optionally narrowed by equality."""
        sql = f"SELECT * FROM {self._relation(relation)}"
        params = {}
        clauses = []
        for i, (column, value) in enumerate(where.items()):
            clauses.append(f"{quote_ident(check_name(column, 'column'))} = :w{i}")
            params[f"w{i}"] = value
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        result = await self._run(text(sql), params)
        return [dict(row) for row in result.mappings()]

    async def fetch(self, relation: str, **columns: Any) -> list[Row]:
        """
        Call the strict accessor by column name.

        Omitted identity parameters take their default (the caller).

        Raises:
            AuthorizationDenied: If any argument fails its condition
        """
        function = qualified(self.schema, ACCESSOR_PREFIX + check_name(relation, "relation"))
        args = []
        params = {}
        for i, (column, value) in enumerate(columns.items()):
            parameter = PARAMETER_PREFIX + check_name(column, "column")
            args.append(f"{quote_ident(parameter)} => :a{i}")
            params[f"a{i}"] = value
        result = await self._run(text(f"SELECT * FROM {function}({', '.join(args)})"), params)
        return [dict(row) for row in result.mappings()]

    async def insert(self, relation: str, values: Mapping[str, Any]) -> None:
        """
        Insert through the guarded view.

        Raises:
            AuthorizationDenied: If the create guard rejects the row or no
                                 create rule exists
        """
        columns = [check_name(c, "column") for c in values]
        names = ", ".join(quote_ident(c) for c in columns)
        binds = ", ".join(f":v{i}" for i in range(len(columns)))
        params = {f"v{i}": values[c] for i, c in enumerate(values)}
        await self._run(
            text(f"INSERT INTO {self._relation(relation)} ({names}) VALUES ({binds})"), params
        )

    async def update(self, relation: str, key: Any, changes: Mapping[str, Any]) -> int:
        """
        Update one row (by row key) through the guarded view.

        Raises:
            NotFoundOrUnauthorized: If the row is invisible or fails the guard
            AuthorizationDenied: If no update rule exists
        """
        if not changes:
            raise ValueError("update needs at least one changed column")
        key_column = quote_ident(self.settings.row_key_column)
        assignments = ", ".join(
            f"{quote_ident(check_name(c, 'column'))} = :v{i}" for i, c in enumerate(changes)
        )
        params = {f"v{i}": changes[c] for i, c in enumerate(changes)}
        params["key"] = key
        result = await self._run(
            text(f"UPDATE {self._relation(relation)} SET {assignments} WHERE {key_column} = :key"),
            params,
        )
        return self._affected(result.rowcount, relation, key)

    async def delete(self, relation: str, key: Any) -> int:
        """
        Delete one row (by row key) through the guarded view.

        Raises:
            NotFoundOrUnauthorized: If the row is invisible or fails the guard
            AuthorizationDenied: If no delete rule exists
        """
        key_column = quote_ident(self.settings.row_key_column)
        result = await self._run(
            text(f"DELETE FROM {self._relation(relation)} WHERE {key_column} = :key"),
            {"key": key},
        )
        return self._affected(result.rowcount, relation, key)

    @staticmethod
    def _affected(rowcount: int, relation: str, key: Any) -> int:
        # The view hides invisible rows, so the guard never fires for them
        if not rowcount:
            raise NotFoundOrUnauthorized(details={"relation": relation, "key": str(key)})
        return rowcount
