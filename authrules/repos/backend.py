"""
SQLAlchemy backend: every store bound to one AsyncSession.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession

from authrules.repos.artifact_repo import SqlAlchemyArtifactStore
from authrules.repos.claim_repo import SqlAlchemyClaimStore
from authrules.repos.object_store import PostgresObjectStore
from authrules.repos.rule_repo import SqlAlchemyRuleStore


class SqlAlchemyBackend:
    """
    Registry tables and generated objects share one session, so a define or
    drop commits or rolls back registry rows and DDL together.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.claims = SqlAlchemyClaimStore(db)
        self.rules = SqlAlchemyRuleStore(db)
        self.artifacts = SqlAlchemyArtifactStore(db)
        self.objects = PostgresObjectStore(db)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Top-level transaction, or a SAVEPOINT when one is already open."""
        if self.db.in_transaction():
            async with self.db.begin_nested():
                yield
        else:
            async with self.db.begin():
                yield

    async def commit(self) -> None:
        await self.db.commit()
