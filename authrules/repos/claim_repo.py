"""
Repository for claim definitions.

All methods are async - use AsyncSession from SQLAlchemy.
"""

import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from authrules.db.models import Claim
from authrules.repos.interfaces import ClaimDefinition

logger = logging.getLogger(__name__)


def _to_definition(row: Claim) -> ClaimDefinition:
    return ClaimDefinition(
        claim_id=str(row.claim_id),
        name=row.name,
        query=row.query,
        value_column=row.value_column,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlAlchemyClaimStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, name: str) -> ClaimDefinition | None:
        row = await self._get_row(name)
        return _to_definition(row) if row else None

    async def list_all(self) -> list[ClaimDefinition]:
        result = await self.db.execute(select(Claim).order_by(Claim.name))
        return [_to_definition(row) for row in result.scalars().all()]

    async def upsert(self, name: str, query: str, value_column: str | None) -> ClaimDefinition:
        """Insert or replace the claim with this name, keeping its id."""
        row = await self._get_row(name)
        if row is None:
            row = Claim(name=name, query=query, value_column=value_column)
            self.db.add(row)
        else:
            row.query = query
            row.value_column = value_column
        await self.db.flush()
        await self.db.refresh(row)
        return _to_definition(row)

    async def delete(self, name: str) -> bool:
        result = await self.db.execute(delete(Claim).where(Claim.name == name))
        return result.rowcount > 0

    async def _get_row(self, name: str) -> Claim | None:
        result = await self.db.execute(select(Claim).where(Claim.name == name))
        return result.scalar_one_or_none()
