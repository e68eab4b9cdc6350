"""
Repository for generated artifact records.

Only the lifecycle manager writes here.
"""

from collections.abc import Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from authrules.compiler.ir import ArtifactRef
from authrules.db.models import GeneratedArtifact
from authrules.domain.enums import ArtifactKind, ObjectType, OwnerType
from authrules.repos.interfaces import ArtifactRecord


def _to_ref(row: GeneratedArtifact) -> ArtifactRef:
    return ArtifactRef(
        kind=ArtifactKind(row.kind),
        object_type=ObjectType(row.object_type),
        schema=row.object_schema,
        name=row.object_name,
        on_relation=row.on_relation,
    )


class SqlAlchemyArtifactStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_for_owner(self, owner_type: OwnerType, owner_id: str) -> list[ArtifactRef]:
        result = await self.db.execute(
            select(GeneratedArtifact)
            .where(
                GeneratedArtifact.owner_type == owner_type.value,
                GeneratedArtifact.owner_id == owner_id,
            )
            .order_by(GeneratedArtifact.created_at, GeneratedArtifact.object_name)
        )
        return [_to_ref(row) for row in result.scalars().all()]

    async def list_all(self) -> list[ArtifactRecord]:
        result = await self.db.execute(
            select(GeneratedArtifact).order_by(
                GeneratedArtifact.object_schema, GeneratedArtifact.object_name
            )
        )
        return [
            ArtifactRecord(OwnerType(row.owner_type), str(row.owner_id), _to_ref(row))
            for row in result.scalars().all()
        ]

    async def replace(
        self, owner_type: OwnerType, owner_id: str, refs: Sequence[ArtifactRef]
    ) -> None:
        """Make the owner's record set exactly `refs`."""
        await self.delete_for_owner(owner_type, owner_id)
        for ref in refs:
            self.db.add(
                GeneratedArtifact(
                    owner_type=owner_type.value,
                    owner_id=owner_id,
                    kind=ref.kind.value,
                    object_type=ref.object_type.value,
                    object_schema=ref.schema,
                    object_name=ref.name,
                    on_relation=ref.on_relation,
                )
            )
        await self.db.flush()

    async def delete_for_owner(self, owner_type: OwnerType, owner_id: str) -> int:
        result = await self.db.execute(
            delete(GeneratedArtifact).where(
                GeneratedArtifact.owner_type == owner_type.value,
                GeneratedArtifact.owner_id == owner_id,
            )
        )
        return result.rowcount
