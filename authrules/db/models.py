"""
SQLAlchemy 2.x ORM models for the rule registry.

All models live in the rules schema (`settings.rules_schema`, "auth_rules"
by default). Generated objects themselves live in the claims and api
schemas and are tracked through GeneratedArtifact.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    ARRAY,
    JSON,
    CheckConstraint,
    Index,
    MetaData,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates

from authrules.core.config import settings
from authrules.db.validators import validate_filters_payload, validate_uuid_string


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    metadata = MetaData(schema=settings.rules_schema)


class Claim(Base):
    """
    A named, opaque query describing who has access to what.

    The query is stored verbatim and compiled into a derived relation in
    the claims schema.
    """

    __tablename__ = "claims"
    __table_args__ = (CheckConstraint("length(name) > 0", name="chk_claims_name"),)

    claim_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    query: Mapped[str] = mapped_column(Text, nullable=False)
    value_column: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Explicit value column; derived from the name when NULL"
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    @validates("claim_id")
    def _validate_claim_id(self, key: str, value: uuid.UUID | str) -> str:
        return validate_uuid_string(key, value)

    def __repr__(self) -> str:
        return f"<Claim(claim_id={self.claim_id}, name={self.name})>"


class Rule(Base):
    """
    Authorization rule for one (relation, operation) pair.

    Redefining the same pair replaces the row in place.
    """

    __tablename__ = "rules"
    __table_args__ = (
        UniqueConstraint("relation", "operation", name="uq_rules_relation_operation"),
        CheckConstraint(
            "operation IN ('read','create','update','delete')", name="chk_rules_operation"
        ),
        CheckConstraint(
            "(operation = 'read' AND columns IS NOT NULL) OR (operation <> 'read' AND columns IS NULL)",
            name="chk_rules_columns",
        ),
    )

    rule_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    relation: Mapped[str] = mapped_column(Text, nullable=False)
    operation: Mapped[str] = mapped_column(Text, nullable=False)
    columns: Mapped[list[str] | None] = mapped_column(
        ARRAY(Text), nullable=True, comment="Projection column list (read rules only)"
    )
    filters: Mapped[list] = mapped_column(
        JSON, nullable=False, default=list, comment="Canonical JSON filter nodes, AND-ed"
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    @validates("rule_id")
    def _validate_rule_id(self, key: str, value: uuid.UUID | str) -> str:
        return validate_uuid_string(key, value)

    @validates("filters")
    def _validate_filters(self, key: str, value: list | None) -> list:
        return validate_filters_payload(key, value)

    def __repr__(self) -> str:
        return f"<Rule(rule_id={self.rule_id}, relation={self.relation}, operation={self.operation})>"


class GeneratedArtifact(Base):
    """
    One object the compiler created in the backing store.

    The set of rows for an owner mirrors exactly what exists for it, so
    teardown never has to guess.
    """

    __tablename__ = "generated_artifacts"
    __table_args__ = (
        UniqueConstraint(
            "object_type", "object_schema", "object_name", name="uq_generated_artifacts_object"
        ),
        CheckConstraint("owner_type IN ('rule','claim')", name="chk_generated_artifacts_owner"),
        CheckConstraint(
            "kind IN ('projection','accessor','guard','derived_relation')",
            name="chk_generated_artifacts_kind",
        ),
        CheckConstraint(
            "object_type IN ('view','function','trigger')",
            name="chk_generated_artifacts_object_type",
        ),
        CheckConstraint(
            "(object_type = 'trigger') = (on_relation IS NOT NULL)",
            name="chk_generated_artifacts_on_relation",
        ),
        Index("ix_generated_artifacts_owner", "owner_type", "owner_id"),
    )

    artifact_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    owner_type: Mapped[str] = mapped_column(Text, nullable=False)
    owner_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    kind: Mapped[str] = mapped_column(Text, nullable=False)
    object_type: Mapped[str] = mapped_column(Text, nullable=False)
    object_schema: Mapped[str] = mapped_column(Text, nullable=False)
    object_name: Mapped[str] = mapped_column(Text, nullable=False)
    on_relation: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )

    @validates("artifact_id", "owner_id")
    def _validate_ids(self, key: str, value: uuid.UUID | str) -> str:
        return validate_uuid_string(key, value)

    def __repr__(self) -> str:
        return (
            f"<GeneratedArtifact(owner={self.owner_type}:{self.owner_id}, "
            f"{self.object_type} {self.object_schema}.{self.object_name})>"
        )
