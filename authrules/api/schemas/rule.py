from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from authrules.api.schemas.report import ArtifactResponse, CompileReportResponse

MAX_COLUMNS = 200


def _count_nodes(obj: Any) -> int:
    if isinstance(obj, dict):
        return 1 + sum(_count_nodes(v) for v in obj.values())
    if isinstance(obj, list):
        return sum(_count_nodes(item) for item in obj)
    return 0


class RuleDefine(BaseModel):
    columns: list[str] | None = Field(
        default=None, description="Projected columns. Required for read rules only."
    )
    predicate: dict[str, Any] | list[dict[str, Any]] | None = Field(
        default=None, description="Filter node or list of nodes (AND-ed)."
    )

    @field_validator("columns")
    @classmethod
    def validate_columns(cls, v: list[str] | None) -> list[str] | None:
        if v is not None and len(v) > MAX_COLUMNS:
            raise ValueError(f"columns exceeds maximum size of {MAX_COLUMNS}")
        return v

    @field_validator("predicate")
    @classmethod
    def validate_predicate_size(cls, v: Any) -> Any:
        # Structure is validated by the registry; only bound the payload here
        if v is not None and _count_nodes(v) > 1000:
            raise ValueError("predicate exceeds maximum size of 1000 nodes")
        return v


class RuleResponse(BaseModel):
    rule_id: str
    relation: str
    operation: str
    columns: list[str] | None
    filters: list[dict[str, Any]]
    created_at: datetime | None = None
    updated_at: datetime | None = None


class RuleDefineResponse(BaseModel):
    rule: RuleResponse | None = None
    report: CompileReportResponse | None = None
    statements: list[str] = Field(default_factory=list)
    degradations: list[dict[str, Any]] = Field(default_factory=list)


class RelationArtifactsResponse(BaseModel):
    relation: str
    artifacts: dict[str, list[ArtifactResponse]]


class RecompileResponse(BaseModel):
    reports: list[CompileReportResponse]
