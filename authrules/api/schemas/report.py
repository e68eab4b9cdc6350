from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ArtifactResponse(BaseModel):
    kind: str
    object_type: str
    object_schema: str
    object_name: str
    on_relation: str | None = None


class DegradationResponse(BaseModel):
    reason: str
    message: str
    relation: str
    operation: str
    details: dict[str, Any] = Field(default_factory=dict)


class CompileReportResponse(BaseModel):
    owner_type: str
    owner_id: str
    name: str
    artifacts: list[ArtifactResponse] = Field(default_factory=list)
    degradations: list[DegradationResponse] = Field(default_factory=list)
    cascaded: list[CompileReportResponse] = Field(default_factory=list)
