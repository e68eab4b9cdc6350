from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from authrules.api.schemas.report import CompileReportResponse


class ClaimDefine(BaseModel):
    query: str = Field(min_length=1, max_length=20_000)
    value_column: str | None = Field(
        default=None,
        description="Column holding the claim values. Derived from the name when omitted.",
    )

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("query cannot be blank")
        return v


class ClaimResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    claim_id: str
    name: str
    query: str
    value_column: str | None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ClaimDefineResponse(BaseModel):
    claim: ClaimResponse
    report: CompileReportResponse
