from __future__ import annotations

from fastapi import APIRouter, Depends, status

from authrules.api.dependencies import Claims, require_admin
from authrules.api.schemas.claim import ClaimDefine, ClaimDefineResponse, ClaimResponse
from authrules.core.errors import NotFoundError

router = APIRouter(tags=["claims"], dependencies=[Depends(require_admin)])


@router.get("/claims", response_model=list[ClaimResponse])
async def get_claims(claims: Claims):
    """List all claims ordered by name."""
    return [ClaimResponse.model_validate(c) for c in await claims.list_claims()]


@router.get("/claims/{name}", response_model=ClaimResponse)
async def get_claim(name: str, claims: Claims):
    claim = await claims.get_claim(name)
    if claim is None:
        raise NotFoundError(f"Unknown claim: {name}", details={"claim": name})
    return ClaimResponse.model_validate(claim)


@router.put("/claims/{name}", response_model=ClaimDefineResponse)
async def put_claim(name: str, payload: ClaimDefine, claims: Claims):
    """
    Create or replace a claim and rebuild the relations that depend on it.

    The response lists the generated derived relation and any rules that
    were recompiled around it.
    """
    report = await claims.define_claim(name, payload.query, payload.value_column)
    await claims.lifecycle.backend.commit()
    claim = await claims.get_claim(report.name)
    return {"claim": ClaimResponse.model_validate(claim), "report": report.to_dict()}


@router.delete("/claims/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_claim(name: str, claims: Claims) -> None:
    """Drop a claim. Returns 409 while rules still reference it."""
    await claims.drop_claim(name)
    await claims.lifecycle.backend.commit()
