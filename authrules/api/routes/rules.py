from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from authrules.api.dependencies import Lifecycle, Rules, require_admin
from authrules.api.schemas.rule import (
    RecompileResponse,
    RelationArtifactsResponse,
    RuleDefine,
    RuleDefineResponse,
    RuleResponse,
)
from authrules.domain.filters import filters_to_json
from authrules.repos.interfaces import RuleDefinition

router = APIRouter(tags=["rules"], dependencies=[Depends(require_admin)])


def _rule_response(rule: RuleDefinition) -> RuleResponse:
    return RuleResponse(
        rule_id=rule.rule_id,
        relation=rule.relation,
        operation=rule.operation.value,
        columns=list(rule.columns) if rule.columns is not None else None,
        filters=filters_to_json(rule.filters),
        created_at=rule.created_at,
        updated_at=rule.updated_at,
    )


@router.get("/rules", response_model=list[RuleResponse])
async def get_rules(rules: Rules):
    """List all rules ordered by (relation, operation)."""
    return [_rule_response(r) for r in await rules.list_rules()]


@router.put("/rules/{relation}/{operation}", response_model=RuleDefineResponse)
async def put_rule(
    relation: str,
    operation: str,
    payload: RuleDefine,
    rules: Rules,
    dry_run: Annotated[
        bool, Query(description="Compile and return the DDL without applying it")
    ] = False,
):
    """
    Create or replace the rule for (relation, operation).

    Write rules require the relation's read rule to exist (409 otherwise).
    With `dry_run=true` nothing is stored; the response carries the DDL
    the rule would produce.
    """
    if dry_run:
        compiled, statements = await rules.plan_rule(
            relation, operation, payload.columns, payload.predicate
        )
        return {
            "statements": statements,
            "degradations": [d.to_dict() for d in compiled.degradations],
        }

    report = await rules.define_rule(relation, operation, payload.columns, payload.predicate)
    await rules.backend.commit()
    rule = await rules.get_rule(relation.strip(), operation)
    return {"rule": _rule_response(rule) if rule else None, "report": report.to_dict()}


@router.delete("/rules/{relation}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rules(relation: str, rules: Rules) -> None:
    """Drop every rule of a relation together with its generated objects."""
    await rules.drop_rule(relation)
    await rules.backend.commit()


@router.get("/rules/{relation}/artifacts", response_model=RelationArtifactsResponse)
async def get_relation_artifacts(relation: str, lifecycle: Lifecycle):
    """Generated objects currently recorded for each operation of a relation."""
    artifacts = await lifecycle.artifacts_for_relation(relation)
    return {
        "relation": relation,
        "artifacts": {op: [ref.to_dict() for ref in refs] for op, refs in artifacts.items()},
    }


@router.post("/recompile", response_model=RecompileResponse)
async def post_recompile(lifecycle: Lifecycle):
    """Rebuild every claim and rule from the registry."""
    reports = await lifecycle.recompile_all()
    await lifecycle.backend.commit()
    return {"reports": [r.to_dict() for r in reports]}
