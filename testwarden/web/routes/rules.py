"""Skip rule management routes."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from testwarden.models.api import (
    BulkDeleteRequest,
    SkipRuleCreate,
    SkipRuleResponse,
    SkipRuleUpdate,
)
from testwarden.storage.repositories.skip_rules import SkipRuleRepository
from testwarden.web.dependencies import get_skip_rule_repo

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["skip-rules"])


@router.get("/api/tests/{test_id}/rules", response_model=list[SkipRuleResponse])
async def list_rules(
    test_id: str,
    repo: SkipRuleRepository = Depends(get_skip_rule_repo),
) -> list[SkipRuleResponse]:
    rules = await repo.list_active(test_id)
    if rules is None:
        raise HTTPException(status_code=404, detail="Test not found")
    return [SkipRuleResponse.model_validate(r, from_attributes=True) for r in rules]


@router.post("/api/tests/{test_id}/rules", status_code=201, response_model=SkipRuleResponse)
async def create_rule(
    test_id: str,
    body: SkipRuleCreate,
    repo: SkipRuleRepository = Depends(get_skip_rule_repo),
) -> SkipRuleResponse:
    rule = await repo.create(
        test_id,
        reason=body.reason,
        branch_pattern=body.branch_pattern,
        env_pattern=body.env_pattern,
    )
    if rule is None:
        raise HTTPException(status_code=404, detail="Test not found")
    return SkipRuleResponse.model_validate(rule, from_attributes=True)


@router.delete("/api/tests/{test_id}/rules/{rule_id}")
async def delete_rule(
    test_id: str,
    rule_id: str,
    repo: SkipRuleRepository = Depends(get_skip_rule_repo),
) -> Response:
    if not await repo.soft_delete(test_id, rule_id):
        raise HTTPException(status_code=404, detail="Skip rule not found")
    return Response(status_code=204)


@router.patch("/api/rules/{rule_id}", response_model=SkipRuleResponse)
async def update_rule(
    rule_id: str,
    body: SkipRuleUpdate,
    repo: SkipRuleRepository = Depends(get_skip_rule_repo),
) -> SkipRuleResponse:
    rule = await repo.update(rule_id, body.model_dump(exclude_unset=True))
    if rule is None:
        raise HTTPException(status_code=404, detail="Skip rule not found")
    return SkipRuleResponse.model_validate(rule, from_attributes=True)


@router.post("/api/rules/bulk-delete")
async def bulk_delete_rules(
    body: BulkDeleteRequest,
    repo: SkipRuleRepository = Depends(get_skip_rule_repo),
) -> dict[str, object]:
    deleted = await repo.bulk_delete(body.rule_ids)
    return {"success": True, "deletedCount": deleted}
