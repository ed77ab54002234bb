"""Test detail, soft-delete and disablement check routes."""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from testwarden.models.api import (
    BulkToggleRequest,
    CheckRequest,
    CheckResponse,
    HealthResponse,
    ResultResponse,
    RunSummary,
    TestDetailResponse,
    TestResponse,
)
from testwarden.rules.evaluator import SkipRuleEvaluator
from testwarden.storage.repositories.skip_rules import SkipRuleRepository
from testwarden.storage.repositories.tests import TestRepository
from testwarden.web.dependencies import get_evaluator, get_skip_rule_repo, get_test_repo

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/tests", tags=["tests"])


@router.post("/check", response_model=CheckResponse, response_model_exclude_none=True)
async def check_disabled_tests(
    body: CheckRequest,
    evaluator: SkipRuleEvaluator = Depends(get_evaluator),
) -> CheckResponse:
    disabled = await evaluator.evaluate(
        repository=body.repository,
        test_ids=body.test_ids,
        project_name=body.project_name,
        branch=body.branch,
        base_url=body.base_url,
    )
    return CheckResponse(disabled_tests=disabled, timestamp=int(time.time() * 1000))


@router.post("/toggle")
async def toggle_tests(
    body: BulkToggleRequest,
    repo: SkipRuleRepository = Depends(get_skip_rule_repo),
) -> dict[str, object]:
    result = await repo.bulk_toggle(
        body.test_ids,
        enabled=body.enabled,
        reason=body.reason,
        branch_pattern=body.branch_pattern,
        env_pattern=body.env_pattern,
    )
    if result is None:
        raise HTTPException(status_code=404, detail="One or more test IDs not found")
    return result


@router.get("/{test_id}", response_model=TestDetailResponse)
async def get_test(
    test_id: str,
    repo: TestRepository = Depends(get_test_repo),
) -> TestDetailResponse:
    detail = await repo.get_detail(test_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="Test not found")
    return TestDetailResponse(
        test=TestResponse.model_validate(detail.test, from_attributes=True),
        health=(
            HealthResponse.model_validate(detail.health, from_attributes=True)
            if detail.health
            else None
        ),
        results=[
            ResultResponse(
                id=result.id,
                status=result.status,
                expected_status=result.expected_status,
                outcome=result.outcome,
                duration_ms=result.duration_ms,
                retry_count=result.retry_count,
                is_final_attempt=result.is_final_attempt,
                error_message=result.error_message,
                base_url=result.base_url,
                started_at=result.started_at,
                run=RunSummary.model_validate(run, from_attributes=True),
            )
            for result, run in detail.results
        ],
    )


@router.delete("/{test_id}")
async def delete_test(
    test_id: str,
    reason: str | None = None,
    repo: TestRepository = Depends(get_test_repo),
) -> Response:
    test = await repo.soft_delete(test_id, reason=reason)
    if test is None:
        raise HTTPException(status_code=404, detail="Test not found")
    return Response(status_code=204)
