"""API request/response schemas for FastAPI endpoints.

Bodies travel camelCase on the wire; attributes stay snake_case in Python.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from testwarden.types import Outcome, ResultStatus, RunStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


class Location(CamelModel):
    file: str = ""
    line: int | None = None
    column: int | None = None


class ErrorDetail(CamelModel):
    message: str | None = None
    stack: str | None = None
    snippet: str | None = None


class ShardInfo(CamelModel):
    current: int
    total: int


class RunMetadata(CamelModel):
    repository: str | None = None  # required; checked by the ingestor so no row is touched
    branch: str | None = None
    commit_sha: str | None = None
    commit_message: str | None = None
    ci_job_url: str | None = None
    base_url: str | None = None
    report_path: str | None = None
    runner_version: str | None = None
    workers: int | None = None
    shard: ShardInfo | None = None


class ResultPayload(CamelModel):
    test_id: str
    file_path: str
    title: str
    project_name: str = "default"
    tags: list[str] = Field(default_factory=list)
    location: Location = Field(default_factory=Location)
    status: ResultStatus
    expected_status: ResultStatus = ResultStatus.PASSED
    duration: int = 0
    retry: int = 0
    is_final_attempt: bool | None = None
    worker_index: int | None = None
    parallel_index: int | None = None
    outcome: Outcome
    error: ErrorDetail | None = None
    annotations: list[dict[str, Any]] = Field(default_factory=list)
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    start_time: datetime
    skipped_by_dashboard: bool = False
    base_url: str | None = None

    @property
    def final(self) -> bool:
        return True if self.is_final_attempt is None else self.is_final_attempt


class ReportPayload(CamelModel):
    run_id: str = Field(min_length=1)
    metadata: RunMetadata | None = None
    start_time: datetime
    end_time: datetime | None = None
    status: RunStatus | None = None
    results: list[ResultPayload] = Field(default_factory=list)


class IngestResponse(CamelModel):
    success: bool = True
    run_id: str
    external_run_id: str
    stored: int
    duplicates: int


# ---------------------------------------------------------------------------
# Rule evaluation
# ---------------------------------------------------------------------------


class CheckRequest(CamelModel):
    repository: str | None = None
    test_ids: list[str] | None = None
    project_name: str | None = None
    branch: str | None = None
    base_url: str | None = Field(default=None, alias="baseURL")


class DisabledTest(CamelModel):
    reason: str | None = None
    rule_id: str | None = None
    matched_branch: bool | None = None
    matched_env: bool | None = None


class CheckResponse(CamelModel):
    disabled_tests: dict[str, DisabledTest] = Field(default_factory=dict)
    timestamp: int  # epoch milliseconds


# ---------------------------------------------------------------------------
# Skip rule management
# ---------------------------------------------------------------------------


class SkipRuleCreate(CamelModel):
    reason: str = Field(min_length=1, max_length=2000)
    branch_pattern: str | None = None
    env_pattern: str | None = None


class SkipRuleUpdate(CamelModel):
    reason: str | None = None
    branch_pattern: str | None = None
    env_pattern: str | None = None


class SkipRuleResponse(CamelModel):
    id: str
    test_id: str
    branch_pattern: str | None
    env_pattern: str | None
    reason: str
    created_at: datetime


class BulkToggleRequest(CamelModel):
    test_ids: list[str] = Field(min_length=1)
    enabled: bool
    reason: str | None = None
    branch_pattern: str | None = None
    env_pattern: str | None = None


class BulkDeleteRequest(CamelModel):
    rule_ids: list[str] = Field(min_length=1)


# ---------------------------------------------------------------------------
# Read-only test detail
# ---------------------------------------------------------------------------


class HealthResponse(CamelModel):
    total_runs: int
    passed_count: int
    failed_count: int
    skipped_count: int
    flaky_count: int
    pass_rate: float
    flakiness_rate: float
    recent_pass_rate: float
    recent_flakiness_rate: float
    health_divergence: float
    avg_duration_ms: int
    health_score: int
    trend: str
    consecutive_passes: int
    consecutive_failures: int
    last_status: str | None
    last_run_at: datetime | None
    last_passed_at: datetime | None
    last_failed_at: datetime | None
    updated_at: datetime


class TestResponse(CamelModel):
    id: str
    runner_test_id: str
    repository: str
    file_path: str
    test_title: str
    project_name: str
    tags: list[str]
    location_line: int | None
    location_column: int | None
    is_deleted: bool
    deleted_at: datetime | None
    deleted_reason: str | None
    first_seen_at: datetime
    last_seen_at: datetime


class RunSummary(CamelModel):
    id: str
    run_id: str
    branch: str | None
    commit_sha: str | None
    status: str


class ResultResponse(CamelModel):
    id: str
    status: str
    expected_status: str
    outcome: str
    duration_ms: int
    retry_count: int
    is_final_attempt: bool
    error_message: str | None
    base_url: str | None
    started_at: datetime
    run: RunSummary


class TestDetailResponse(CamelModel):
    test: TestResponse
    health: HealthResponse | None
    results: list[ResultResponse]
