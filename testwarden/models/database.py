"""SQLModel database table models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    """Return current UTC time as naive datetime for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def _as_naive_utc(value: datetime | None) -> datetime | None:
    """Normalize an incoming timestamp to naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _new_uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------


class Test(SQLModel, table=True):
    __tablename__ = "tests"
    __table_args__ = (
        UniqueConstraint("repository", "file_path", "test_title", "project_name", name="unique_test"),
    )

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    runner_test_id: str = Field(index=True)
    repository: str = Field(index=True)  # org/repo
    file_path: str
    test_title: str
    project_name: str = Field(index=True)
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    location_line: int | None = None
    location_column: int | None = None
    is_deleted: bool = Field(default=False, index=True)
    deleted_at: datetime | None = None
    deleted_reason: str | None = None
    first_seen_at: datetime = Field(default_factory=_utc_now)
    last_seen_at: datetime = Field(default_factory=_utc_now)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class TestRun(SQLModel, table=True):
    __tablename__ = "test_runs"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    run_id: str = Field(unique=True, index=True)  # external, reporter supplied
    branch: str | None = Field(default=None, index=True)
    commit_sha: str | None = None
    commit_message: str | None = None
    ci_job_url: str | None = None
    base_url: str | None = None
    report_path: str | None = None
    runner_version: str | None = None
    total_workers: int | None = None
    shard_current: int | None = None
    shard_total: int | None = None
    started_at: datetime = Field(index=True)
    finished_at: datetime | None = None
    duration_ms: int | None = None
    total_tests: int = Field(default=0)
    passed_count: int = Field(default=0)
    failed_count: int = Field(default=0)
    skipped_count: int = Field(default=0)
    flaky_count: int = Field(default=0)
    status: str = Field(default="running", index=True)  # running | passed | failed | interrupted
    created_at: datetime = Field(default_factory=_utc_now)


class TestResult(SQLModel, table=True):
    __tablename__ = "test_results"
    __table_args__ = (
        UniqueConstraint(
            "test_run_id", "test_id", "retry_count", "started_at", name="unique_result_attempt"
        ),
    )

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    test_id: str = Field(foreign_key="tests.id", index=True)
    test_run_id: str = Field(foreign_key="test_runs.id", index=True)
    status: str  # passed | failed | timedOut | skipped | interrupted
    expected_status: str
    duration_ms: int
    retry_count: int = Field(default=0)
    is_final_attempt: bool = Field(default=True)
    worker_index: int | None = None
    parallel_index: int | None = None
    outcome: str = Field(index=True)  # expected | unexpected | skipped | flaky
    error_message: str | None = None
    error_stack: str | None = None
    error_snippet: str | None = None
    attachments: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    annotations: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    skipped_by_dashboard: bool = Field(default=False)
    base_url: str | None = None
    started_at: datetime = Field(index=True)
    created_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Derived state and skip rules
# ---------------------------------------------------------------------------


class TestHealth(SQLModel, table=True):
    __tablename__ = "test_health"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    test_id: str = Field(foreign_key="tests.id", unique=True, index=True)
    total_runs: int = Field(default=0)
    passed_count: int = Field(default=0)
    failed_count: int = Field(default=0)
    skipped_count: int = Field(default=0)
    flaky_count: int = Field(default=0)
    pass_rate: float = Field(default=0.0)
    flakiness_rate: float = Field(default=0.0)
    recent_pass_rate: float = Field(default=0.0)
    recent_flakiness_rate: float = Field(default=0.0)
    health_divergence: float = Field(default=0.0)
    avg_duration_ms: int = Field(default=0)
    health_score: int = Field(default=100, index=True)
    trend: str = Field(default="stable")  # stable | improving | degrading | critical
    consecutive_passes: int = Field(default=0)
    consecutive_failures: int = Field(default=0)
    last_status: str | None = None
    last_run_at: datetime | None = None
    last_passed_at: datetime | None = None
    last_failed_at: datetime | None = None
    updated_at: datetime = Field(default_factory=_utc_now)


class SkipRule(SQLModel, table=True):
    __tablename__ = "skip_rules"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    test_id: str = Field(foreign_key="tests.id", index=True)
    branch_pattern: str | None = None  # None = all branches
    env_pattern: str | None = None  # None = all environments
    reason: str
    created_at: datetime = Field(default_factory=_utc_now)
    deleted_at: datetime | None = None  # None = active
