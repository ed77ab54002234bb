"""Report ingestion: run/test upserts, result rows and health, in one transaction."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from testwarden.exceptions import PersistenceError, ValidationError
from testwarden.health.scorer import HealthConfig
from testwarden.models.database import Test, TestResult, TestRun, _as_naive_utc, _utc_now
from testwarden.storage.repositories.health import recompute_health
from testwarden.types import Outcome, RunStatus

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from testwarden.models.api import ReportPayload, ResultPayload

logger = structlog.get_logger(__name__)


@dataclass
class IngestOutcome:
    run_id: str  # internal primary key
    external_run_id: str
    stored: int = 0
    duplicates: int = 0
    touched_test_ids: list[str] = field(default_factory=list)


class ResultIngestor:
    """Persists report batches and keeps per-test health in step with them.

    Each batch is one transaction: the run upsert, every test upsert, every
    result insert and every health recomputation commit together or not at
    all. Run counters are bumped with ``col = col + n`` so shards reporting
    into the same run converge.

    A result whose (run, test, retry, start time) is already stored is treated
    as a replay of an earlier batch: it is skipped and not counted again.
    """

    def __init__(self, engine: AsyncEngine, config: HealthConfig | None = None) -> None:
        self._engine = engine
        self._config = config or HealthConfig()

    async def ingest(self, report: ReportPayload) -> IngestOutcome:
        repository = (report.metadata.repository or "").strip() if report.metadata else ""
        if not repository:
            logger.warning("report_rejected", run_id=report.run_id, reason="missing_repository")
            raise ValidationError("metadata.repository is required")

        try:
            async with AsyncSession(self._engine, expire_on_commit=False) as session:
                async with session.begin():
                    outcome = await self._ingest(session, report, repository)
        except (SQLAlchemyError, OSError) as e:
            logger.error(
                "report_ingest_failed",
                run_id=report.run_id,
                repository=repository,
                error=str(e),
            )
            raise PersistenceError(f"Failed to ingest report for run {report.run_id}") from e

        logger.info(
            "report_ingested",
            run_id=report.run_id,
            repository=repository,
            stored=outcome.stored,
            duplicates=outcome.duplicates,
            tests=len(outcome.touched_test_ids),
        )
        return outcome

    async def _ingest(
        self, session: AsyncSession, report: ReportPayload, repository: str
    ) -> IngestOutcome:
        run = await self._upsert_run(session, report)
        outcome = IngestOutcome(run_id=run.id, external_run_id=run.run_id)
        final_counts: Counter[str] = Counter()
        touched: dict[str, None] = {}

        for payload in report.results:
            test = await self._upsert_test(session, repository, payload)
            touched[test.id] = None
            started_at = _as_naive_utc(payload.start_time)
            if await self._already_stored(session, run.id, test.id, payload.retry, started_at):
                outcome.duplicates += 1
                logger.info(
                    "duplicate_result_skipped",
                    run_id=run.run_id,
                    test_id=test.id,
                    retry=payload.retry,
                )
                continue
            session.add(self._build_result(run, test, payload, report, started_at))
            outcome.stored += 1
            if payload.final:
                final_counts[payload.outcome.value] += 1

        await session.execute(
            update(TestRun)
            .where(col(TestRun.id) == run.id)
            .values(
                total_tests=col(TestRun.total_tests) + sum(final_counts.values()),
                passed_count=col(TestRun.passed_count) + final_counts[Outcome.EXPECTED.value],
                failed_count=col(TestRun.failed_count) + final_counts[Outcome.UNEXPECTED.value],
                skipped_count=col(TestRun.skipped_count) + final_counts[Outcome.SKIPPED.value],
                flaky_count=col(TestRun.flaky_count) + final_counts[Outcome.FLAKY.value],
            )
            .execution_options(synchronize_session=False)
        )

        for test_id in touched:
            await recompute_health(session, test_id, self._config)

        outcome.touched_test_ids = list(touched)
        return outcome

    async def _upsert_run(self, session: AsyncSession, report: ReportPayload) -> TestRun:
        stmt = select(TestRun).where(col(TestRun.run_id) == report.run_id)
        run = (await session.execute(stmt)).scalars().first()
        finished_at = _as_naive_utc(report.end_time)
        metadata = report.metadata

        if run:
            if finished_at:
                run.finished_at = finished_at
                run.duration_ms = _duration_ms(run.started_at, finished_at)
            if report.status:
                run.status = report.status.value
            if metadata and metadata.report_path:
                run.report_path = metadata.report_path
            session.add(run)
            logger.debug("test_run_updated", run_id=run.run_id, status=run.status)
            return run

        started_at = _as_naive_utc(report.start_time)
        shard = metadata.shard if metadata else None
        run = TestRun(
            run_id=report.run_id,
            branch=metadata.branch if metadata else None,
            commit_sha=metadata.commit_sha if metadata else None,
            commit_message=metadata.commit_message if metadata else None,
            ci_job_url=metadata.ci_job_url if metadata else None,
            base_url=metadata.base_url if metadata else None,
            report_path=metadata.report_path if metadata else None,
            runner_version=metadata.runner_version if metadata else None,
            total_workers=metadata.workers if metadata else None,
            shard_current=shard.current if shard else None,
            shard_total=shard.total if shard else None,
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=_duration_ms(started_at, finished_at) if finished_at else None,
            status=(report.status or RunStatus.RUNNING).value,
        )
        session.add(run)
        logger.debug("test_run_created", run_id=run.run_id)
        return run

    async def _upsert_test(
        self, session: AsyncSession, repository: str, payload: ResultPayload
    ) -> Test:
        stmt = select(Test).where(
            col(Test.repository) == repository,
            col(Test.file_path) == payload.file_path,
            col(Test.test_title) == payload.title,
            col(Test.project_name) == payload.project_name,
        )
        test = (await session.execute(stmt)).scalars().first()

        if test is None:
            test = Test(
                runner_test_id=payload.test_id,
                repository=repository,
                file_path=payload.file_path,
                test_title=payload.title,
                project_name=payload.project_name,
                tags=list(payload.tags),
                location_line=payload.location.line,
                location_column=payload.location.column,
            )
            session.add(test)
            logger.debug("test_created", repository=repository, title=payload.title)
            return test

        now = _utc_now()
        test.runner_test_id = payload.test_id
        test.tags = list(payload.tags)
        test.location_line = payload.location.line
        test.location_column = payload.location.column
        test.last_seen_at = now
        test.updated_at = now
        if test.is_deleted:
            # seen again, so it still exists in the codebase
            test.is_deleted = False
            test.deleted_at = None
            test.deleted_reason = None
            logger.info("test_restored", test_id=test.id, title=test.test_title)
        session.add(test)
        return test

    async def _already_stored(
        self,
        session: AsyncSession,
        run_id: str,
        test_id: str,
        retry: int,
        started_at: datetime | None,
    ) -> bool:
        stmt = select(TestResult.id).where(
            col(TestResult.test_run_id) == run_id,
            col(TestResult.test_id) == test_id,
            col(TestResult.retry_count) == retry,
            col(TestResult.started_at) == started_at,
        )
        return (await session.execute(stmt)).first() is not None

    def _build_result(
        self,
        run: TestRun,
        test: Test,
        payload: ResultPayload,
        report: ReportPayload,
        started_at: datetime | None,
    ) -> TestResult:
        error = payload.error
        return TestResult(
            test_id=test.id,
            test_run_id=run.id,
            status=payload.status.value,
            expected_status=payload.expected_status.value,
            duration_ms=payload.duration,
            retry_count=payload.retry,
            is_final_attempt=payload.final,
            worker_index=payload.worker_index,
            parallel_index=payload.parallel_index,
            outcome=payload.outcome.value,
            error_message=error.message if error else None,
            error_stack=error.stack if error else None,
            error_snippet=error.snippet if error else None,
            attachments=list(payload.attachments),
            annotations=list(payload.annotations),
            skipped_by_dashboard=payload.skipped_by_dashboard,
            base_url=payload.base_url or (report.metadata.base_url if report.metadata else None),
            started_at=started_at,
        )


def _duration_ms(started_at: datetime, finished_at: datetime) -> int:
    return int((finished_at - started_at).total_seconds() * 1000)
