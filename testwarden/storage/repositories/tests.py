"""Database-backed test identity lookups and soft-deletion."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from testwarden.models.database import Test, TestHealth, TestResult, TestRun, _utc_now
from testwarden.storage.repositories.health import get_health

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

RECENT_RESULTS_LIMIT = 50


@dataclass
class TestDetail:
    test: Test
    health: TestHealth | None
    results: list[tuple[TestResult, TestRun]] = field(default_factory=list)


class TestRepository:
    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def get_detail(self, test_id: str) -> TestDetail | None:
        """A test with its health row and most recent results (all attempts)."""
        async with AsyncSession(self._engine) as session:
            test = await session.get(Test, test_id)
            if test is None:
                return None
            health = await get_health(session, test_id)
            stmt = (
                select(TestResult, TestRun)
                .join(TestRun, col(TestResult.test_run_id) == col(TestRun.id))
                .where(col(TestResult.test_id) == test_id)
                .order_by(col(TestResult.started_at).desc())
                .limit(RECENT_RESULTS_LIMIT)
            )
            rows = (await session.execute(stmt)).all()
            return TestDetail(test=test, health=health, results=[(r, run) for r, run in rows])

    async def soft_delete(self, test_id: str, reason: str | None = None) -> Test | None:
        """Hide a test from evaluation; the next report that mentions it restores it."""
        async with AsyncSession(self._engine, expire_on_commit=False) as session:
            test = await session.get(Test, test_id)
            if test is None:
                return None
            if not test.is_deleted:
                now = _utc_now()
                test.is_deleted = True
                test.deleted_at = now
                test.deleted_reason = reason
                test.updated_at = now
                session.add(test)
                await session.commit()
                logger.info("test_soft_deleted", test_id=test_id, reason=reason)
            return test
