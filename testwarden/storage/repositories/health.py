"""Health row recomputation from stored final-attempt history."""

from __future__ import annotations

from dataclasses import asdict
from typing import TYPE_CHECKING

import structlog
from sqlmodel import col, select

from testwarden.health.scorer import HealthConfig, HealthSnapshot, HistoryEntry, score_history
from testwarden.models.database import TestHealth, TestResult, _utc_now

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = structlog.get_logger(__name__)


async def load_history(
    session: AsyncSession, test_id: str, limit: int
) -> list[HistoryEntry]:
    """Newest-first final attempts for a test, truncated to ``limit``."""
    stmt = (
        select(TestResult)
        .where(col(TestResult.test_id) == test_id, col(TestResult.is_final_attempt).is_(True))
        .order_by(col(TestResult.started_at).desc(), col(TestResult.created_at).desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return [
        HistoryEntry(
            outcome=r.outcome,
            status=r.status,
            duration_ms=r.duration_ms,
            started_at=r.started_at,
        )
        for r in result.scalars().all()
    ]


async def recompute_health(
    session: AsyncSession, test_id: str, config: HealthConfig
) -> HealthSnapshot | None:
    """Rebuild the single health row for ``test_id`` inside the caller's transaction.

    With no final-attempt history nothing is written and None is returned.
    """
    history = await load_history(session, test_id, config.overall_window)
    snapshot = score_history(history, config)
    if snapshot is None:
        return None

    existing = (
        await session.execute(select(TestHealth).where(col(TestHealth.test_id) == test_id))
    ).scalars().first()
    values = asdict(snapshot)
    if existing:
        for key, value in values.items():
            setattr(existing, key, value)
        existing.updated_at = _utc_now()
        session.add(existing)
    else:
        session.add(TestHealth(test_id=test_id, **values))

    logger.debug(
        "test_health_recomputed",
        test_id=test_id,
        health_score=snapshot.health_score,
        trend=snapshot.trend,
    )
    return snapshot


async def get_health(session: AsyncSession, test_id: str) -> TestHealth | None:
    stmt = select(TestHealth).where(col(TestHealth.test_id) == test_id)
    return (await session.execute(stmt)).scalars().first()
