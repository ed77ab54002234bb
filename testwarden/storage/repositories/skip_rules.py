"""Database-backed skip rule management."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import update
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from testwarden.exceptions import ValidationError
from testwarden.models.database import SkipRule, Test, _utc_now
from testwarden.rules.glob import validate_patterns

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


def _clean_reason(reason: str | None) -> str:
    if reason is None or not reason.strip():
        raise ValidationError("Reason is required and cannot be empty")
    return reason.strip()


class SkipRuleRepository:
    """Creates, edits and soft-deletes skip rules. Deleted rules are never matched."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def list_active(self, test_id: str) -> list[SkipRule] | None:
        """Active rules for a test, newest first. None if the test does not exist."""
        async with AsyncSession(self._engine) as session:
            if await session.get(Test, test_id) is None:
                return None
            stmt = (
                select(SkipRule)
                .where(col(SkipRule.test_id) == test_id, col(SkipRule.deleted_at).is_(None))
                .order_by(col(SkipRule.created_at).desc())
            )
            return list((await session.execute(stmt)).scalars().all())

    async def create(
        self,
        test_id: str,
        reason: str | None,
        branch_pattern: str | None = None,
        env_pattern: str | None = None,
    ) -> SkipRule | None:
        reason = _clean_reason(reason)
        branch_pattern, env_pattern = validate_patterns(branch_pattern, env_pattern)
        async with AsyncSession(self._engine, expire_on_commit=False) as session:
            if await session.get(Test, test_id) is None:
                return None
            rule = SkipRule(
                test_id=test_id,
                reason=reason,
                branch_pattern=branch_pattern,
                env_pattern=env_pattern,
            )
            session.add(rule)
            await session.commit()
            logger.info(
                "skip_rule_created",
                rule_id=rule.id,
                test_id=test_id,
                branch_pattern=branch_pattern,
                env_pattern=env_pattern,
            )
            return rule

    async def update(self, rule_id: str, changes: dict[str, Any]) -> SkipRule | None:
        """Apply a partial update; only keys present in ``changes`` are touched."""
        fields: dict[str, Any] = {}
        if "reason" in changes:
            fields["reason"] = _clean_reason(changes["reason"])
        if "branch_pattern" in changes or "env_pattern" in changes:
            branch, env = validate_patterns(
                changes.get("branch_pattern"), changes.get("env_pattern")
            )
            if "branch_pattern" in changes:
                fields["branch_pattern"] = branch
            if "env_pattern" in changes:
                fields["env_pattern"] = env
        if not fields:
            raise ValidationError("No fields to update")

        async with AsyncSession(self._engine, expire_on_commit=False) as session:
            rule = await session.get(SkipRule, rule_id)
            if rule is None or rule.deleted_at is not None:
                return None
            for key, value in fields.items():
                setattr(rule, key, value)
            session.add(rule)
            await session.commit()
            logger.info("skip_rule_updated", rule_id=rule_id, fields=sorted(fields))
            return rule

    async def soft_delete(self, test_id: str, rule_id: str) -> bool:
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                update(SkipRule)
                .where(
                    col(SkipRule.id) == rule_id,
                    col(SkipRule.test_id) == test_id,
                    col(SkipRule.deleted_at).is_(None),
                )
                .values(deleted_at=_utc_now())
            )
            await session.commit()
        deleted = result.rowcount > 0
        if deleted:
            logger.info("skip_rule_deleted", rule_id=rule_id, test_id=test_id)
        return deleted

    async def bulk_delete(self, rule_ids: list[str]) -> int:
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                update(SkipRule)
                .where(col(SkipRule.id).in_(rule_ids), col(SkipRule.deleted_at).is_(None))
                .values(deleted_at=_utc_now())
            )
            await session.commit()
        logger.info("skip_rules_bulk_deleted", requested=len(rule_ids), deleted=result.rowcount)
        return result.rowcount

    async def bulk_toggle(
        self,
        test_ids: list[str],
        enabled: bool,
        reason: str | None = None,
        branch_pattern: str | None = None,
        env_pattern: str | None = None,
    ) -> dict[str, Any] | None:
        """Enable (drop every active rule) or disable (add one rule each) for many tests.

        Returns None if any of the test ids is unknown; nothing is changed then.
        """
        unique_ids = list(dict.fromkeys(test_ids))
        if not enabled:
            reason = _clean_reason(reason)
            branch_pattern, env_pattern = validate_patterns(branch_pattern, env_pattern)

        async with AsyncSession(self._engine) as session:
            found = (
                await session.execute(select(Test.id).where(col(Test.id).in_(unique_ids)))
            ).all()
            if len(found) != len(unique_ids):
                return None

            if enabled:
                result = await session.execute(
                    update(SkipRule)
                    .where(col(SkipRule.test_id).in_(unique_ids), col(SkipRule.deleted_at).is_(None))
                    .values(deleted_at=_utc_now())
                )
                await session.commit()
                logger.info("tests_enabled", count=len(unique_ids), rules_removed=result.rowcount)
                return {"success": True, "count": len(unique_ids), "rulesRemoved": result.rowcount}

            session.add_all(
                SkipRule(
                    test_id=test_id,
                    reason=reason,  # type: ignore[arg-type]
                    branch_pattern=branch_pattern,
                    env_pattern=env_pattern,
                )
                for test_id in unique_ids
            )
            await session.commit()
        logger.info("tests_disabled", count=len(unique_ids), branch_pattern=branch_pattern)
        return {"success": True, "count": len(unique_ids), "rulesCreated": len(unique_ids)}
