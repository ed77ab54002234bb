"""Unit tests for SkipRuleRepository."""

from __future__ import annotations

import pytest
from sqlmodel.ext.asyncio.session import AsyncSession

from testwarden.exceptions import ValidationError
from testwarden.models import database as db
from testwarden.rules.evaluator import SkipRuleEvaluator
from testwarden.storage.repositories.skip_rules import SkipRuleRepository


@pytest.fixture()
async def seeded_engine(async_engine):
    async with AsyncSession(async_engine) as session:
        for test_id in ("t1", "t2"):
            session.add(
                db.Test(
                    id=test_id,
                    runner_test_id=f"r-{test_id}",
                    repository="acme/web",
                    file_path="tests/cart.spec.ts",
                    test_title=f"cart {test_id}",
                    project_name="chromium",
                )
            )
        await session.commit()
    return async_engine


@pytest.mark.unit
class TestSkipRuleRepository:
    @pytest.mark.asyncio
    async def test_create_and_list(self, seeded_engine) -> None:
        repo = SkipRuleRepository(seeded_engine)
        rule = await repo.create("t1", "  flaky on CI ", branch_pattern=" main ")
        assert rule is not None
        assert rule.reason == "flaky on CI"
        assert rule.branch_pattern == "main"
        assert rule.env_pattern is None

        rules = await repo.list_active("t1")
        assert rules is not None
        assert [r.id for r in rules] == [rule.id]

    @pytest.mark.asyncio
    async def test_unknown_test(self, seeded_engine) -> None:
        repo = SkipRuleRepository(seeded_engine)
        assert await repo.create("nope", "reason") is None
        assert await repo.list_active("nope") is None

    @pytest.mark.asyncio
    async def test_empty_reason_rejected(self, seeded_engine) -> None:
        with pytest.raises(ValidationError, match="Reason"):
            await SkipRuleRepository(seeded_engine).create("t1", "   ")

    @pytest.mark.asyncio
    async def test_invalid_pattern_rejected(self, seeded_engine) -> None:
        with pytest.raises(ValidationError, match="Environment pattern"):
            await SkipRuleRepository(seeded_engine).create("t1", "x", env_pattern="bad host")

    @pytest.mark.asyncio
    async def test_update(self, seeded_engine) -> None:
        repo = SkipRuleRepository(seeded_engine)
        rule = await repo.create("t1", "old", branch_pattern="main")
        assert rule is not None

        updated = await repo.update(rule.id, {"reason": "new", "env_pattern": "qa.*"})
        assert updated is not None
        assert updated.reason == "new"
        assert updated.env_pattern == "qa.*"
        assert updated.branch_pattern == "main"

        cleared = await repo.update(rule.id, {"branch_pattern": ""})
        assert cleared is not None
        assert cleared.branch_pattern is None

    @pytest.mark.asyncio
    async def test_update_without_fields_rejected(self, seeded_engine) -> None:
        with pytest.raises(ValidationError, match="No fields"):
            await SkipRuleRepository(seeded_engine).update("any", {})

    @pytest.mark.asyncio
    async def test_update_unknown_rule(self, seeded_engine) -> None:
        assert await SkipRuleRepository(seeded_engine).update("nope", {"reason": "x"}) is None

    @pytest.mark.asyncio
    async def test_soft_delete(self, seeded_engine) -> None:
        repo = SkipRuleRepository(seeded_engine)
        rule = await repo.create("t1", "reason")
        assert rule is not None

        assert await repo.soft_delete("t2", rule.id) is False
        assert await repo.soft_delete("t1", rule.id) is True
        assert await repo.soft_delete("t1", rule.id) is False
        assert await repo.list_active("t1") == []
        assert await repo.update(rule.id, {"reason": "x"}) is None

    @pytest.mark.asyncio
    async def test_bulk_delete_counts_only_active(self, seeded_engine) -> None:
        repo = SkipRuleRepository(seeded_engine)
        a = await repo.create("t1", "a")
        b = await repo.create("t2", "b")
        assert a is not None
        assert b is not None
        await repo.soft_delete("t1", a.id)

        assert await repo.bulk_delete([a.id, b.id, "missing"]) == 1

    @pytest.mark.asyncio
    async def test_bulk_disable_then_enable(self, seeded_engine) -> None:
        repo = SkipRuleRepository(seeded_engine)
        evaluator = SkipRuleEvaluator(seeded_engine)

        result = await repo.bulk_toggle(["t1", "t2", "t1"], enabled=False, reason="quarantine")
        assert result == {"success": True, "count": 2, "rulesCreated": 2}
        disabled = await evaluator.evaluate("acme/web", project_name="chromium")
        assert set(disabled) == {"r-t1", "r-t2"}

        result = await repo.bulk_toggle(["t1", "t2"], enabled=True)
        assert result == {"success": True, "count": 2, "rulesRemoved": 2}
        assert await evaluator.evaluate("acme/web", project_name="chromium") == {}

    @pytest.mark.asyncio
    async def test_bulk_toggle_unknown_id_changes_nothing(self, seeded_engine) -> None:
        repo = SkipRuleRepository(seeded_engine)
        assert await repo.bulk_toggle(["t1", "ghost"], enabled=False, reason="x") is None
        assert await repo.list_active("t1") == []

    @pytest.mark.asyncio
    async def test_bulk_disable_requires_reason(self, seeded_engine) -> None:
        with pytest.raises(ValidationError):
            await SkipRuleRepository(seeded_engine).bulk_toggle(["t1"], enabled=False)
