"""Evaluate stored skip rules for a repository against a runner's context."""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

import structlog
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from testwarden.exceptions import ValidationError
from testwarden.models.api import DisabledTest
from testwarden.models.database import SkipRule, Test
from testwarden.rules.matcher import first_matching_rule

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


def disabled_map_key(runner_test_id: str, project_name: str, project_filtered: bool) -> str:
    """Key a runner uses to look a test up in the disabled map.

    When the caller already narrowed to one project the runner's own test id
    is unique; otherwise the project name is appended.
    """
    if project_filtered:
        return runner_test_id
    return f"{runner_test_id}:{project_name}"


class SkipRuleEvaluator:
    """Read-only; safe to call concurrently."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def evaluate(
        self,
        repository: str | None,
        test_ids: list[str] | None = None,
        project_name: str | None = None,
        branch: str | None = None,
        base_url: str | None = None,
    ) -> dict[str, DisabledTest]:
        if not repository:
            raise ValidationError("repository is required")

        conditions = [
            col(Test.repository) == repository,
            col(Test.is_deleted).is_(False),
            col(SkipRule.deleted_at).is_(None),
        ]
        if test_ids:
            conditions.append(col(Test.runner_test_id).in_(test_ids))
        if project_name:
            conditions.append(col(Test.project_name) == project_name)

        stmt = (
            select(Test.runner_test_id, Test.project_name, SkipRule)
            .join(SkipRule, col(SkipRule.test_id) == col(Test.id))
            .where(*conditions)
            .order_by(col(SkipRule.created_at).asc(), col(SkipRule.id).asc())
        )
        async with AsyncSession(self._engine) as session:
            rows = (await session.execute(stmt)).all()

        rules_by_key: dict[str, list[SkipRule]] = defaultdict(list)
        for runner_test_id, test_project, rule in rows:
            key = disabled_map_key(runner_test_id, test_project, bool(project_name))
            rules_by_key[key].append(rule)

        disabled: dict[str, DisabledTest] = {}
        for key, rules in rules_by_key.items():
            hit = first_matching_rule(rules, branch, base_url)
            if hit is None:
                continue
            rule, match = hit
            disabled[key] = DisabledTest(
                reason=rule.reason,
                rule_id=rule.id,
                matched_branch=match.matched_branch,
                matched_env=match.matched_env,
            )

        logger.debug(
            "skip_rules_evaluated",
            repository=repository,
            project_name=project_name,
            branch=branch,
            candidates=len(rules_by_key),
            disabled=len(disabled),
        )
        return disabled
