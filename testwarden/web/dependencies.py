"""FastAPI dependency injection.

Everything hangs off ``get_engine`` so tests can swap the database with a
single ``app.dependency_overrides[get_engine]`` entry.
"""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncEngine

from testwarden.config.settings import get_settings
from testwarden.health.scorer import HealthConfig
from testwarden.rules.evaluator import SkipRuleEvaluator
from testwarden.storage.database import get_engine
from testwarden.storage.repositories.ingest import ResultIngestor
from testwarden.storage.repositories.skip_rules import SkipRuleRepository
from testwarden.storage.repositories.tests import TestRepository


def get_health_config() -> HealthConfig:
    return get_settings().health_config()


def get_ingestor(
    engine: AsyncEngine = Depends(get_engine),
    config: HealthConfig = Depends(get_health_config),
) -> ResultIngestor:
    return ResultIngestor(engine, config)


def get_evaluator(engine: AsyncEngine = Depends(get_engine)) -> SkipRuleEvaluator:
    return SkipRuleEvaluator(engine)


def get_skip_rule_repo(engine: AsyncEngine = Depends(get_engine)) -> SkipRuleRepository:
    return SkipRuleRepository(engine)


def get_test_repo(engine: AsyncEngine = Depends(get_engine)) -> TestRepository:
    return TestRepository(engine)
