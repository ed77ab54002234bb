"""Runner-side disablement checks against ``POST /api/tests/check``."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pydantic
import structlog

from testwarden.client.cache import CacheKey, DisablementCache
from testwarden.config.settings import ClientSettings
from testwarden.exceptions import ClientTransportError
from testwarden.models.api import CheckResponse, DisabledTest

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0


class DisablementChecker:
    """Asks the API which tests are disabled for a project and caches the answer.

    The whole project's disabled map is fetched once per cache key, so a
    runner checking hundreds of tests makes one request per TTL.

    With ``fail_open`` (the default) an unreachable API means "nothing is
    disabled" and tests keep running; otherwise ``ClientTransportError`` is
    raised to the caller.

    A checker built with ``enabled=False`` never calls the API and reports
    nothing disabled.
    """

    def __init__(
        self,
        api_url: str,
        repository: str,
        cache: DisablementCache[CheckResponse] | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        fail_open: bool = True,
        enabled: bool = True,
    ) -> None:
        if not repository:
            msg = "repository is required, e.g. 'org/repo'"
            raise ValueError(msg)
        self._api_url = api_url.rstrip("/")
        self._repository = repository
        self._cache = cache if cache is not None else DisablementCache()
        self._timeout = timeout
        self._fail_open = fail_open
        self._enabled = enabled

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings,
        cache: DisablementCache[CheckResponse] | None = None,
    ) -> DisablementChecker:
        return cls(
            api_url=settings.api_url,
            repository=settings.repository,
            cache=cache if cache is not None else DisablementCache(settings.cache_ttl),
            timeout=settings.timeout,
            fail_open=settings.fail_open,
            enabled=settings.enabled,
        )

    async def fetch(
        self,
        project_name: str,
        branch: str | None = None,
        base_url: str | None = None,
    ) -> CheckResponse:
        """Call the API directly, bypassing the cache."""
        payload: dict[str, Any] = {"repository": self._repository, "projectName": project_name}
        if branch:
            payload["branch"] = branch
        if base_url:
            payload["baseURL"] = base_url

        try:
            # httpx timeouts are per phase; the deadline bounds the whole exchange
            return await asyncio.wait_for(self._post(payload), timeout=self._timeout)
        except (TimeoutError, httpx.TimeoutException) as e:
            raise ClientTransportError(f"Timed out after {self._timeout}s checking disabled tests") from e
        except httpx.HTTPError as e:
            raise ClientTransportError(f"Failed to check disabled tests: {e}") from e
        except (ValueError, pydantic.ValidationError) as e:
            raise ClientTransportError(f"Malformed disabled-tests response: {e}") from e

    async def _post(self, payload: dict[str, Any]) -> CheckResponse:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(f"{self._api_url}/api/tests/check", json=payload)
            resp.raise_for_status()
            return CheckResponse.model_validate(resp.json())

    async def get_disabled(
        self,
        project_name: str,
        branch: str | None = None,
        base_url: str | None = None,
    ) -> dict[str, DisabledTest]:
        if not self._enabled:
            return {}
        key = CacheKey(self._repository, project_name, branch, base_url)
        try:
            response = await self._cache.fetch_once(
                key, lambda: self.fetch(project_name, branch=branch, base_url=base_url)
            )
        except ClientTransportError as e:
            if not self._fail_open:
                raise
            logger.warning(
                "disablement_check_failed_open",
                repository=self._repository,
                project=project_name,
                error=str(e),
            )
            return {}
        return response.disabled_tests

    async def is_disabled(
        self,
        test_id: str,
        project_name: str,
        branch: str | None = None,
        base_url: str | None = None,
    ) -> DisabledTest | None:
        """The matching rule's details if ``test_id`` should be skipped, else None."""
        disabled = await self.get_disabled(project_name, branch=branch, base_url=base_url)
        info = disabled.get(test_id)
        if info is not None:
            logger.info(
                "test_disabled",
                test_id=test_id,
                project=project_name,
                reason=info.reason,
                rule_id=info.rule_id,
            )
        return info
