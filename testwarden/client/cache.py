"""Runner-side cache for disabled-test lookups.

One cache belongs to one runner process and is passed to whatever needs it;
there is no module-level instance. Entries live for ``ttl_seconds`` and
concurrent misses on the same key share a single in-flight fetch.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Generic, NamedTuple, TypeVar

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 60.0

T = TypeVar("T")


class CacheKey(NamedTuple):
    """Execution context a response is valid for."""

    repository: str
    project: str | None = None
    branch: str | None = None
    base_url: str | None = None


class DisablementCache(Generic[T]):
    def __init__(self, ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS) -> None:
        self._ttl = ttl_seconds
        self._entries: dict[CacheKey, tuple[T, float]] = {}  # key -> (value, fetched_at)
        self._pending: dict[CacheKey, asyncio.Task[T]] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: CacheKey) -> T | None:
        """Return the cached value, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, fetched_at = entry
        if time.monotonic() - fetched_at > self._ttl:
            del self._entries[key]
            return None
        return value

    def set(self, key: CacheKey, value: T) -> None:
        self._entries[key] = (value, time.monotonic())

    async def fetch_once(self, key: CacheKey, fetcher: Callable[[], Awaitable[T]]) -> T:
        """Return a cached value or fetch it, sharing one fetch among concurrent callers.

        A failed fetch is not cached; every caller waiting on it sees the error.
        """
        cached = self.get(key)
        if cached is not None:
            logger.debug("disablement_cache_hit", key=key)
            return cached

        task = self._pending.get(key)
        if task is None:
            logger.debug("disablement_cache_miss", key=key)
            task = asyncio.ensure_future(self._fetch_and_store(key, fetcher))
            self._pending[key] = task
        else:
            logger.debug("disablement_fetch_joined", key=key)
        # shield: one cancelled waiter must not cancel the shared fetch
        return await asyncio.shield(task)

    async def _fetch_and_store(self, key: CacheKey, fetcher: Callable[[], Awaitable[T]]) -> T:
        task = asyncio.current_task()
        try:
            value = await fetcher()
            # a clear() or a newer fetch may have replaced this one
            if self._pending.get(key) is task:
                self.set(key, value)
            return value
        finally:
            if self._pending.get(key) is task:
                del self._pending[key]

    def clear(self) -> None:
        """Drop all entries. Fetches already in flight still answer their callers but are not stored."""
        self._entries.clear()
        self._pending.clear()
