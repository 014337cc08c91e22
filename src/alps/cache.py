import asyncio
from dataclasses import dataclass
from datetime import datetime
import time
from typing import Any, Awaitable, Callable, List

import cachetools
from sanic.log import logger

from alps.github.api import API
from alps.github.model import ActionsRun
from alps.metric import github_data_cache_total

_MISSING = object()


@dataclass(frozen=True)
class _Entry:
    value: Any
    ttl: float


def _ttu(_key, entry: _Entry, now: float) -> float:
    return now + entry.ttl


def cache_key(org: str, repo: str, suffix: str) -> str:
    return f"{org}/{repo}/{suffix}"


class GitHubDataCache:
    """In-memory TTL cache for GitHub responses keyed ``org/repo/<suffix>``.

    Every entry carries its own time to live so builds with different
    expiration settings can share one instance. The lock is only held around
    reads and writes of the underlying map, never across a fetch.
    """

    def __init__(
        self, maxsize: int = 1024, timer: Callable[[], float] = time.monotonic
    ):
        self._data = cachetools.TLRUCache(maxsize=maxsize, ttu=_ttu, timer=timer)
        self.lock = asyncio.Lock()

    async def get(self, key: str, default: Any = None) -> Any:
        async with self.lock:
            entry = self._data.get(key, _MISSING)
        if entry is _MISSING:
            return default
        return entry.value

    async def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        async with self.lock:
            self._data[key] = _Entry(value=value, ttl=ttl_seconds)

    async def get_or_fetch(
        self,
        key: str,
        ttl_seconds: float,
        fetch: Callable[[], Awaitable[Any]],
        kind: str = "other",
    ) -> Any:
        async with self.lock:
            entry = self._data.get(key, _MISSING)
        if entry is not _MISSING:
            github_data_cache_total.labels(kind=kind, result="hit").inc()
            logger.debug("GitHub data cache hit %s", key)
            return entry.value

        github_data_cache_total.labels(kind=kind, result="miss").inc()
        value = await fetch()
        await self.set(key, value, ttl_seconds)
        return value

    async def invalidate(self, key: str) -> None:
        async with self.lock:
            self._data.pop(key, None)

    async def invalidate_prefix(self, prefix: str) -> int:
        async with self.lock:
            keys = [k for k in list(self._data.keys()) if k.startswith(prefix)]
            for k in keys:
                self._data.pop(k, None)
        logger.debug("Invalidated %d cache entries with prefix %s", len(keys), prefix)
        return len(keys)

    async def invalidate_all(self) -> None:
        async with self.lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


class CachedAPI:
    """Caching view of :class:`API` for a single build's expiration setting.

    Only the inputs of selector matching go through here. Repository
    metadata is keyed on the latest commit by the metadata gate and must not
    be answered from entries that predate that commit.
    """

    def __init__(self, api: API, cache: GitHubDataCache, ttl_minutes: int):
        self.api = api
        self.cache = cache
        self.ttl_seconds = ttl_minutes * 60

    async def workflow_runs(
        self, org: str, repo: str, since: datetime, limit: int = 100
    ) -> List[ActionsRun]:
        return await self.cache.get_or_fetch(
            cache_key(org, repo, f"runs/{since.isoformat()}/{limit}"),
            self.ttl_seconds,
            lambda: self.api.workflow_runs(org, repo, since, limit=limit),
            kind="runs",
        )

    async def tags(self, org: str, repo: str, limit: int = 50) -> List[str]:
        return await self.cache.get_or_fetch(
            cache_key(org, repo, f"tags/{limit}"),
            self.ttl_seconds,
            lambda: self.api.tags(org, repo, limit=limit),
            kind="tags",
        )

    async def invalidate(self, org: str, repo: str) -> int:
        """Drop every cached entry of the repository."""
        return await self.cache.invalidate_prefix(cache_key(org, repo, ""))
