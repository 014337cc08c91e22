from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Dict, Iterable, Optional, Protocol

from sanic.log import logger

from alps.metric import metadata_cache_total, metadata_write_back_total
from alps.model import Build, CachedMetadata, SevenDayWindow
from alps.stats.interfaces import BuildRepository, MetadataSource
from alps.stats.trends import empty_commit_histogram, monthly_commit_histogram
from alps.stats.types import MetadataTier, RepositoryMetadata
from alps.stats.windows import resolve_anchor, window_start_days, window_start_months

TIER_FIELDS = {
    MetadataTier.base: ("tags", "total_commits", "total_contributors"),
    MetadataTier.details: ("contributors", "most_updated_files", "monthly_commits"),
}

WINDOW_FIELDS = ("commits_last_7_days", "contributors_last_7_days")

_EMPTY_VALUES: Dict[str, Any] = {
    "tags": [],
    "total_commits": 0,
    "total_contributors": 0,
    "contributors": [],
    "most_updated_files": [],
    "commits_last_7_days": 0,
    "contributors_last_7_days": 0,
}


class _Failed:
    def __repr__(self) -> str:
        return "<failed>"


FAILED = _Failed()


class MetadataGateConfig(Protocol):
    STATS_WINDOW_DAYS: int
    TREND_WINDOW_MONTHS: int
    METADATA_TAG_LIMIT: int
    CONTRIBUTORS_LIMIT: int
    MOST_ACTIVE_FILES_LIMIT: int


class MetadataCacheGate:
    """Serve expensive repository metadata from the build record while the
    repository's latest commit is unchanged.

    The latest commit SHA is the cache key. When it matches
    ``build.last_analyzed_commit_sha`` and every field the requested tiers need
    is cached, the cached values are returned and nothing else is fetched or
    written. Otherwise the missing fields (or all of them, on a key change)
    are fetched concurrently and written back together with the new SHA in a
    single update. The trailing seven-day commit and contributor counts are
    stored in their own block under the same key.
    """

    def __init__(
        self,
        api: Optional[MetadataSource],
        build_store: Optional[BuildRepository],
        config: MetadataGateConfig,
    ):
        self.api = api
        self.build_store = build_store
        self.config = config

    async def resolve(
        self,
        build: Build,
        tiers: Iterable[MetadataTier] = (MetadataTier.base,),
        anchor: Optional[datetime] = None,
    ) -> RepositoryMetadata:
        anchor = resolve_anchor(anchor)
        tiers = tuple(tiers)
        required = [field for tier in tiers for field in TIER_FIELDS[tier]]

        if self.api is None:
            metadata_cache_total.labels(result="disabled").inc()
            return self._empty(tiers, anchor)

        try:
            latest = await self.api.latest_commit(build.organization, build.repository)
        except Exception:  # noqa: BLE001
            metadata_cache_total.labels(result="error").inc()
            logger.warning(
                "Latest commit probe failed for %s, serving empty metadata",
                build,
                exc_info=True,
            )
            return self._empty(tiers, anchor)

        sha = latest.sha if latest is not None else None
        cached = build.cached_metadata
        warm = (
            sha is not None
            and sha == build.last_analyzed_commit_sha
            and cached is not None
        )

        if warm:
            missing = [f for f in required if getattr(cached, f) is None]
            refresh_window = build.cached_window is None
        else:
            missing = list(required)
            refresh_window = True

        if warm and not missing and not refresh_window:
            logger.debug("Metadata cache warm for %s sha=%s", build, sha[:7])
            metadata_cache_total.labels(result="warm").inc()
            return self._assemble(
                cached, build.cached_window, {}, latest, tiers, anchor
            )

        if not warm:
            decision = "cold"
        elif missing:
            decision = "partial"
        else:
            decision = "window_only"
        metadata_cache_total.labels(result=decision).inc()
        logger.info(
            "Metadata cache %s for %s sha=%s fields=%s window=%s",
            decision,
            build,
            sha[:7] if sha else None,
            ",".join(missing),
            refresh_window,
        )

        fetched = await self._fetch(build, missing, refresh_window, anchor)

        block = cached.model_copy() if warm else CachedMetadata()
        for field in missing:
            value = fetched[field]
            setattr(block, field, None if value is FAILED else value)

        window = build.cached_window
        if refresh_window:
            window = None
            if all(fetched[f] is not FAILED for f in WINDOW_FIELDS):
                window = SevenDayWindow(
                    commits=fetched["commits_last_7_days"],
                    contributors=fetched["contributors_last_7_days"],
                )

        if sha is not None:
            update: Dict[str, Any] = {}
            if missing:
                update["last_analyzed_commit_sha"] = sha
                update["cached_metadata"] = block
                update["cached_window"] = window
            elif window is not None:
                update["cached_window"] = window
            self._write_back(build, update, "metadata" if missing else "window")

        return self._assemble(block, window, fetched, latest, tiers, anchor)

    async def _fetch(
        self,
        build: Build,
        fields: Iterable[str],
        refresh_window: bool,
        anchor: datetime,
    ) -> Dict[str, Any]:
        org, repo = build.organization, build.repository
        api = self.api
        config = self.config

        calls: Dict[str, Awaitable[Any]] = {}
        for field in fields:
            if field == "tags":
                calls[field] = api.tags(org, repo, limit=config.METADATA_TAG_LIMIT)
            elif field == "total_commits":
                calls[field] = api.commit_count(org, repo)
            elif field == "total_contributors":
                calls[field] = api.total_contributors(org, repo)
            elif field == "contributors":
                calls[field] = api.contributors_list(
                    org, repo, limit=config.CONTRIBUTORS_LIMIT
                )
            elif field == "most_updated_files":
                calls[field] = api.most_active_files(
                    org, repo, limit=config.MOST_ACTIVE_FILES_LIMIT
                )
            elif field == "monthly_commits":
                calls[field] = self._monthly_commits(org, repo, anchor)
            else:
                raise ValueError(f"Unknown metadata field {field}")

        if refresh_window:
            since = window_start_days(anchor, config.STATS_WINDOW_DAYS)
            calls["commits_last_7_days"] = api.commit_count(
                org, repo, since=since, until=anchor
            )
            calls["contributors_last_7_days"] = api.contributor_count(
                org, repo, since=since
            )

        names = list(calls.keys())
        results = await asyncio.gather(
            *[self._guard(build, name, calls[name]) for name in names]
        )
        return dict(zip(names, results))

    async def _monthly_commits(self, org: str, repo: str, anchor: datetime):
        months = self.config.TREND_WINDOW_MONTHS
        dates = await self.api.commits_with_dates(
            org, repo, since=window_start_months(anchor, months), until=anchor
        )
        return monthly_commit_histogram(dates, anchor, months)

    @staticmethod
    async def _guard(build: Build, name: str, call: Awaitable[Any]) -> Any:
        try:
            return await call
        except Exception:  # noqa: BLE001
            logger.warning(
                "Failed to fetch %s for %s, using empty value",
                name,
                build,
                exc_info=True,
            )
            return FAILED

    def _write_back(self, build: Build, update: Dict[str, Any], scope: str) -> None:
        if not update or self.build_store is None:
            return
        try:
            self.build_store.update_cached_metadata(build.id, update, build.tenant_id)
        except Exception:  # noqa: BLE001
            metadata_write_back_total.labels(scope=scope, result="error").inc()
            logger.error(
                "Failed to write back cached %s for %s", scope, build, exc_info=True
            )
        else:
            metadata_write_back_total.labels(scope=scope, result="ok").inc()
            logger.debug("Cached %s written back for %s", scope, build)

    def _empty(self, tiers, anchor: datetime) -> RepositoryMetadata:
        return self._assemble(CachedMetadata(), None, {}, None, tiers, anchor)

    def _assemble(
        self,
        block: CachedMetadata,
        window: Optional[SevenDayWindow],
        fetched: Dict[str, Any],
        latest,
        tiers,
        anchor: datetime,
    ) -> RepositoryMetadata:
        def value(field: str) -> Any:
            if field in fetched:
                result = fetched[field]
            elif field in WINDOW_FIELDS:
                result = None
                if window is not None:
                    result = (
                        window.commits
                        if field == "commits_last_7_days"
                        else window.contributors
                    )
            else:
                result = getattr(block, field)
            if result is None or result is FAILED:
                if field == "monthly_commits":
                    return empty_commit_histogram(
                        anchor, self.config.TREND_WINDOW_MONTHS
                    )
                return _EMPTY_VALUES[field]
            return result

        data: Dict[str, Any] = {"last_commit": latest}
        for field in WINDOW_FIELDS:
            data[field] = value(field)
        for tier in tiers:
            for field in TIER_FIELDS[tier]:
                data[field] = value(field)
        return RepositoryMetadata(**data)
