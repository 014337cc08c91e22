from __future__ import annotations

from datetime import datetime
import time
from typing import Callable, List, Optional, Protocol, Sequence

from sanic.log import logger

from alps.cache import CachedAPI, GitHubDataCache
from alps.config import SETTINGS
from alps.exceptions import AccessTokenNotFound
from alps.metric import stats_compute_total
from alps.model import Build
from alps.stats.health import aggregate_health
from alps.stats.interfaces import (
    BuildRepository,
    GitHubSource,
    TestResultRepository,
    WorkflowRunRepository,
)
from alps.stats.metadata import MetadataCacheGate
from alps.stats.selectors import filter_runs, needs_tags
from alps.stats.tokens import TokenResolver
from alps.stats.trends import (
    monthly_duration_stats,
    monthly_run_stats,
    reconstruct_test_trend,
)
from alps.stats.types import (
    BuildDetailsStatistics,
    BuildStatistics,
    MetadataTier,
    RepositoryMetadata,
    TestStats,
)
from alps.stats.windows import resolve_anchor, window_start_days, window_start_months
from alps.storage.types import WorkflowRunRecord


class OrchestratorConfig(Protocol):
    STATS_WINDOW_DAYS: int
    TREND_WINDOW_MONTHS: int
    METADATA_TAG_LIMIT: int
    SELECTOR_TAG_LIMIT: int
    CONTRIBUTORS_LIMIT: int
    MOST_ACTIVE_FILES_LIMIT: int
    RECENT_RUNS_LIMIT: int
    WORKFLOW_RUNS_LIMIT: int


ApiFactory = Callable[[str], GitHubSource]


class _Orchestrator:
    variant: str

    def __init__(
        self,
        *,
        token_resolver: TokenResolver,
        api_factory: ApiFactory,
        build_store: Optional[BuildRepository] = None,
        config: OrchestratorConfig = SETTINGS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.token_resolver = token_resolver
        self.api_factory = api_factory
        self.build_store = build_store
        self.config = config
        self.clock = clock

    def _now(self) -> datetime:
        return resolve_anchor(self.clock() if self.clock is not None else None)

    async def _github_for(self, build: Build) -> Optional[GitHubSource]:
        try:
            token = await self.token_resolver.resolve_for_build(build)
        except AccessTokenNotFound:
            logger.warning(
                "Saved access token %s for %s is gone, continuing without GitHub",
                build.access_token_id,
                build,
            )
            return None
        return self.api_factory(token)

    def _gate(self, api: Optional[GitHubSource]) -> MetadataCacheGate:
        return MetadataCacheGate(api, self.build_store, self.config)

    def _assemble(
        self,
        build: Build,
        runs: Sequence[WorkflowRunRecord],
        metadata: RepositoryMetadata,
        anchor: datetime,
        test_stats: Optional[TestStats] = None,
    ) -> dict:
        health = aggregate_health(runs, anchor, self.config.STATS_WINDOW_DAYS)
        return dict(
            build_id=build.id,
            total_executions=health.total,
            successful_executions=health.success,
            failed_executions=health.failure,
            health_percentage=health.percentage,
            health_badge=health.badge,
            last_tag=metadata.last_tag,
            last_7_days=health.daily,
            recent_runs=list(runs[: self.config.RECENT_RUNS_LIMIT]),
            last_fetched_at=anchor,
            commits_last_7_days=metadata.commits_last_7_days,
            contributors_last_7_days=metadata.contributors_last_7_days,
            last_commit=metadata.last_commit,
            total_commits=metadata.total_commits,
            total_contributors=metadata.total_contributors,
            test_stats=test_stats,
        )

    async def compute_statistics(self, build: Build) -> BuildStatistics:
        started = time.monotonic()
        logger.info("Stats compute start variant=%s build=%s", self.variant, build)
        try:
            stats = await self._compute_statistics(build)
        except Exception:  # noqa: BLE001
            stats_compute_total.labels(variant=self.variant, result="error").inc()
            logger.error(
                "Stats compute failed variant=%s build=%s",
                self.variant,
                build,
                exc_info=True,
            )
            raise
        stats_compute_total.labels(variant=self.variant, result="ok").inc()
        logger.info(
            "Stats compute done variant=%s build=%s total=%d health=%d duration_ms=%.1f",
            self.variant,
            build,
            stats.total_executions,
            stats.health_percentage,
            (time.monotonic() - started) * 1000.0,
        )
        return stats

    async def _compute_statistics(self, build: Build) -> BuildStatistics:
        raise NotImplementedError()


class LiveStatsOrchestrator(_Orchestrator):
    """Statistics straight from the GitHub API, filtered by the build's selectors."""

    variant = "live"

    def __init__(self, *, cache: GitHubDataCache, **kwargs):
        super().__init__(**kwargs)
        self.cache = cache

    async def _compute_statistics(self, build: Build) -> BuildStatistics:
        anchor = self._now()
        since = window_start_days(anchor, self.config.STATS_WINDOW_DAYS)

        api = await self._github_for(build)
        if api is None:
            runs: List[WorkflowRunRecord] = []
            metadata = await self._gate(None).resolve(build, anchor=anchor)
            return BuildStatistics(**self._assemble(build, runs, metadata, anchor))

        # metadata freshness is decided by the commit sha, not the data cache ttl
        metadata = await self._gate(api).resolve(build, anchor=anchor)

        cached = CachedAPI(api, self.cache, build.cache_expiration_minutes)
        latest = metadata.last_commit
        if latest is not None and latest.sha != build.last_analyzed_commit_sha:
            dropped = await cached.invalidate(build.organization, build.repository)
            logger.debug(
                "New commit %s for %s, dropped %d cached entries",
                latest.sha[:7],
                build,
                dropped,
            )

        github_runs = await cached.workflow_runs(
            build.organization,
            build.repository,
            since,
            limit=self.config.WORKFLOW_RUNS_LIMIT,
        )

        tags: Sequence[str] = ()
        if needs_tags(build.selectors):
            try:
                tags = await cached.tags(
                    build.organization,
                    build.repository,
                    limit=self.config.SELECTOR_TAG_LIMIT,
                )
            except Exception:  # noqa: BLE001
                logger.warning(
                    "Failed to fetch tags for %s, matching tag refs only",
                    build,
                    exc_info=True,
                )

        records = [
            WorkflowRunRecord.from_github_run(
                run, build_id=build.id, tenant_id=build.tenant_id
            )
            for run in github_runs
        ]
        runs = [
            r
            for r in filter_runs(records, build.selectors, tags)
            if r.workflow_created_at >= since
        ]
        logger.debug(
            "Live runs for %s fetched=%d selected=%d tags=%d",
            build,
            len(records),
            len(runs),
            len(tags),
        )

        return BuildStatistics(**self._assemble(build, runs, metadata, anchor))


class DatabaseStatsOrchestrator(_Orchestrator):
    """Statistics from synced run records, with metadata refreshed on new commits."""

    variant = "database"

    def __init__(
        self,
        *,
        run_store: WorkflowRunRepository,
        test_store: TestResultRepository,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.run_store = run_store
        self.test_store = test_store

    def _latest_test_stats(self, build: Build) -> Optional[TestStats]:
        latest = self.test_store.find_recent_by_build_id(build.id, build.tenant_id, 1)
        if not latest:
            return None
        result = latest[0]
        return TestStats(
            total_tests=result.total_tests,
            passed_tests=result.passed_tests,
            failed_tests=result.failed_tests,
            skipped_tests=result.skipped_tests,
        )

    def _recent_runs(self, build: Build, anchor: datetime) -> List[WorkflowRunRecord]:
        since = window_start_days(anchor, self.config.STATS_WINDOW_DAYS)
        return list(self.run_store.find_since(build.id, build.tenant_id, since))

    async def _compute_statistics(self, build: Build) -> BuildStatistics:
        anchor = self._now()
        runs = self._recent_runs(build, anchor)
        test_stats = self._latest_test_stats(build)

        api = await self._github_for(build)
        metadata = await self._gate(api).resolve(
            build, (MetadataTier.base,), anchor=anchor
        )
        return BuildStatistics(
            **self._assemble(build, runs, metadata, anchor, test_stats)
        )

    async def compute_details(self, build: Build) -> BuildDetailsStatistics:
        started = time.monotonic()
        logger.info("Details compute start variant=%s build=%s", self.variant, build)
        try:
            details = await self._compute_details(build)
        except Exception:  # noqa: BLE001
            stats_compute_total.labels(variant="details", result="error").inc()
            logger.error("Details compute failed build=%s", build, exc_info=True)
            raise
        stats_compute_total.labels(variant="details", result="ok").inc()
        logger.info(
            "Details compute done build=%s months=%d trend_points=%d duration_ms=%.1f",
            build,
            len(details.monthly_stats),
            len(details.test_trend),
            (time.monotonic() - started) * 1000.0,
        )
        return details

    async def _compute_details(self, build: Build) -> BuildDetailsStatistics:
        anchor = self._now()
        months = self.config.TREND_WINDOW_MONTHS

        runs = self._recent_runs(build, anchor)
        test_stats = self._latest_test_stats(build)

        history = list(
            self.run_store.find_in_range(
                build.id,
                build.tenant_id,
                window_start_months(anchor, months),
                anchor,
            )
        )

        api = await self._github_for(build)
        metadata = await self._gate(api).resolve(
            build, (MetadataTier.base, MetadataTier.details), anchor=anchor
        )

        test_trend = reconstruct_test_trend(
            history,
            lambda run: self.test_store.find_by_workflow_run_id(
                run.id, build.tenant_id
            ),
        )

        return BuildDetailsStatistics(
            **self._assemble(build, runs, metadata, anchor, test_stats),
            monthly_stats=monthly_run_stats(history, anchor, months),
            duration_trends=monthly_duration_stats(history, anchor, months),
            monthly_commits=metadata.monthly_commits,
            test_trend=test_trend,
            contributors=metadata.contributors,
            most_updated_files=metadata.most_updated_files,
        )

    async def needs_sync(self, build: Build) -> bool:
        """Whether the repository moved past the last analyzed commit.

        Never raises, any failure is logged and reported as ``False``.
        """
        try:
            api = await self._github_for(build)
            if api is None:
                return False
            latest = await api.latest_commit(build.organization, build.repository)
        except Exception:  # noqa: BLE001
            logger.warning("Sync probe failed for %s", build, exc_info=True)
            return False

        if latest is None:
            logger.info("No commits found for %s", build)
            return False
        if latest.sha == build.last_analyzed_commit_sha:
            logger.debug("%s is up to date at %s", build, latest.sha[:7])
            return False
        logger.info(
            "New commit detected for %s: %s -> %s",
            build,
            (build.last_analyzed_commit_sha or "none")[:7],
            latest.sha[:7],
        )
        return True
