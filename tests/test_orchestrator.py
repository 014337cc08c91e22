from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import List

import pytest

from alps.cache import GitHubDataCache
from alps.exceptions import DecryptionError
from alps.github.model import ActionsRun, Contributor, FileActivity, LastCommit, RunStatus
from alps.model import Build
from alps.stats import DatabaseStatsOrchestrator, LiveStatsOrchestrator, TokenResolver
from alps.stats.types import HealthBadge
from alps.storage import (
    AccessTokenRow,
    AccessTokenStore,
    BuildStore,
    TestResultRecord,
    TestResultStore,
    WorkflowRunRecord,
    WorkflowRunStore,
)

NOW = datetime(2024, 3, 10, 12, tzinfo=timezone.utc)

CONFIG = SimpleNamespace(
    STATS_WINDOW_DAYS=7,
    TREND_WINDOW_MONTHS=12,
    METADATA_TAG_LIMIT=50,
    SELECTOR_TAG_LIMIT=100,
    CONTRIBUTORS_LIMIT=50,
    MOST_ACTIVE_FILES_LIMIT=10,
    RECENT_RUNS_LIMIT=3,
    WORKFLOW_RUNS_LIMIT=100,
)


def github_run(run_id: int, branch: str, created: datetime, conclusion="success"):
    return ActionsRun.model_validate(
        {
            "id": run_id,
            "name": "CI",
            "head_branch": branch,
            "head_sha": f"sha{run_id}",
            "event": "push",
            "status": "completed",
            "conclusion": conclusion,
            "html_url": f"https://github.com/org/repo/actions/runs/{run_id}",
            "created_at": created.isoformat(),
            "updated_at": (created + timedelta(minutes=5)).isoformat(),
            "run_started_at": (created + timedelta(minutes=1)).isoformat(),
        }
    )


class _FakeAPI:
    def __init__(self, sha="abc1234", runs=(), fail=()):
        self.sha = sha
        self.total = 420
        self.runs = list(runs)
        self.fail = set(fail)
        self.calls: List[str] = []
        self.call_count = 0

    def _call(self, name):
        self.calls.append(name)
        self.call_count += 1
        if name in self.fail:
            raise RuntimeError(f"{name} failed")

    def count(self, name):
        return self.calls.count(name)

    async def workflow_runs(self, org, repo, since, limit=100):
        self._call("workflow_runs")
        return list(self.runs)

    async def latest_commit(self, org, repo):
        self._call("latest_commit")
        if self.sha is None:
            return None
        return LastCommit(sha=self.sha, message="msg", author="dev")

    async def tags(self, org, repo, limit=50):
        self._call("tags")
        return ["v1.0.0"]

    async def commit_count(self, org, repo, since=None, until=None):
        self._call("commit_count")
        return self.total if since is None else 12

    async def contributor_count(self, org, repo, since=None):
        self._call("contributor_count")
        return 3

    async def total_contributors(self, org, repo):
        self._call("total_contributors")
        return 17

    async def contributors_list(self, org, repo, limit=50):
        self._call("contributors_list")
        return [Contributor(login="alice", contributions=30)]

    async def most_active_files(self, org, repo, limit=10):
        self._call("most_active_files")
        return [FileActivity(path="README.md", update_count=4)]

    async def commits_with_dates(self, org, repo, since, until):
        self._call("commits_with_dates")
        return [datetime(2024, 3, 1, tzinfo=timezone.utc)]


def make_build(**kwargs) -> Build:
    data = dict(
        id="b1",
        tenant_id="t1",
        name="CI",
        organization="org",
        repository="repo",
        selectors=[{"type": "branch", "pattern": "main"}],
        personal_access_token="ghp_inline",
    )
    data.update(kwargs)
    return Build.model_validate(data)


def record(run_id: int, created: datetime, status=RunStatus.success, duration_ms=60000):
    return WorkflowRunRecord(
        id=f"b1:{run_id}",
        run_id=run_id,
        build_id="b1",
        tenant_id="t1",
        name="CI",
        status=status,
        head_branch="main",
        duration_ms=duration_ms,
        workflow_created_at=created,
        workflow_updated_at=created + timedelta(minutes=5),
    )


def make_test_result(run_id: int, total: int, failed: int, parsed: datetime):
    return TestResultRecord(
        id=f"tr{run_id}",
        workflow_run_id=f"b1:{run_id}",
        build_id="b1",
        tenant_id="t1",
        total_tests=total,
        passed_tests=total - failed,
        failed_tests=failed,
        parsed_at=parsed,
    )


@pytest.fixture
def stores(tmp_path):
    db_path = tmp_path / "alps.sqlite3"
    build_store = BuildStore(db_path)
    build_store.initialize()
    run_store = WorkflowRunStore(db_path)
    test_store = TestResultStore(db_path)

    run_store.add(record(1, datetime(2024, 3, 10, 8, tzinfo=timezone.utc)))
    run_store.add(
        record(2, datetime(2024, 3, 9, 8, tzinfo=timezone.utc), RunStatus.failure)
    )
    run_store.add(record(3, datetime(2024, 3, 1, 8, tzinfo=timezone.utc)))
    run_store.add(
        record(
            4,
            datetime(2023, 6, 15, 8, tzinfo=timezone.utc),
            RunStatus.failure,
            duration_ms=120000,
        )
    )
    test_store.add(make_test_result(2, 10, 2, datetime(2024, 3, 9, 9, tzinfo=timezone.utc)))
    test_store.add(make_test_result(1, 12, 0, datetime(2024, 3, 10, 9, tzinfo=timezone.utc)))

    return SimpleNamespace(
        build=build_store,
        runs=run_store,
        tests=test_store,
        tokens=AccessTokenStore(db_path),
    )


def database_orchestrator(stores, api, cipher=None):
    tokens: List[str] = []

    def factory(token):
        tokens.append(token)
        return api

    orchestrator = DatabaseStatsOrchestrator(
        token_resolver=TokenResolver(stores.tokens, cipher),
        api_factory=factory,
        build_store=stores.build,
        run_store=stores.runs,
        test_store=stores.tests,
        config=CONFIG,
        clock=lambda: NOW,
    )
    return orchestrator, tokens


@pytest.mark.asyncio
async def test_database_statistics(stores):
    build = make_build()
    stores.build.add(build)
    api = _FakeAPI()
    orchestrator, tokens = database_orchestrator(stores, api)

    stats = await orchestrator.compute_statistics(build)

    assert tokens == ["ghp_inline"]
    assert stats.build_id == "b1"
    assert stats.total_executions == 2
    assert stats.successful_executions == 1
    assert stats.failed_executions == 1
    assert stats.health_percentage == 50
    assert stats.health_badge == HealthBadge.red
    assert [r.run_id for r in stats.recent_runs] == [1, 2]
    assert stats.last_fetched_at == NOW
    assert stats.last_tag == "v1.0.0"
    assert stats.total_commits == 420
    assert stats.commits_last_7_days == 12
    assert stats.last_commit.sha == "abc1234"
    assert stats.test_stats.total_tests == 12
    assert len(stats.last_7_days) == 7
    assert stats.last_7_days[-1].date == "2024-03-10"
    assert stats.last_7_days[-1].success_count == 1

    stored = stores.build.get("b1")
    assert stored.last_analyzed_commit_sha == "abc1234"
    assert stored.cached_metadata.total_commits == 420
    assert stored.cached_window.commits == 12

    # the stored snapshot is warm for the same commit
    api.calls.clear()
    again = await orchestrator.compute_statistics(stored)
    assert api.calls == ["latest_commit"]
    assert again.total_commits == 420


@pytest.mark.asyncio
async def test_database_details(stores):
    build = make_build()
    stores.build.add(build)
    api = _FakeAPI()
    orchestrator, _ = database_orchestrator(stores, api)

    details = await orchestrator.compute_details(build)

    assert details.total_executions == 2
    assert len(details.monthly_stats) == 12
    assert details.monthly_stats[0].month == "2023-04"
    months = {m.month: m for m in details.monthly_stats}
    assert months["2024-03"].total_count == 3
    assert months["2023-06"].failure_count == 1

    durations = {d.period: d for d in details.duration_trends}
    assert durations["2024-03"].avg_duration == 60000
    assert durations["2023-06"].max_duration == 120000
    assert durations["2023-05"].count == 0

    assert [p.total_tests for p in details.test_trend] == [10, 12]
    assert details.test_trend[0].date == datetime(2024, 3, 9, 8, tzinfo=timezone.utc)

    assert [c.login for c in details.contributors] == ["alice"]
    assert details.most_updated_files[0].path == "README.md"
    assert len(details.monthly_commits) == 12
    assert api.count("latest_commit") == 1
    assert api.count("contributors_list") == 1


@pytest.mark.asyncio
async def test_missing_saved_token_degrades(stores):
    build = make_build(personal_access_token=None, access_token_id="gone")
    api = _FakeAPI()
    orchestrator, tokens = database_orchestrator(stores, api)

    stats = await orchestrator.compute_statistics(build)

    assert tokens == []
    assert api.calls == []
    assert stats.total_executions == 2
    assert stats.total_commits == 0
    assert stats.last_commit is None


@pytest.mark.asyncio
async def test_undecryptable_token_propagates(stores):
    stores.tokens.add(
        AccessTokenRow(id="tok1", tenant_id="t1", name="ci", encrypted_token="a:b:c")
    )
    build = make_build(personal_access_token=None, access_token_id="tok1")
    orchestrator, _ = database_orchestrator(stores, _FakeAPI())

    with pytest.raises(DecryptionError):
        await orchestrator.compute_statistics(build)


@pytest.mark.asyncio
async def test_needs_sync(stores):
    orchestrator, _ = database_orchestrator(stores, _FakeAPI(sha="abc1234"))
    assert not await orchestrator.needs_sync(
        make_build(last_analyzed_commit_sha="abc1234")
    )
    assert await orchestrator.needs_sync(make_build(last_analyzed_commit_sha="old"))
    assert await orchestrator.needs_sync(make_build())

    empty, _ = database_orchestrator(stores, _FakeAPI(sha=None))
    assert not await empty.needs_sync(make_build())

    broken, _ = database_orchestrator(stores, _FakeAPI(fail=("latest_commit",)))
    assert not await broken.needs_sync(make_build(last_analyzed_commit_sha="old"))

    no_token, _ = database_orchestrator(stores, _FakeAPI())
    assert not await no_token.needs_sync(
        make_build(personal_access_token=None, access_token_id="gone")
    )


def live_orchestrator(api, cache, build_store=None):
    return LiveStatsOrchestrator(
        token_resolver=TokenResolver(SimpleNamespace(), None),
        api_factory=lambda token: api,
        build_store=build_store,
        cache=cache,
        config=CONFIG,
        clock=lambda: NOW,
    )


@pytest.mark.asyncio
async def test_live_statistics_filters_and_caches(stores):
    runs = [
        github_run(10, "main", datetime(2024, 3, 10, 9, tzinfo=timezone.utc)),
        github_run(11, "feature/x", datetime(2024, 3, 10, 8, tzinfo=timezone.utc)),
        github_run(
            12, "v1.0.0", datetime(2024, 3, 9, 9, tzinfo=timezone.utc), "failure"
        ),
        github_run(13, "main", datetime(2024, 3, 8, 9, tzinfo=timezone.utc), "cancelled"),
        github_run(14, "main", datetime(2024, 2, 1, 9, tzinfo=timezone.utc)),
    ]
    api = _FakeAPI(runs=runs)
    cache = GitHubDataCache()
    build = make_build(
        selectors=[
            {"type": "branch", "pattern": "main"},
            {"type": "tag", "pattern": "v*"},
        ]
    )
    stores.build.add(build)
    orchestrator = live_orchestrator(api, cache, stores.build)

    stats = await orchestrator.compute_statistics(build)

    assert [r.run_id for r in stats.recent_runs] == [10, 12, 13]
    assert stats.recent_runs[0].id == "b1:10"
    assert stats.recent_runs[0].duration_ms == 240000
    assert stats.total_executions == 3
    assert stats.successful_executions == 1
    assert stats.failed_executions == 1
    assert stats.health_percentage == 33
    assert stats.test_stats is None
    assert stats.total_commits == 420

    await orchestrator.compute_statistics(stores.build.get("b1"))
    assert api.count("workflow_runs") == 1
    # selector matching and the metadata gate ask for different tag limits
    assert api.count("tags") == 2
    assert api.count("latest_commit") == 2


@pytest.mark.asyncio
async def test_live_statistics_refresh_metadata_on_new_commit(stores):
    api = _FakeAPI(sha="aaa", runs=[github_run(1, "main", NOW - timedelta(hours=1))])
    build = make_build()
    stores.build.add(build)
    orchestrator = live_orchestrator(api, GitHubDataCache(), stores.build)

    first = await orchestrator.compute_statistics(build)
    assert first.total_commits == 420
    stored = stores.build.get("b1")
    assert stored.last_analyzed_commit_sha == "aaa"
    assert stored.cached_metadata.total_commits == 420

    api.sha = "bbb"
    api.total = 421
    second = await orchestrator.compute_statistics(stored)

    assert second.total_commits == 421
    assert second.last_commit.sha == "bbb"
    stored = stores.build.get("b1")
    assert stored.last_analyzed_commit_sha == "bbb"
    assert stored.cached_metadata.total_commits == 421
    # cached runs from before the new commit are dropped
    assert api.count("workflow_runs") == 2
    assert api.count("commit_count") == 4


@pytest.mark.asyncio
async def test_live_statistics_without_tag_selector_skips_tags():
    api = _FakeAPI(runs=[github_run(1, "main", NOW - timedelta(hours=1))])
    orchestrator = live_orchestrator(api, GitHubDataCache())

    stats = await orchestrator.compute_statistics(make_build())

    assert stats.total_executions == 1
    assert stats.health_badge == HealthBadge.green
    # tags are only requested once, by the metadata gate
    assert api.count("tags") == 1


@pytest.mark.asyncio
async def test_live_statistics_error_propagates():
    api = _FakeAPI(fail=("workflow_runs",))
    orchestrator = live_orchestrator(api, GitHubDataCache())

    with pytest.raises(RuntimeError):
        await orchestrator.compute_statistics(make_build())
