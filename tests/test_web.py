import json
from types import SimpleNamespace

import pytest

from alps import web
from alps.config import SETTINGS
from alps.github.model import LastCommit
from alps.metric import error_counter
from alps.model import Build
from alps.storage import AccessTokenRow
from alps.web import build_details_response, build_stats_response, create_services


class _FakeAPI:
    async def latest_commit(self, org, repo):
        return LastCommit(sha="abc1234", message="msg", author="dev")

    async def tags(self, org, repo, limit=50):
        return ["v3.1.0"]

    async def commit_count(self, org, repo, since=None, until=None):
        return 99 if since is None else 4

    async def contributor_count(self, org, repo, since=None):
        return 2

    async def total_contributors(self, org, repo):
        return 8

    async def contributors_list(self, org, repo, limit=50):
        return []

    async def most_active_files(self, org, repo, limit=10):
        return []

    async def commits_with_dates(self, org, repo, since, until):
        return []


def make_app(tmp_path, monkeypatch):
    settings = SETTINGS.model_copy(
        update={"ALPS_DB_PATH": tmp_path / "alps.sqlite3", "ALPS_ENCRYPTION_KEY": None}
    )
    services = create_services(settings)
    monkeypatch.setattr(web, "_api_factory", lambda app: (lambda token: _FakeAPI()))
    return SimpleNamespace(ctx=SimpleNamespace(services=services))


def make_build(**kwargs):
    data = dict(
        id="b1",
        tenant_id="t1",
        name="CI",
        organization="org",
        repository="repo",
        selectors=[{"type": "branch", "pattern": "main"}],
        personal_access_token="ghp_x",
    )
    data.update(kwargs)
    return Build.model_validate(data)


@pytest.mark.asyncio
async def test_unknown_build_is_404(tmp_path, monkeypatch):
    app = make_app(tmp_path, monkeypatch)

    resp = await build_stats_response(app, "missing")
    assert resp.status == 404

    resp = await build_details_response(app, "missing")
    assert resp.status == 404


@pytest.mark.asyncio
async def test_stats_response(tmp_path, monkeypatch):
    app = make_app(tmp_path, monkeypatch)
    app.ctx.services.build_store.add(make_build())

    resp = await build_stats_response(app, "b1")

    assert resp.status == 200
    body = json.loads(resp.body)
    assert body["build_id"] == "b1"
    assert body["health_badge"] == "inactive"
    assert body["total_commits"] == 99
    assert body["last_tag"] == "v3.1.0"
    assert body["last_fetched_at"].endswith("Z")

    stored = app.ctx.services.build_store.get("b1")
    assert stored.last_analyzed_commit_sha == "abc1234"


@pytest.mark.asyncio
async def test_details_response(tmp_path, monkeypatch):
    app = make_app(tmp_path, monkeypatch)
    app.ctx.services.build_store.add(make_build())

    resp = await build_details_response(app, "b1")

    assert resp.status == 200
    body = json.loads(resp.body)
    assert len(body["monthly_stats"]) == 12
    assert len(body["monthly_commits"]) == 12
    assert body["test_trend"] == []


@pytest.mark.asyncio
async def test_undecryptable_token_is_500(tmp_path, monkeypatch):
    app = make_app(tmp_path, monkeypatch)
    services = app.ctx.services
    services.token_store.add(
        AccessTokenRow(id="tok1", tenant_id="t1", name="ci", encrypted_token="a:b:c")
    )
    services.build_store.add(make_build(personal_access_token=None, access_token_id="tok1"))
    before = error_counter.labels(context="token_decryption")._value.get()

    resp = await build_stats_response(app, "b1")

    assert resp.status == 500
    assert error_counter.labels(context="token_decryption")._value.get() == before + 1
