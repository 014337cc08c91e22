import sqlite3

from alps.db_migrations import migrate_db
from alps.model import Build, SevenDayWindow
from alps.storage import BuildStore


def test_migrate_db_runs_from_packaged_scripts(tmp_path, monkeypatch):
    db_path = tmp_path / "runtime" / "alps.sqlite3"
    monkeypatch.chdir(tmp_path)

    migrate_db(db_path, revision="head")

    with sqlite3.connect(str(db_path)) as conn:
        tables = {
            row[0]
            for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }
        build_columns = {
            row[1] for row in conn.execute("PRAGMA table_info(builds)").fetchall()
        }
        revision = conn.execute("SELECT version_num FROM alembic_version").fetchone()[0]

    assert {"builds", "workflow_runs", "test_results", "access_tokens"} <= tables
    assert {"label", "cached_window_json", "cached_metadata_json"} <= build_columns
    assert revision == "0002_add_build_label_and_cached_window"


def test_migrate_db_initial_revision_lacks_window(tmp_path):
    db_path = tmp_path / "alps.sqlite3"

    migrate_db(db_path, revision="0001_initial")

    with sqlite3.connect(str(db_path)) as conn:
        build_columns = {
            row[1] for row in conn.execute("PRAGMA table_info(builds)").fetchall()
        }
    assert "cached_window_json" not in build_columns
    assert "last_analyzed_commit_sha" in build_columns


def test_build_store_on_migrated_db(tmp_path):
    db_path = tmp_path / "alps.sqlite3"
    migrate_db(db_path)

    store = BuildStore(db_path)
    store.initialize()
    store.add(
        Build(
            id="b1",
            tenant_id="t1",
            name="CI",
            organization="org",
            repository="repo",
            selectors=[{"type": "branch", "pattern": "main"}],
            personal_access_token="ghp_x",
            label="nightly",
        )
    )
    store.update_cached_metadata(
        "b1", {"cached_window": SevenDayWindow(commits=3, contributors=1)}, "t1"
    )

    build = store.get("b1")
    assert build.label == "nightly"
    assert build.cached_window.commits == 3
