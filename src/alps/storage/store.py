from __future__ import annotations

from datetime import datetime, timezone
import json
from pathlib import Path
import sqlite3
from typing import Any, List, Mapping, Optional

from sanic.log import logger

from alps.exceptions import BuildNotFound
from alps.model import Build, CachedMetadata, SevenDayWindow
from alps.storage.types import (
    AccessTokenRow,
    TestResultRecord,
    WorkflowRunRecord,
    format_utc_datetime,
)


SCHEMA = """
CREATE TABLE IF NOT EXISTS builds (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    name TEXT NOT NULL,
    organization TEXT NOT NULL,
    repository TEXT NOT NULL,
    selectors_json TEXT NOT NULL,
    access_token_id TEXT NULL,
    personal_access_token TEXT NULL,
    cache_expiration_minutes INTEGER NOT NULL DEFAULT 60,
    label TEXT NULL,
    last_analyzed_commit_sha TEXT NULL,
    cached_metadata_json TEXT NULL,
    cached_window_json TEXT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS workflow_runs (
    id TEXT PRIMARY KEY,
    run_id INTEGER NOT NULL,
    build_id TEXT NOT NULL,
    tenant_id TEXT NOT NULL,
    name TEXT NOT NULL,
    status TEXT NOT NULL,
    conclusion TEXT NULL,
    html_url TEXT NULL,
    head_branch TEXT NULL,
    event TEXT NULL,
    duration_ms INTEGER NULL,
    commit_sha TEXT NULL,
    commit_author TEXT NULL,
    commit_message TEXT NULL,
    commit_date TEXT NULL,
    workflow_created_at TEXT NOT NULL,
    workflow_updated_at TEXT NOT NULL,
    UNIQUE (build_id, run_id)
);

CREATE TABLE IF NOT EXISTS test_results (
    id TEXT PRIMARY KEY,
    workflow_run_id TEXT NOT NULL UNIQUE,
    build_id TEXT NOT NULL,
    tenant_id TEXT NOT NULL,
    total_tests INTEGER NOT NULL DEFAULT 0,
    passed_tests INTEGER NOT NULL DEFAULT 0,
    failed_tests INTEGER NOT NULL DEFAULT 0,
    skipped_tests INTEGER NOT NULL DEFAULT 0,
    parsed_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS access_tokens (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    name TEXT NOT NULL,
    encrypted_token TEXT NOT NULL,
    created_by TEXT NULL,
    created_at TEXT NOT NULL,
    last_used TEXT NULL
);

CREATE INDEX IF NOT EXISTS idx_builds_tenant
    ON builds (tenant_id);
CREATE INDEX IF NOT EXISTS idx_workflow_runs_build_created
    ON workflow_runs (build_id, tenant_id, workflow_created_at);
CREATE INDEX IF NOT EXISTS idx_test_results_build_parsed
    ON test_results (build_id, tenant_id, parsed_at);
CREATE INDEX IF NOT EXISTS idx_access_tokens_tenant
    ON access_tokens (tenant_id);
"""


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class SQLiteStore:
    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)

    def initialize(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=10.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA busy_timeout=10000")
        return conn


def _dump_optional(model) -> Optional[str]:
    if model is None:
        return None
    return model.model_dump_json()


class BuildStore(SQLiteStore):
    CACHE_FIELDS = {"last_analyzed_commit_sha", "cached_metadata", "cached_window"}

    def add(self, build: Build) -> None:
        now = utcnow_iso()
        selectors = json.dumps(
            [s.model_dump(mode="json", by_alias=True) for s in build.selectors]
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO builds (
                    id,
                    tenant_id,
                    name,
                    organization,
                    repository,
                    selectors_json,
                    access_token_id,
                    personal_access_token,
                    cache_expiration_minutes,
                    label,
                    last_analyzed_commit_sha,
                    cached_metadata_json,
                    cached_window_json,
                    created_at,
                    updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    build.id,
                    build.tenant_id,
                    build.name,
                    build.organization,
                    build.repository,
                    selectors,
                    build.access_token_id,
                    build.personal_access_token,
                    build.cache_expiration_minutes,
                    build.label,
                    build.last_analyzed_commit_sha,
                    _dump_optional(build.cached_metadata),
                    _dump_optional(build.cached_window),
                    now,
                    now,
                ),
            )
        logger.debug("Added %s", build)

    def get(self, build_id: str, tenant_id: Optional[str] = None) -> Optional[Build]:
        query = "SELECT * FROM builds WHERE id = ?"
        params: tuple = (build_id,)
        if tenant_id is not None:
            query += " AND tenant_id = ?"
            params = (build_id, tenant_id)
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        if row is None:
            return None
        return self._to_build(row)

    def list(self, tenant_id: Optional[str] = None) -> List[Build]:
        query = "SELECT * FROM builds"
        params: tuple = ()
        if tenant_id is not None:
            query += " WHERE tenant_id = ?"
            params = (tenant_id,)
        query += " ORDER BY created_at, id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._to_build(row) for row in rows]

    def update_cached_metadata(
        self, build_id: str, fields: Mapping[str, Any], tenant_id: str
    ) -> None:
        """Replace the cache columns named in ``fields`` in a single statement.

        Accepted keys are ``last_analyzed_commit_sha``, ``cached_metadata``
        and ``cached_window``. Cached blocks are always written whole.
        """
        unknown = set(fields) - self.CACHE_FIELDS
        if unknown:
            raise ValueError(f"Not a cache field: {', '.join(sorted(unknown))}")
        if not fields:
            return

        assignments = []
        params: list = []
        if "last_analyzed_commit_sha" in fields:
            assignments.append("last_analyzed_commit_sha = ?")
            params.append(fields["last_analyzed_commit_sha"])
        if "cached_metadata" in fields:
            value = fields["cached_metadata"]
            if isinstance(value, Mapping):
                value = CachedMetadata.model_validate(value)
            assignments.append("cached_metadata_json = ?")
            params.append(_dump_optional(value))
        if "cached_window" in fields:
            value = fields["cached_window"]
            if isinstance(value, Mapping):
                value = SevenDayWindow.model_validate(value)
            assignments.append("cached_window_json = ?")
            params.append(_dump_optional(value))
        assignments.append("updated_at = ?")
        params.append(utcnow_iso())

        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE builds SET {', '.join(assignments)} "
                "WHERE id = ? AND tenant_id = ?",
                (*params, build_id, tenant_id),
            )
            if cursor.rowcount == 0:
                raise BuildNotFound(build_id)

    @staticmethod
    def _to_build(row: sqlite3.Row) -> Build:
        metadata = row["cached_metadata_json"]
        window = row["cached_window_json"]
        return Build.model_validate(
            {
                "id": row["id"],
                "tenant_id": row["tenant_id"],
                "name": row["name"],
                "organization": row["organization"],
                "repository": row["repository"],
                "selectors": json.loads(row["selectors_json"]),
                "access_token_id": row["access_token_id"],
                "personal_access_token": row["personal_access_token"],
                "cache_expiration_minutes": row["cache_expiration_minutes"],
                "label": row["label"],
                "last_analyzed_commit_sha": row["last_analyzed_commit_sha"],
                "cached_metadata": (
                    json.loads(metadata) if metadata is not None else None
                ),
                "cached_window": json.loads(window) if window is not None else None,
            }
        )


class WorkflowRunStore(SQLiteStore):
    def add(self, record: WorkflowRunRecord) -> None:
        data = record.model_dump(mode="json")
        columns = list(data.keys())
        with self._connect() as conn:
            conn.execute(
                f"""
                INSERT INTO workflow_runs ({", ".join(columns)})
                VALUES ({", ".join("?" for _ in columns)})
                ON CONFLICT(id) DO UPDATE SET
                    {", ".join(f"{c} = excluded.{c}" for c in columns if c != "id")}
                """,
                tuple(data[c] for c in columns),
            )

    def find_since(
        self, build_id: str, tenant_id: str, since: datetime
    ) -> List[WorkflowRunRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM workflow_runs
                WHERE build_id = ? AND tenant_id = ? AND workflow_created_at >= ?
                ORDER BY workflow_created_at DESC, run_id DESC
                """,
                (build_id, tenant_id, format_utc_datetime(since)),
            ).fetchall()
        return [WorkflowRunRecord.model_validate(dict(row)) for row in rows]

    def find_in_range(
        self, build_id: str, tenant_id: str, start: datetime, end: datetime
    ) -> List[WorkflowRunRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM workflow_runs
                WHERE build_id = ? AND tenant_id = ?
                    AND workflow_created_at >= ? AND workflow_created_at <= ?
                ORDER BY workflow_created_at DESC, run_id DESC
                """,
                (
                    build_id,
                    tenant_id,
                    format_utc_datetime(start),
                    format_utc_datetime(end),
                ),
            ).fetchall()
        return [WorkflowRunRecord.model_validate(dict(row)) for row in rows]


class TestResultStore(SQLiteStore):
    __test__ = False

    def add(self, record: TestResultRecord) -> None:
        data = record.model_dump(mode="json")
        columns = list(data.keys())
        with self._connect() as conn:
            conn.execute(
                f"""
                INSERT INTO test_results ({", ".join(columns)})
                VALUES ({", ".join("?" for _ in columns)})
                ON CONFLICT(workflow_run_id) DO UPDATE SET
                    {", ".join(f"{c} = excluded.{c}" for c in columns if c not in ("id", "workflow_run_id"))}
                """,
                tuple(data[c] for c in columns),
            )

    def find_by_workflow_run_id(
        self, workflow_run_id: str, tenant_id: str
    ) -> Optional[TestResultRecord]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM test_results
                WHERE workflow_run_id = ? AND tenant_id = ?
                """,
                (workflow_run_id, tenant_id),
            ).fetchone()
        if row is None:
            return None
        return TestResultRecord.model_validate(dict(row))

    def find_recent_by_build_id(
        self, build_id: str, tenant_id: str, limit: int = 1
    ) -> List[TestResultRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM test_results
                WHERE build_id = ? AND tenant_id = ?
                ORDER BY parsed_at DESC
                LIMIT ?
                """,
                (build_id, tenant_id, limit),
            ).fetchall()
        return [TestResultRecord.model_validate(dict(row)) for row in rows]


class AccessTokenStore(SQLiteStore):
    def add(self, token: AccessTokenRow) -> None:
        created_at = (
            format_utc_datetime(token.created_at)
            if token.created_at is not None
            else utcnow_iso()
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO access_tokens (
                    id, tenant_id, name, encrypted_token, created_by, created_at, last_used
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    token.id,
                    token.tenant_id,
                    token.name,
                    token.encrypted_token,
                    token.created_by,
                    created_at,
                    (
                        format_utc_datetime(token.last_used)
                        if token.last_used is not None
                        else None
                    ),
                ),
            )

    def find_by_id(self, token_id: str, tenant_id: str) -> Optional[AccessTokenRow]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM access_tokens WHERE id = ? AND tenant_id = ?",
                (token_id, tenant_id),
            ).fetchone()
        if row is None:
            return None
        return AccessTokenRow.model_validate(dict(row))

    def update_last_used(
        self, token_id: str, tenant_id: str, when: Optional[datetime] = None
    ) -> None:
        stamp = format_utc_datetime(when) if when is not None else utcnow_iso()
        with self._connect() as conn:
            conn.execute(
                "UPDATE access_tokens SET last_used = ? WHERE id = ? AND tenant_id = ?",
                (stamp, token_id, tenant_id),
            )
