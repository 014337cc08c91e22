from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, TYPE_CHECKING

import pydantic
from pydantic import BeforeValidator, PlainSerializer

from alps.github.model import RunStatus

if TYPE_CHECKING:
    from alps.github.model import ActionsRun


def _parse_utc_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        dt = datetime.fromisoformat(raw)
    else:
        raise ValueError(f"Unsupported datetime value type: {type(value)!r}")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_utc_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


UTCDateTime = Annotated[
    datetime,
    BeforeValidator(_parse_utc_datetime),
    PlainSerializer(format_utc_datetime, return_type=str, when_used="always"),
]


class StorageModel(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="ignore", validate_assignment=True)


class WorkflowRunRecord(StorageModel):
    id: str
    run_id: int
    build_id: str
    tenant_id: str
    name: str
    status: RunStatus
    conclusion: str | None = None
    html_url: str | None = None
    head_branch: str | None = None
    event: str | None = None
    duration_ms: int | None = None
    commit_sha: str | None = None
    commit_author: str | None = None
    commit_message: str | None = None
    commit_date: UTCDateTime | None = None
    workflow_created_at: UTCDateTime
    workflow_updated_at: UTCDateTime

    @classmethod
    def from_github_run(
        cls, run: ActionsRun, *, build_id: str, tenant_id: str
    ) -> WorkflowRunRecord:
        head = run.head_commit
        author = head.author if head is not None else None
        return cls(
            id=f"{build_id}:{run.id}",
            run_id=run.id,
            build_id=build_id,
            tenant_id=tenant_id,
            name=run.display_name,
            status=run.run_status,
            conclusion=run.conclusion,
            html_url=run.html_url,
            head_branch=run.head_branch,
            event=run.event,
            duration_ms=run.duration_ms,
            commit_sha=run.head_sha,
            commit_author=author.name if author is not None else None,
            commit_message=head.message if head is not None else None,
            commit_date=head.timestamp if head is not None else None,
            workflow_created_at=run.created_at,
            workflow_updated_at=run.updated_at,
        )


class TestResultRecord(StorageModel):
    __test__ = False

    id: str
    workflow_run_id: str
    build_id: str
    tenant_id: str
    total_tests: int = 0
    passed_tests: int = 0
    failed_tests: int = 0
    skipped_tests: int = 0
    parsed_at: UTCDateTime


class AccessTokenRow(StorageModel):
    id: str
    tenant_id: str
    name: str
    encrypted_token: str
    created_by: str | None = None
    created_at: UTCDateTime | None = None
    last_used: UTCDateTime | None = None
