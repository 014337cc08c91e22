from datetime import datetime
from enum import Enum
from typing import Optional

import pydantic


class Model(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="ignore")


class RunStatus(str, Enum):
    success = "success"
    failure = "failure"
    cancelled = "cancelled"
    in_progress = "in_progress"
    queued = "queued"


_CONCLUSION_STATUS = {
    "success": RunStatus.success,
    "failure": RunStatus.failure,
    "timed_out": RunStatus.failure,
    "action_required": RunStatus.failure,
    "cancelled": RunStatus.cancelled,
    "skipped": RunStatus.cancelled,
}

_PENDING_STATUS = {
    "queued": RunStatus.queued,
    "pending": RunStatus.queued,
    "waiting": RunStatus.queued,
    "in_progress": RunStatus.in_progress,
    "requested": RunStatus.in_progress,
}


def map_run_status(status: Optional[str], conclusion: Optional[str]) -> RunStatus:
    """Collapse GitHub's status/conclusion pair into a single run status.

    Completed runs are classified by their conclusion, with unknown
    conclusions counted as failures. Everything else is classified by status,
    defaulting to queued.
    """
    if status == "completed" and conclusion:
        return _CONCLUSION_STATUS.get(conclusion, RunStatus.failure)
    return _PENDING_STATUS.get(status or "", RunStatus.queued)


class GitActor(Model):
    name: Optional[str] = None
    email: Optional[str] = None
    date: Optional[datetime] = None


class User(Model):
    login: str
    avatar_url: Optional[str] = None
    html_url: Optional[str] = None


class HeadCommit(Model):
    id: str
    message: Optional[str] = None
    timestamp: Optional[datetime] = None
    author: Optional[GitActor] = None


class ActionsRun(Model):
    id: int
    name: Optional[str] = None
    display_title: Optional[str] = None
    head_branch: Optional[str] = None
    head_sha: Optional[str] = None
    event: Optional[str] = None
    status: Optional[str] = None
    conclusion: Optional[str] = None
    html_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    run_started_at: Optional[datetime] = None
    head_commit: Optional[HeadCommit] = None

    @property
    def display_name(self) -> str:
        return self.name or self.display_title or "Workflow Run"

    @property
    def run_status(self) -> RunStatus:
        return map_run_status(self.status, self.conclusion)

    @property
    def duration_ms(self) -> Optional[int]:
        if self.conclusion is None or self.run_started_at is None:
            return None
        delta = self.updated_at - self.run_started_at
        return int(delta.total_seconds() * 1000)

    def __str__(self) -> str:
        return f"ActionsRun({self.display_name}, {self.id})"


class CommitDetail(Model):
    message: str = ""
    author: Optional[GitActor] = None


class Commit(Model):
    sha: str
    html_url: Optional[str] = None
    commit: CommitDetail
    author: Optional[User] = None

    @property
    def date(self) -> Optional[datetime]:
        if self.commit.author is None:
            return None
        return self.commit.author.date


class LastCommit(Model):
    sha: str
    message: str
    author: str
    date: Optional[datetime] = None
    url: Optional[str] = None

    @classmethod
    def from_commit(cls, commit: Commit) -> "LastCommit":
        author = commit.commit.author
        return cls(
            sha=commit.sha,
            message=commit.commit.message,
            author=(author.name if author is not None and author.name else ""),
            date=commit.date,
            url=commit.html_url,
        )


class Contributor(Model):
    login: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    contributions: int = 0
    profile_url: Optional[str] = None


class FileActivity(Model):
    path: str
    update_count: int = 0
    last_updated: Optional[datetime] = None
