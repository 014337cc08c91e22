from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional, Protocol, Sequence

from alps.github.model import ActionsRun, Contributor, FileActivity, LastCommit
from alps.storage.types import AccessTokenRow, TestResultRecord, WorkflowRunRecord


class RunSource(Protocol):
    async def workflow_runs(
        self, org: str, repo: str, since: datetime, limit: int = 100
    ) -> List[ActionsRun]: ...


class MetadataSource(Protocol):
    async def latest_commit(self, org: str, repo: str) -> Optional[LastCommit]: ...

    async def tags(self, org: str, repo: str, limit: int = 50) -> List[str]: ...

    async def commit_count(
        self,
        org: str,
        repo: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> int: ...

    async def contributor_count(
        self, org: str, repo: str, since: Optional[datetime] = None
    ) -> int: ...

    async def total_contributors(self, org: str, repo: str) -> int: ...

    async def contributors_list(
        self, org: str, repo: str, limit: int = 50
    ) -> List[Contributor]: ...

    async def most_active_files(
        self, org: str, repo: str, limit: int = 10
    ) -> List[FileActivity]: ...

    async def commits_with_dates(
        self, org: str, repo: str, since: datetime, until: datetime
    ) -> List[datetime]: ...


class GitHubSource(RunSource, MetadataSource, Protocol):
    pass


class WorkflowRunRepository(Protocol):
    def find_since(
        self, build_id: str, tenant_id: str, since: datetime
    ) -> Sequence[WorkflowRunRecord]: ...

    def find_in_range(
        self, build_id: str, tenant_id: str, start: datetime, end: datetime
    ) -> Sequence[WorkflowRunRecord]: ...


class TestResultRepository(Protocol):
    def find_by_workflow_run_id(
        self, workflow_run_id: str, tenant_id: str
    ) -> Optional[TestResultRecord]: ...

    def find_recent_by_build_id(
        self, build_id: str, tenant_id: str, limit: int = 1
    ) -> Sequence[TestResultRecord]: ...


class BuildRepository(Protocol):
    def update_cached_metadata(
        self, build_id: str, fields: Mapping[str, Any], tenant_id: str
    ) -> None: ...


class AccessTokenRepository(Protocol):
    def find_by_id(self, token_id: str, tenant_id: str) -> Optional[AccessTokenRow]: ...

    def update_last_used(
        self, token_id: str, tenant_id: str, when: Optional[datetime] = None
    ) -> None: ...


class Decryptor(Protocol):
    def decrypt(self, ciphertext: str) -> str: ...
