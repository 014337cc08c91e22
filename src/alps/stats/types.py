from __future__ import annotations

from enum import Enum
from typing import List, Optional

import pydantic

from alps.github.model import Contributor, FileActivity, LastCommit
from alps.model import MonthlyCommitBucket
from alps.storage.types import UTCDateTime, WorkflowRunRecord


class HealthBadge(str, Enum):
    green = "green"
    yellow = "yellow"
    red = "red"
    inactive = "inactive"


class MetadataTier(str, Enum):
    base = "base"
    details = "details"


class StatsModel(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="forbid")


class DailyBucket(StatsModel):
    date: str
    success_count: int = 0
    failure_count: int = 0


class MonthlyBucket(StatsModel):
    month: str
    success_count: int = 0
    failure_count: int = 0
    total_count: int = 0


class DurationBucket(StatsModel):
    period: str
    avg_duration: int = 0
    min_duration: int = 0
    max_duration: int = 0
    count: int = 0


class TestTrendPoint(StatsModel):
    __test__ = False

    date: UTCDateTime
    total_tests: int
    passed_tests: int
    failed_tests: int
    skipped_tests: int


class TestStats(StatsModel):
    __test__ = False

    total_tests: int
    passed_tests: int
    failed_tests: int
    skipped_tests: int


class RepositoryMetadata(StatsModel):
    """Repository figures resolved through the metadata cache."""

    last_commit: Optional[LastCommit] = None
    tags: List[str] = []
    total_commits: int = 0
    total_contributors: int = 0
    commits_last_7_days: int = 0
    contributors_last_7_days: int = 0
    monthly_commits: List[MonthlyCommitBucket] = []
    contributors: List[Contributor] = []
    most_updated_files: List[FileActivity] = []

    @property
    def last_tag(self) -> Optional[str]:
        return self.tags[0] if self.tags else None


class BuildStatistics(StatsModel):
    build_id: str
    total_executions: int
    successful_executions: int
    failed_executions: int
    health_percentage: int
    health_badge: HealthBadge
    last_tag: Optional[str] = None
    last_7_days: List[DailyBucket]
    recent_runs: List[WorkflowRunRecord] = []
    last_fetched_at: UTCDateTime
    commits_last_7_days: int = 0
    contributors_last_7_days: int = 0
    last_commit: Optional[LastCommit] = None
    total_commits: int = 0
    total_contributors: int = 0
    test_stats: Optional[TestStats] = None


class BuildDetailsStatistics(BuildStatistics):
    monthly_stats: List[MonthlyBucket]
    duration_trends: List[DurationBucket]
    monthly_commits: List[MonthlyCommitBucket]
    test_trend: List[TestTrendPoint]
    contributors: List[Contributor] = []
    most_updated_files: List[FileActivity] = []


__all__ = [
    "BuildDetailsStatistics",
    "BuildStatistics",
    "DailyBucket",
    "DurationBucket",
    "HealthBadge",
    "MetadataTier",
    "MonthlyBucket",
    "MonthlyCommitBucket",
    "RepositoryMetadata",
    "TestStats",
    "TestTrendPoint",
]
