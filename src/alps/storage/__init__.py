from alps.storage.store import (
    AccessTokenStore,
    BuildStore,
    SQLiteStore,
    TestResultStore,
    WorkflowRunStore,
)
from alps.storage.types import (
    AccessTokenRow,
    TestResultRecord,
    WorkflowRunRecord,
)

__all__ = [
    "AccessTokenRow",
    "AccessTokenStore",
    "BuildStore",
    "SQLiteStore",
    "TestResultRecord",
    "TestResultStore",
    "WorkflowRunRecord",
    "WorkflowRunStore",
]
