from enum import Enum
from typing import Any, List, Optional

import pydantic

from alps.github.model import Contributor, FileActivity

CACHE_EXPIRATION_MIN = 1
CACHE_EXPIRATION_MAX = 1440
LABEL_MAX_LENGTH = 50
NAME_MAX_LENGTH = 100


class Model(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="forbid", populate_by_name=True)


class SelectorKind(str, Enum):
    tag = "tag"
    branch = "branch"
    workflow = "workflow"


class Selector(Model):
    kind: SelectorKind = pydantic.Field(alias="type")
    pattern: str

    @pydantic.field_validator("pattern", mode="before")
    @classmethod
    def strip_pattern(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    @pydantic.field_validator("pattern")
    @classmethod
    def pattern_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("Selector pattern cannot be empty")
        return value

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.pattern}"


class MonthlyCommitBucket(Model):
    month: str
    commit_count: int = 0


class CachedMetadata(Model):
    """Commit-SHA keyed snapshot of expensive repository metadata.

    ``None`` on a field means the value was never fetched, while an empty list
    or zero is a fetched value.
    """

    tags: Optional[List[str]] = None
    total_commits: Optional[int] = None
    total_contributors: Optional[int] = None
    monthly_commits: Optional[List[MonthlyCommitBucket]] = None
    contributors: Optional[List[Contributor]] = None
    most_updated_files: Optional[List[FileActivity]] = None


class SevenDayWindow(Model):
    commits: int = 0
    contributors: int = 0


def _strip_or_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class Build(Model):
    id: str
    tenant_id: str
    name: str
    organization: str
    repository: str
    selectors: List[Selector]

    access_token_id: Optional[str] = None
    personal_access_token: Optional[str] = None
    cache_expiration_minutes: int = 60
    label: Optional[str] = None

    last_analyzed_commit_sha: Optional[str] = None
    cached_metadata: Optional[CachedMetadata] = None
    cached_window: Optional[SevenDayWindow] = None

    @pydantic.field_validator("name", "organization", "repository", mode="before")
    @classmethod
    def strip_text(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    @pydantic.field_validator("access_token_id", "personal_access_token", "label", mode="before")
    @classmethod
    def strip_optional(cls, value: Any) -> Any:
        return _strip_or_none(value)

    @pydantic.field_validator("name")
    @classmethod
    def check_name(cls, value: str) -> str:
        if not value:
            raise ValueError("Build name cannot be empty")
        if len(value) > NAME_MAX_LENGTH:
            raise ValueError(f"Build name must not exceed {NAME_MAX_LENGTH} characters")
        return value

    @pydantic.field_validator("organization", "repository")
    @classmethod
    def check_not_empty(cls, value: str, info: pydantic.ValidationInfo) -> str:
        if not value:
            raise ValueError(f"{info.field_name} cannot be empty")
        return value

    @pydantic.field_validator("selectors")
    @classmethod
    def check_selectors(cls, value: List[Selector]) -> List[Selector]:
        if len(value) == 0:
            raise ValueError("At least one selector is required")
        return value

    @pydantic.field_validator("cache_expiration_minutes")
    @classmethod
    def check_cache_expiration(cls, value: int) -> int:
        if value < CACHE_EXPIRATION_MIN:
            raise ValueError(
                f"Cache expiration must be at least {CACHE_EXPIRATION_MIN} minute"
            )
        if value > CACHE_EXPIRATION_MAX:
            raise ValueError(
                f"Cache expiration must not exceed {CACHE_EXPIRATION_MAX} minutes"
            )
        return value

    @pydantic.field_validator("label")
    @classmethod
    def check_label(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and len(value) > LABEL_MAX_LENGTH:
            raise ValueError(f"Label must not exceed {LABEL_MAX_LENGTH} characters")
        return value

    @pydantic.model_validator(mode="after")
    def check_token_source(self) -> "Build":
        if self.access_token_id is None and self.personal_access_token is None:
            raise ValueError(
                "Either a saved access token or a personal access token is required"
            )
        if self.access_token_id is not None and self.personal_access_token is not None:
            raise ValueError(
                "Cannot specify both a saved access token and a personal access token"
            )
        return self

    @property
    def full_name(self) -> str:
        return f"{self.organization}/{self.repository}"

    def __str__(self) -> str:
        return f"Build({self.full_name}, {self.id})"
