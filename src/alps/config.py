import logging
import os
from pathlib import Path
from typing import Optional

import dotenv
import pydantic

dotenv.load_dotenv()


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


class Settings(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True)

    ALPS_DB_PATH: Path = Path("alps.sqlite3")
    ALPS_ENCRYPTION_KEY: Optional[str] = None

    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_USER_AGENT: str = "Alps-CI"
    GITHUB_HTTP_CACHE_SIZE: int = 500

    OVERRIDE_LOGGING: int = logging.WARNING

    TELEGRAM_TOKEN: Optional[str] = None
    TELEGRAM_CHAT_ID: Optional[str] = None

    STATS_WINDOW_DAYS: int = 7
    TREND_WINDOW_MONTHS: int = 12
    METADATA_TAG_LIMIT: int = 50
    SELECTOR_TAG_LIMIT: int = 100
    CONTRIBUTORS_LIMIT: int = 50
    MOST_ACTIVE_FILES_LIMIT: int = 10
    RECENT_RUNS_LIMIT: int = 3
    WORKFLOW_RUNS_LIMIT: int = 100

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            ALPS_DB_PATH=Path(os.environ.get("ALPS_DB_PATH", "alps.sqlite3")),
            ALPS_ENCRYPTION_KEY=os.environ.get("ALPS_ENCRYPTION_KEY"),
            GITHUB_API_URL=os.environ.get("GITHUB_API_URL", "https://api.github.com"),
            GITHUB_USER_AGENT=os.environ.get("GITHUB_USER_AGENT", "Alps-CI"),
            GITHUB_HTTP_CACHE_SIZE=_env_int("GITHUB_HTTP_CACHE_SIZE", 500),
            OVERRIDE_LOGGING=logging.getLevelName(
                os.environ.get("OVERRIDE_LOGGING", "WARNING")
            ),
            TELEGRAM_TOKEN=os.environ.get("TELEGRAM_TOKEN"),
            TELEGRAM_CHAT_ID=os.environ.get("TELEGRAM_CHAT_ID"),
            STATS_WINDOW_DAYS=_env_int("STATS_WINDOW_DAYS", 7),
            TREND_WINDOW_MONTHS=_env_int("TREND_WINDOW_MONTHS", 12),
            METADATA_TAG_LIMIT=_env_int("METADATA_TAG_LIMIT", 50),
            SELECTOR_TAG_LIMIT=_env_int("SELECTOR_TAG_LIMIT", 100),
            CONTRIBUTORS_LIMIT=_env_int("CONTRIBUTORS_LIMIT", 50),
            MOST_ACTIVE_FILES_LIMIT=_env_int("MOST_ACTIVE_FILES_LIMIT", 10),
            RECENT_RUNS_LIMIT=_env_int("RECENT_RUNS_LIMIT", 3),
            WORKFLOW_RUNS_LIMIT=_env_int("WORKFLOW_RUNS_LIMIT", 100),
        )


SETTINGS = Settings.from_env()
