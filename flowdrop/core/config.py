"""Environment-driven configuration with Pydantic v2."""

from typing import Literal, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from flowdrop.constants import (
    DEFAULT_MAX_CONCURRENT_JOBS,
    DEFAULT_MAX_RETRIES,
    RETRY_STRATEGY_INDIVIDUAL,
)


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables."""

    # Database Configuration
    database_url: str = Field(default="sqlite+aiosqlite:///./data/flowdrop.db", env="DATABASE_URL")
    database_echo: bool = Field(default=False, env="DATABASE_ECHO")

    # Job Scheduling
    default_max_retries: int = Field(default=DEFAULT_MAX_RETRIES, env="DEFAULT_MAX_RETRIES", ge=0, le=20)
    max_concurrent_jobs: int = Field(default=DEFAULT_MAX_CONCURRENT_JOBS, env="MAX_CONCURRENT_JOBS", ge=1, le=100)
    retry_strategy: Literal["individual", "stop_on_failure"] = Field(
        default=RETRY_STRATEGY_INDIVIDUAL, env="RETRY_STRATEGY"
    )
    poll_interval: float = Field(default=0.05, env="POLL_INTERVAL", ge=0.0, le=60.0)  # seconds

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: Literal["json", "console"] = Field(default="console", env="LOG_FORMAT")
    log_file: Optional[str] = Field(default=None, env="LOG_FILE")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        """Ensure database directory exists for file-backed SQLite."""
        if v and v.startswith("sqlite") and ":///" in v:
            db_path = v.split("///")[1]
            if db_path and db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Normalize and check the log level name."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def is_sqlite(self) -> bool:
        """Check if the configured database is SQLite."""
        return self.database_url.startswith("sqlite")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "forbid",
        "env_parse_none_str": "none",
    }
