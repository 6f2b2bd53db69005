"""Feed engine configuration loaded from environment variables."""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class FeedEnv(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application settings loaded from environment variables with FEED_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="FEED_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    env: FeedEnv = FeedEnv.DEV
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///.feed_engine/history.db"
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # Execution
    simulated_delay_scale: float = Field(default=1.0, ge=0.0)
    stage_deadline_seconds: float | None = Field(default=None, gt=0.0)

    # Configuration stage defaults
    http_connect_timeout_ms: int = Field(default=10000, gt=0)
    http_request_timeout_ms: int = Field(default=10000, gt=0)

    # Job id -> pipeline name
    jobs: dict[int, str] = Field(default_factory=lambda: {1: "stocks"})
    default_pipeline: str | None = None

    # Logging
    log_level: str = "INFO"
    structured_logging: bool = False

    @field_validator("log_level")
    @classmethod
    def normalise_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level

    def pipeline_for(self, job_id: int) -> str | None:
        """Return the pipeline name configured for *job_id*, if any."""
        return self.jobs.get(job_id, self.default_pipeline)


def load_settings(**overrides: object) -> Settings:
    """Load settings from environment, with optional overrides for testing."""
    settings = Settings(**overrides)  # type: ignore[arg-type]

    if settings.debug:
        logger.info("Loaded settings for environment: %s", settings.env.value)

    return settings
