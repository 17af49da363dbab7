from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from calendar_mcp.models.domain.job_domain import BackoffPolicy, JobOptions

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True  # False for console-formatted logs

    APP_NAME: str = "Google Calendar MCP Server"
    APP_VERSION: str = "0.1.0"

    # Redis settings (in-memory stores are used when unset)
    REDIS_URL: str | None = None
    REDIS_MAX_CONNECTIONS: int = 20
    REDIS_KEY_PREFIX: str = "calendar-mcp:"

    # Model tier settings
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o"
    OPENAI_TIMEOUT_SECONDS: float = 15.0
    MODEL_FALLBACK_ENABLED: bool = True

    # Google OAuth settings
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None

    # =================================================================
    # JOB QUEUE SETTINGS
    # =================================================================
    JOB_MAX_ATTEMPTS: int = 3
    JOB_BACKOFF_TYPE: Literal["fixed", "exponential"] = "exponential"
    JOB_BACKOFF_BASE_DELAY_MS: int = 5000
    JOB_RETENTION_DAYS: int = 7
    QUEUE_CONCURRENCY: int = 5
    QUEUE_POLL_INTERVAL_SECONDS: float = 1.0
    QUEUE_LOCK_TTL_SECONDS: int = 300  # longer than the slowest job

    # Intent / credential / scheduler settings
    LOW_CONFIDENCE_THRESHOLD: float = 0.5
    REFRESH_THRESHOLD_MINUTES: int = 5
    CRON_TIMEZONE: str = "UTC"

    REMINDER_DEFAULT_MINUTES_BEFORE: list[int] = [1440, 60]  # 1 day and 1 hour before

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def backoff_policy(self) -> BackoffPolicy:
        """Build the default retry backoff policy."""
        return BackoffPolicy(type=self.JOB_BACKOFF_TYPE, base_delay_ms=self.JOB_BACKOFF_BASE_DELAY_MS)

    def default_job_options(self) -> JobOptions:
        """
        Get default job options for queues that don't override them.
        """
        return JobOptions(max_attempts=self.JOB_MAX_ATTEMPTS, backoff=self.backoff_policy())

    def model_tier_enabled(self) -> bool:
        return bool(self.OPENAI_API_KEY) and self.MODEL_FALLBACK_ENABLED


settings = Settings()
