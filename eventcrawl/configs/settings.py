"""Centralized settings management for the event crawl pipeline."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import make_url

from eventcrawl.runtime.resilience import TRANSIENT_STATUSES, RetryPolicy


class Settings(BaseSettings):
    """
    Pipeline settings powered by pydantic-settings.

    Loads configuration from environment variables and a .env file located
    at the repository root. Everything a worker needs is read from here once
    per invocation and passed down explicitly.
    """

    # -------------------------------------------------------------------------
    # ENVIRONMENT
    # -------------------------------------------------------------------------
    ENV: str = "development"
    DEBUG: bool = False

    # -------------------------------------------------------------------------
    # DATABASE
    # -------------------------------------------------------------------------
    DATABASE_URL: str = Field("sqlite:///eventcrawl.db", min_length=1)
    DB_WARMUP_ATTEMPTS: int = 4
    DB_WARMUP_BASE_DELAY_S: float = 0.75

    # -------------------------------------------------------------------------
    # LLM
    # -------------------------------------------------------------------------
    LLM_PROVIDER: str = "openai"
    LLM_MODEL: str | None = None
    LLM_TEMPERATURE: float = 0.1
    OPENAI_API_KEY: SecretStr | None = None
    ANTHROPIC_API_KEY: SecretStr | None = None
    SOCIAL_FIVE_ENABLED: bool = True

    # -------------------------------------------------------------------------
    # FETCHING
    # -------------------------------------------------------------------------
    FETCH_TIMEOUT_S: float = 15.0
    RENDER_TIMEOUT_S: float = 30.0
    RETRY_MAX_RETRIES: int = 3
    RETRY_BASE_DELAY_S: float = 1.0
    RETRY_MAX_DELAY_S: float = 10.0
    RETRY_JITTER: float = 0.3
    # JSON list in the environment, e.g. RETRY_ON_STATUS=[429,503]
    RETRY_ON_STATUS: list[int] = Field(default_factory=lambda: list(TRANSIENT_STATUSES))
    FAILOVER_THRESHOLD: int = 3
    PACING_DELAY_S: float = 1.0

    # -------------------------------------------------------------------------
    # WORKERS
    # -------------------------------------------------------------------------
    SCOUT_BATCH_SIZE: int = 3
    SCOUT_MAX_ATTEMPTS: int = 3
    SCRAPE_BATCH_SIZE: int = 5
    ENRICH_BATCH_SIZE: int = 10
    INDEX_BATCH_SIZE: int = 20
    MAX_ATTEMPTS: int = 3
    RE_SCOUT_THRESHOLD: int = 3
    STALE_AFTER_MINUTES: int = 60

    # -------------------------------------------------------------------------
    # DEDUPLICATION
    # -------------------------------------------------------------------------
    DEDUP_FUZZY_THRESHOLD: float = 0.8
    DEDUP_DATE_WINDOW_HOURS: float = 2.0
    DEDUP_STALE_AFTER_DAYS: int = 7

    # -------------------------------------------------------------------------
    # SCHEDULER
    # -------------------------------------------------------------------------
    SCHEDULE_SCOUT_S: int = 900
    SCHEDULE_EXECUTE_S: int = 3600
    SCHEDULE_ENRICH_S: int = 60
    SCHEDULE_INDEX_S: int = 60
    SCHEDULE_JANITOR_S: int = 600

    # -------------------------------------------------------------------------
    # LOGGING
    # -------------------------------------------------------------------------
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False
    LOG_FILE: Optional[Path] = None

    BASE_DIR: Path = Path(__file__).resolve().parents[2]

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_psycopg2_params(self) -> dict:
        """
        Parse DATABASE_URL into psycopg2-compatible connection parameters.

        Returns
        -------
        dict
            psycopg2 connection arguments (host, port, dbname, user, password).
        """
        url = make_url(self.DATABASE_URL)
        return {
            "host": url.host,
            "port": url.port,
            "dbname": url.database,
            "user": url.username,
            "password": url.password,
        }

    def retry_policy(self) -> RetryPolicy:
        """Build the fetch retry policy from the RETRY_* fields."""
        return RetryPolicy(
            max_retries=self.RETRY_MAX_RETRIES,
            base_delay_s=self.RETRY_BASE_DELAY_S,
            max_delay_s=self.RETRY_MAX_DELAY_S,
            jitter=self.RETRY_JITTER,
            retry_on_status=tuple(self.RETRY_ON_STATUS),
        )

    def warmup_policy(self) -> RetryPolicy:
        """Backoff for waiting on a cold database: DB_WARMUP_ATTEMPTS tries in total."""
        return RetryPolicy(
            max_retries=max(0, self.DB_WARMUP_ATTEMPTS - 1),
            base_delay_s=self.DB_WARMUP_BASE_DELAY_S,
            max_delay_s=self.RETRY_MAX_DELAY_S,
            jitter=0.1,
        )

    def llm_api_key(self) -> str | None:
        """Return the API key matching LLM_PROVIDER, if configured."""
        secret = {
            "openai": self.OPENAI_API_KEY,
            "anthropic": self.ANTHROPIC_API_KEY,
        }.get(self.LLM_PROVIDER)
        return secret.get_secret_value() if secret else None


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings.

    Returns
    -------
    Settings
        The read-only settings instance shared by the process.
    """
    return Settings()
