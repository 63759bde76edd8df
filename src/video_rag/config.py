"""Configuration module for the video RAG pipeline."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .errors import ConfigurationMissing
from .schemas import PollPolicy, RetryPolicy

# Load environment variables from .env file
load_dotenv()


class VideoRAGConfig(BaseModel):
    """Configuration for the video RAG pipeline.

    This configuration class manages all settings for the transcript job,
    the knowledge store and the HTTP retry policy. All settings can be
    overridden via environment variables.
    """

    # Apify (transcript scraping job) settings
    apify_api_key: str = Field(default_factory=lambda: os.getenv("APIFY_API_KEY", ""))
    apify_base_url: str = Field(
        default_factory=lambda: os.getenv("APIFY_BASE_URL", "https://api.apify.com")
    )
    apify_actor_id: str = Field(
        default_factory=lambda: os.getenv("APIFY_ACTOR_ID", "streamers~youtube-scraper")
    )

    # Gemini (knowledge store and generation) settings
    gemini_api_key: str = Field(default_factory=lambda: os.getenv("GEMINI_API_KEY", ""))
    gemini_base_url: str = Field(
        default_factory=lambda: os.getenv(
            "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"
        )
    )
    gemini_model: str = Field(
        default_factory=lambda: os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
    )

    # Job polling settings
    poll_interval_seconds: float = Field(
        default_factory=lambda: float(os.getenv("POLL_INTERVAL_SECONDS", "5"))
    )
    poll_max_wait_seconds: float = Field(
        default_factory=lambda: float(os.getenv("POLL_MAX_WAIT_SECONDS", "300"))
    )
    file_poll_interval_seconds: float = Field(
        default_factory=lambda: float(os.getenv("FILE_POLL_INTERVAL_SECONDS", "2"))
    )
    file_max_wait_seconds: float = Field(
        default_factory=lambda: float(os.getenv("FILE_MAX_WAIT_SECONDS", "30"))
    )

    # HTTP retry settings
    http_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("HTTP_TIMEOUT_SECONDS", "60"))
    )
    http_max_attempts: int = Field(
        default_factory=lambda: int(os.getenv("HTTP_MAX_ATTEMPTS", "3"))
    )
    http_backoff_base_seconds: float = Field(
        default_factory=lambda: float(os.getenv("HTTP_BACKOFF_BASE_SECONDS", "1"))
    )
    http_backoff_multiplier: float = Field(
        default_factory=lambda: float(os.getenv("HTTP_BACKOFF_MULTIPLIER", "2"))
    )
    http_backoff_max_seconds: float = Field(
        default_factory=lambda: float(os.getenv("HTTP_BACKOFF_MAX_SECONDS", "30"))
    )

    def require_credentials(self) -> None:
        """Check that both API keys are present.

        Raises:
            ConfigurationMissing: Naming every missing environment variable.
        """
        missing = [
            env_var
            for env_var, value in (
                ("APIFY_API_KEY", self.apify_api_key),
                ("GEMINI_API_KEY", self.gemini_api_key),
            )
            if not value.strip()
        ]
        if missing:
            raise ConfigurationMissing(missing)

    def retry_policy(self) -> RetryPolicy:
        """Build the per-request retry policy shared by both API clients."""
        return RetryPolicy(
            timeout_seconds=self.http_timeout_seconds,
            max_attempts=self.http_max_attempts,
            backoff_base_seconds=self.http_backoff_base_seconds,
            backoff_multiplier=self.http_backoff_multiplier,
            backoff_max_seconds=self.http_backoff_max_seconds,
        )

    def poll_policy(self) -> PollPolicy:
        """Build the transcript job poll policy."""
        return PollPolicy(
            interval_seconds=self.poll_interval_seconds,
            max_wait_seconds=self.poll_max_wait_seconds,
        )

    def file_poll_policy(self) -> PollPolicy:
        """Build the policy for waiting on an uploaded file to become active."""
        return PollPolicy(
            interval_seconds=self.file_poll_interval_seconds,
            max_wait_seconds=self.file_max_wait_seconds,
        )


def get_config() -> VideoRAGConfig:
    """Get validated configuration instance.

    Returns:
        VideoRAGConfig: Validated configuration object with all settings.

    Raises:
        ValidationError: If numeric environment variables are invalid.
    """
    return VideoRAGConfig()
