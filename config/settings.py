"""Application settings and configuration management."""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or defaults."""

    DB_PATH: str = Field(default="data/interview.db")
    APP_CONFIG_PATH: str = Field(default="app_config.json")

    DAILY_SESSION_LIMIT: int = Field(default=20, ge=1)
    USER_SESSION_LIMIT: int = Field(default=5, ge=1)
    SESSION_LIMIT_MODE: str = Field(default="identity", pattern="^(identity|user)$")
    USAGE_TIMEZONE: str = "UTC"

    PROMPT_TOKEN_RATE: float = 0.00001
    COMPLETION_TOKEN_RATE: float = 0.00003
    SPEND_CEILING_USD: float = Field(default=50.0, gt=0.0)

    MIN_JOB_DESCRIPTION_CHARS: int = 10
    MIN_ANSWER_CHARS: int = 3
    MAX_INPUT_CHARS: int = 10000
    MAX_AUDIO_BYTES: int = Field(default=25 * 1024 * 1024, ge=1)

    RATE_LIMIT_REQUESTS: int = Field(default=10, ge=1)
    RATE_LIMIT_WINDOW_S: float = Field(default=60.0, gt=0.0)

    REQUIRE_AUTH: bool = False

    RETRY_MAX_RETRIES: int = Field(default=3, ge=0)
    RETRY_INITIAL_DELAY_MS: int = Field(default=1000, ge=0)
    RETRY_MAX_DELAY_MS: int = Field(default=10000, ge=0)
    RETRY_BACKOFF_MULTIPLIER: float = Field(default=2.0, ge=1.0)

    model_config = SettingsConfigDict(env_file=".env", validate_assignment=True, extra="ignore")

    def session_limit(self) -> int:
        """Ceiling that applies to the configured deployment mode."""

        if self.SESSION_LIMIT_MODE == "user":
            return self.USER_SESSION_LIMIT
        return self.DAILY_SESSION_LIMIT


settings = Settings()
