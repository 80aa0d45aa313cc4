from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"

DEFAULT_BACKEND_URL = "http://localhost:8080"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Backend settings
    BACKEND_URL: str = DEFAULT_BACKEND_URL
    REQUEST_CONNECT_TIMEOUT_S: float = 10.0
    STREAM_TIMEOUT_S: float | None = None  # None = no timeout wrapper

    # Remote document store (Postgres JSONB)
    DOCUMENT_STORE_DB_URL: str | None = None

    # Local fallback store
    LOCAL_FALLBACK_REDIS_URL: str = "redis://localhost:6379/0"
    LOCAL_FALLBACK_NAMESPACE: str = "outreach"

    # Read-after-write diagnostic
    VERIFY_WRITES: bool = False
    WRITE_VERIFY_DELAY_S: float = 0.5

    # Store and stream behavior
    SEARCH_HISTORY_LIMIT: int = 50
    STATUS_CLEAR_DELAY_S: float = 3.0
    DRAFT_STATUS_CLEAR_DELAY_S: float = 2.0
    CONTACT_POLL_INTERVAL_S: float = 3.0
    AUTH_TOKEN_REFRESH_MARGIN_S: int = 300

    # =================================================================
    # DATABASE POOL SETTINGS - Simple and configurable
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 8
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def backend_base_url(self) -> str:
        """Backend base URL without a trailing slash, falling back to localhost."""
        base = (self.BACKEND_URL or "").strip() or DEFAULT_BACKEND_URL
        return base.rstrip("/")

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": 1,
                    "max_size": 4,
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
