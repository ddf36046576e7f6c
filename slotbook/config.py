from pathlib import Path
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str | None = None

    # Auth (bearer JWT verified against a JWKS endpoint)
    JWKS_URL: str | None = None
    JWT_AUDIENCE: str = "authenticated"

    # Google OAuth settings
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None

    ENCRYPTION_KEY: str | None = None

    # =================================================================
    # SCHEDULING ENGINE
    # =================================================================
    SCHEDULING_TIMEZONE: str = "UTC"
    DAY_START_HOUR: int = 6
    DAY_END_HOUR: int = 22
    MAX_HORIZON_DAYS: int = 14
    SLOT_RESULT_CAP: int = 5
    STALENESS_WINDOW_SECONDS: int = 300  # 5 minutes
    REQUEST_TIMEOUT_SECONDS: float = 10.0
    MAX_SYNC_RETRIES: int = 3
    PENDING_STALE_AFTER_SECONDS: int = 300
    DEFAULT_REMINDER_MINUTES: int = 30

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def scheduling_tz(self) -> ZoneInfo:
        """Time zone used for working-day boundaries and slot buckets."""
        return ZoneInfo(self.SCHEDULING_TIMEZONE)

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
            config.update({"min_size": 1, "max_size": 4, "timeout": 15.0})

        return config


settings = Settings()
