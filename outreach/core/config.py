"""
Application settings.
Loaded from environment variables / .env.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Settings loaded from .env"""

    # App
    APP_NAME: str = "Outreach Engine"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Supabase (lead store, activity log, campaigns, accounts)
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_KEY: str = ""

    # Redis (cross-process lead locks)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Unipile (LinkedIn)
    UNIPILE_API_URL: str = ""
    UNIPILE_API_KEY: str = ""

    # Internal email / voice services
    EMAIL_API_URL: str = "http://localhost:8000"
    VOICE_API_URL: str = "http://localhost:8000"

    # Engine
    ENGINE_MAX_WORKERS: int = 5  # leads processed in parallel per campaign
    ENGINE_MAX_ITERATIONS: int = 100  # steps per lead per invocation
    DISPATCH_TIMEOUT_SECONDS: float = 30.0
    HEALTH_PROBE_TIMEOUT_SECONDS: float = 10.0

    # Delayed leads resumed later than this after delay_until are abandoned
    DELAYED_LEAD_TTL_HOURS: int = 720

    # Lead lock: "local" (single process) or "redis" (several workers)
    LEAD_LOCK_BACKEND: str = "local"
    LEAD_LOCK_TIMEOUT_SECONDS: int = 300

    # Worker
    WORKER_INTERVAL_SECONDS: int = 60

    @property
    def is_production(self) -> bool:
        """True when running in production."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def log_level_upper(self) -> str:
        """Upper-case log level for the logging module."""
        return self.LOG_LEVEL.upper()

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # ignore unrelated .env variables


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
