"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    APP_NAME: str = "Notification Workflow Engine"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./workflows.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Redis Settings (Celery broker for the sweep worker)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Security Settings
    # MUST be set in environment for production; defaults only safe for development
    SECRET_KEY: str = ""
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Scheduler / worker pool
    WORKER_POOL_SIZE: int = 8
    RUN_ENGINE_IN_PROCESS: bool = True

    # Delay timer sweep
    DELAY_SWEEP_INTERVAL_SECONDS: float = 5.0
    DELAY_SWEEP_BATCH_SIZE: int = 100
    STALE_CLAIM_SECONDS: int = 600

    # Retry policy
    RETRY_MAX_ATTEMPTS: int = 5
    RETRY_BASE_DELAY_SECONDS: float = 2.0
    RETRY_MAX_DELAY_SECONDS: float = 300.0
    RETRY_JITTER_RATIO: float = 0.2

    # Executor call budgets per node type
    EMAIL_TIMEOUT_SECONDS: float = 30.0
    SMS_TIMEOUT_SECONDS: float = 15.0

    # Delivery providers
    EMAIL_PROVIDER_URL: str = ""
    EMAIL_PROVIDER_API_KEY: str = ""
    EMAIL_FROM_ADDRESS: str = "notifications@localhost"
    SMS_PROVIDER_URL: str = ""
    SMS_PROVIDER_API_KEY: str = ""
    SMS_SENDER_ID: str = ""

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    def validate_secrets(self) -> None:
        """Validate that critical secrets are not using defaults in production.

        Raises:
            RuntimeError: If production environment has an empty SECRET_KEY
        """
        if self.is_production and not self.SECRET_KEY:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY environment variable must be set in production. "
                "Do not use default values."
            )

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
