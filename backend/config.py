"""
Configuration management for the application.
Loads settings from environment variables using Pydantic Settings.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./pestdesk.sqlite"

    @property
    def database_url_async(self) -> str:
        """
        Transform DATABASE_URL to use the appropriate async driver.
        - PostgreSQL: postgresql+asyncpg://...
        - SQLite: sqlite+aiosqlite:///...
        """
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif self.DATABASE_URL.startswith("postgres://"):
            return self.DATABASE_URL.replace("postgres://", "postgresql+asyncpg://", 1)
        elif self.DATABASE_URL.startswith("sqlite://"):
            return self.DATABASE_URL.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return self.DATABASE_URL

    # Security
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 480

    # Application
    APP_NAME: str = "PestDesk API"
    DEBUG: bool = False
    CORS_ORIGINS: str = "http://localhost:8081,http://localhost:19006"
    LOG_LEVEL: str = "INFO"
    DATABASE_ECHO: bool = False

    # Privileged function gateway (customer + identity creation)
    FUNCTIONS_BASE_URL: str = "http://localhost:8000/functions/v1"
    FUNCTIONS_TIMEOUT_SECONDS: float = 15.0

    # Tenant defaults
    DEFAULT_CURRENCY: str = "TRY"
    DEFAULT_TIMEZONE: str = "Europe/Istanbul"
    DEFAULT_LANGUAGE: str = "tr"

    # Reports
    REPORT_PAGE_SIZE: int = 1000

    # Subscription Settings
    TRIAL_PERIOD_DAYS: int = 14
    SCHEDULER_ENABLED: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True


# Singleton instance - import this in other modules
settings = Settings()
