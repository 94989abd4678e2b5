"""
Billing service configuration.

WHAT: One Settings instance read from the environment (and .env).

WHY: Stripe credentials, the webhook secret and the reactivation window
differ per deployment; nothing billing-related is hard-coded elsewhere.
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables; names are case-insensitive."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    API_V1_PREFIX: str = "/api"
    PROJECT_NAME: str = "SaaS Billing API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Security
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_MINUTES: int = 1440  # 24 hours

    # Database
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20
    DATABASE_POOL_TIMEOUT_SECONDS: int = 30

    # URLs
    # WHY: Checkout success/cancel and portal return URLs point back at the frontend
    FRONTEND_URL: str = "http://localhost:3000"

    # Stripe
    STRIPE_SECRET_KEY: str
    STRIPE_PUBLISHABLE_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: str
    STRIPE_API_VERSION: str = "2023-10-16"
    STRIPE_TIMEOUT_SECONDS: int = 10
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Subscription rules
    REACTIVATION_WINDOW_DAYS: int = 30

    # Redis
    # WHY: Optional read-through cache in front of the system settings table.
    # When unset, settings are read straight from the database.
    REDIS_URL: Optional[str] = None
    SETTINGS_CACHE_TTL_SECONDS: int = 3600

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    @property
    def async_database_url(self) -> str:
        """DATABASE_URL with the asyncpg driver (Heroku-style postgres:// included)."""
        url = self.DATABASE_URL
        for prefix in ("postgres://", "postgresql://"):
            if url.startswith(prefix):
                return "postgresql+asyncpg://" + url[len(prefix):]
        return url


settings = Settings()
