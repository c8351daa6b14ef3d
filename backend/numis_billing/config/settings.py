"""
Application Settings for NumisGallery Billing Webhooks

Centralized configuration using Pydantic Settings with .env support.
Secrets that the webhook path needs are checked per request, so a missing
value is reported at startup but never prevents the service from booting.
"""

import logging
from functools import lru_cache
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The record store is a PocketBase-style HTTP collection store; the
    reconciler authenticates against it with admin credentials.
    """

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    port: int = 3002

    # CORS / redirect defaults
    frontend_url: str = "http://localhost:5173"
    allowed_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]

    # Record store (PocketBase) Configuration
    pocketbase_url: str = "http://127.0.0.1:8090"
    pocketbase_admin_auth_path: str = "/api/admins/auth-with-password"
    subscriptions_collection: str = "subscriptions"
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None

    # Stripe Configuration
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_price_pro: Optional[str] = None
    stripe_max_network_retries: int = 2

    # Outbound request timeout (record store and Stripe)
    request_timeout_seconds: float = 10.0

    # Rate Limiting (per source IP)
    rate_limit_enabled: bool = True
    webhook_rate_limit: str = "100/minute"
    session_rate_limit: str = "20/minute"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def report_missing_secrets(self) -> "Settings":
        """Log missing credentials; the affected endpoints fail per request."""
        if not self.admin_email or not self.admin_password:
            logger.error("ADMIN_EMAIL and ADMIN_PASSWORD must be set")

        if not self.stripe_webhook_secret:
            logger.error(
                "STRIPE_WEBHOOK_SECRET must be set for secure webhook verification"
            )

        if not self.stripe_price_pro:
            logger.warning("STRIPE_PRICE_PRO not set, every subscription maps to free")

        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"

    @property
    def webhook_verification_enabled(self) -> bool:
        return bool(self.stripe_webhook_secret)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
