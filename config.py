"""Configuration management using Pydantic settings"""

import os
from zoneinfo import ZoneInfo
from pydantic_settings import BaseSettings
from typing import Optional


def get_env_price_id(key: str) -> Optional[str]:
    """
    Read a provider price/product identifier from the environment.

    Price identifiers are looked up at call time rather than stored on
    Settings so that an unconfigured plan is simply missing from the catalog.
    Empty strings are treated as unset.
    """
    value = os.environ.get(key, "").strip()
    return value or None


class Settings(BaseSettings):
    """Application settings"""

    # Markets
    DEFAULT_MARKET: str = "us"

    # Reference time zone for quota windows and trial expiry
    REFERENCE_TIMEZONE: str = "UTC"

    # Payment providers
    PAYMENT_ENVIRONMENT: str = "sandbox"  # sandbox | production
    PROVIDER_TIMEOUT_SECONDS: float = 15.0

    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None

    REVENUECAT_API_KEY: Optional[str] = None
    REVENUECAT_WEBHOOK_SECRET: Optional[str] = None
    REVENUECAT_API_URL: str = "https://api.revenuecat.com/v1"

    # Quotas and trials
    FREE_RECORDING_INTERVAL_DAYS: int = 7
    WHATSAPP_TRIAL_DAYS: int = 30

    # Persistence: "memory" or "firestore"
    USER_STORE: str = "memory"
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = None

    # Web
    APP_BASE_URL: str = "http://localhost:5000"
    API_PORT: int = 5000

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    @property
    def reference_tz(self) -> ZoneInfo:
        """Server reference time zone used by the quota and trial trackers"""
        return ZoneInfo(self.REFERENCE_TIMEZONE)

    @property
    def is_production(self) -> bool:
        return self.PAYMENT_ENVIRONMENT == "production"


settings = Settings()
