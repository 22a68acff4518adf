from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from decimal import Decimal
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./settlement.db"

    # Database Connection Pool Settings (ignored for SQLite)
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # JWT Settings (tokens are issued elsewhere, only verified here)
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # App Settings
    APP_NAME: str = "Marketplace Settlement Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Currency
    CURRENCY: str = "INR"
    CURRENCY_DECIMAL_PLACES: int = 2  # Minor unit used for commission rounding

    # Platform fallback commission (used when vendor has no rate configured)
    PLATFORM_COMMISSION_RATE: Optional[Decimal] = Decimal("10")  # None disables the fallback
    PLATFORM_COMMISSION_TYPE: str = "PERCENTAGE"

    # Payout execution
    PAYOUT_MAX_ATTEMPTS: int = 3  # Automatic transfer attempts before manual review
    PAYOUT_TRANSFER_TIMEOUT_SECONDS: float = 30.0
    PAYOUT_PROCESSING_STALE_MINUTES: int = 30  # PROCESSING longer than this is demoted to FAILED

    # Payout policy bounds and defaults
    PAYOUT_MINIMUM_FLOOR: Decimal = Decimal("10.00")
    PAYOUT_MINIMUM_CEILING: Decimal = Decimal("10000.00")
    DEFAULT_PAYOUT_FREQUENCY: str = "WEEKLY"
    DEFAULT_MINIMUM_PAYOUT: Decimal = Decimal("50.00")
    DEFAULT_PAYOUT_METHOD: str = "BANK_TRANSFER"

    # Settlement scheduler
    SETTLEMENT_SCHEDULER_ENABLED: bool = True
    SETTLEMENT_INTERVAL_MINUTES: int = 60  # How often to batch and pay vendors
    RECONCILE_INTERVAL_MINUTES: int = 10  # How often to sweep stuck PROCESSING payouts
    SETTLEMENT_MAX_CONCURRENT_VENDORS: int = 5
    SCHEDULER_TIMEZONE: str = "Asia/Kolkata"

    # Shared secret for external cron triggers (Bearer <CRON_SECRET>)
    CRON_SECRET: Optional[str] = None

    # RazorpayX Payouts
    RAZORPAYX_KEY_ID: str = ""
    RAZORPAYX_KEY_SECRET: str = ""
    RAZORPAYX_ACCOUNT_NUMBER: str = ""  # Business account the payouts are debited from
    RAZORPAYX_API_URL: str = "https://api.razorpay.com/v1"

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @field_validator('PLATFORM_COMMISSION_RATE', mode='before')
    @classmethod
    def parse_platform_rate(cls, v):
        # An empty env var disables the platform fallback
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def razorpayx_configured(self) -> bool:
        return bool(self.RAZORPAYX_KEY_ID and self.RAZORPAYX_KEY_SECRET and self.RAZORPAYX_ACCOUNT_NUMBER)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
