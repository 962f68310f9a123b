# salonbook/core/config.py
"""
Application settings for the SalonBook booking and payment core.

Values are read from the environment (and an optional ``.env`` file).
Only values live here; behaviour belongs in the services.
"""

import logging
import os
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_DEFAULT_SECRET_KEY = SecretStr("dev-only-salonbook-secret-key-change-me")


class Settings(BaseSettings):
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development", description="Deployment environment name"
    )
    log_level: str = Field(default="INFO", description="Root log level")

    # Persistence
    database_url: str = Field(
        default="sqlite:///./salonbook.db", description="SQLAlchemy database URL"
    )
    auto_create_tables: bool = Field(
        default=True, description="Create tables on startup (dev and tests)"
    )

    # Bearer tokens are issued elsewhere; we only verify them
    secret_key: SecretStr = Field(
        default=_DEFAULT_SECRET_KEY,
        description="Secret key used to verify JWT access tokens",
    )
    algorithm: str = "HS256"

    # Pricing
    platform_commission_pct: float = Field(
        default=15, description="Platform commission percentage (15 = 15%)"
    )
    home_service_fee_pct: float = Field(
        default=10, description="Home-visit surcharge percentage over service total"
    )
    tax_pct: float = Field(
        default=0, description="Flat tax percentage over services + fees (0 disables tax)"
    )
    currency: str = Field(default="INR", description="Default currency for payments")

    # Booking
    slot_hold_minutes: int = Field(
        default=15,
        description="Minutes an unpaid pending appointment keeps blocking its slot",
    )

    # Payment gateway (Razorpay-compatible)
    razorpay_key_id: str = Field(default="", description="Gateway API key id")
    razorpay_key_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Gateway API key secret, also used for client payment signatures",
    )
    razorpay_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Webhook signing secret",
    )
    razorpay_api_base: str = Field(
        default="https://api.razorpay.com/v1", description="Gateway REST base URL"
    )
    gateway_timeout_seconds: float = Field(default=15.0, description="Gateway HTTP timeout")
    payment_gateway_fake: bool = Field(
        default=False, description="Use the in-memory gateway (dev and tests only)"
    )
    gateway_cross_check_enabled: bool = Field(
        default=False,
        description="Fetch the gateway payment during verify to cross-check order and amount",
    )
    gateway_retry_attempts: int = Field(
        default=3, description="Attempts for order creation and refunds"
    )
    gateway_retry_backoff_seconds: float = Field(
        default=0.5, description="Initial backoff between gateway retries (doubles each attempt)"
    )
    refund_claim_timeout_seconds: int = Field(
        default=300,
        description="Age after which an unfinished refund claim may be taken over",
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator(
        "slot_hold_minutes", "gateway_retry_attempts", "refund_claim_timeout_seconds"
    )
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("platform_commission_pct", "home_service_fee_pct", "tax_pct")
    @classmethod
    def _validate_percentage(cls, value: float) -> float:
        if value < 0 or value > 100:
            raise ValueError("percentage must be between 0 and 100")
        return value

    @field_validator("currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()
