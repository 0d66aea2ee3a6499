"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from commerce_core.domain.value_objects import Currency


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application Configuration
    app_name: str = Field(default="commerce-core", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=True, description="Render logs as JSON (False: console)")

    # Money
    default_currency: str = Field(default="CNY", description="Currency for new accounts")

    # Concurrency
    lock_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Max wait for an aggregate lock (seconds)"
    )

    # Order numbers
    order_number_prefix: str = Field(default="ORD", description="Order number prefix")
    order_number_max_attempts: int = Field(
        default=5, ge=1, description="Collision retries before giving up"
    )

    # Settlement
    settlement_hour: int = Field(
        default=2, ge=0, le=23, description="Hour of day for the daily settlement run"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("default_currency")
    @classmethod
    def validate_default_currency(cls, v: str) -> str:
        """Validate that the default currency is one we can hold."""
        normalized = v.strip().upper()
        supported = [c.value for c in Currency]
        if normalized not in supported:
            raise ValueError(f"Unsupported currency: {v}. Supported currencies: {supported}")
        return normalized

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
