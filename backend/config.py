"""Application configuration using pydantic-settings."""

from decimal import Decimal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = "sqlite:///./ledger.db"

    # Ledger
    # Observed balances within this distance of the tracked total are
    # treated as equal during reconciliation (8-decimal unit precision).
    RECONCILE_EPSILON: Decimal = Decimal("0.00000001")

    # Market price history
    PRICE_RETENTION_HOURS: int = 48

    @field_validator("RECONCILE_EPSILON")
    @classmethod
    def validate_epsilon(cls, v: Decimal) -> Decimal:
        """Reject negative reconciliation tolerances."""
        if v < 0:
            raise ValueError(f"RECONCILE_EPSILON must be >= 0, got {v}")
        return v

    @field_validator("PRICE_RETENTION_HOURS")
    @classmethod
    def validate_retention(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"PRICE_RETENTION_HOURS must be positive, got {v}")
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize LOG_LEVEL to an uppercase Python logging level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}, got {v!r}")
        return v.upper()

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"


settings = Settings()
