"""Application settings using Pydantic for environment-based configuration."""
from datetime import datetime, timezone
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

VTPASS_LIVE_URL = "https://vtpass.com/api"
VTPASS_SANDBOX_URL = "https://sandbox.vtpass.com/api"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # VTpass Configuration
    vtpass_api_key: str = Field(default="", description="VTpass api-key header value")
    vtpass_public_key: str = Field(default="", description="VTpass public-key (GET requests)")
    vtpass_secret_key: str = Field(default="", description="VTpass secret-key (POST requests)")
    vtpass_base_url: Optional[str] = Field(
        default=None, description="Override the VTpass base URL (sandbox/live chosen by app_env)"
    )
    vtpass_timeout_seconds: float = Field(
        default=30.0, description="Per-request HTTP timeout for VTpass calls (seconds)"
    )
    vtpass_circuit_failure_threshold: int = Field(
        default=5, description="Transport failures before the VTpass circuit opens"
    )
    vtpass_circuit_reset_seconds: int = Field(
        default=60, description="Seconds before an open VTpass circuit is retried"
    )
    fulfillment_call_timeout_seconds: float = Field(
        default=45.0, description="Upper bound on one purchase call, including connection setup"
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./chainbills.db", description="SQLAlchemy async database URL"
    )
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Application Configuration
    app_name: str = Field(default="chainbills-gateway", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="CORS allowed origins (comma-separated)",
    )

    # Purchase Policy
    purchase_min_amount_naira: float = Field(
        default=100.0, gt=0, description="Smallest accepted purchase amount (NGN)"
    )
    purchase_max_amount_naira: float = Field(
        default=50000.0, gt=0, description="Largest accepted purchase amount (NGN)"
    )
    restrict_to_supported_chains: bool = Field(
        default=False, description="Reject chain ids missing from the chain registry"
    )

    # Maintenance
    legacy_chain_cutoff: datetime = Field(
        default=datetime(2025, 12, 3, 0, 28, 31, tzinfo=timezone.utc),
        description="Orders created before this instant without chain info belong to Base",
    )
    legacy_chain_id: int = Field(default=8453, description="Chain assigned to legacy orders")

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

    @model_validator(mode="after")
    def validate_amount_range(self) -> "Settings":
        """Ensure the purchase amount policy is a non-empty range."""
        if self.purchase_min_amount_naira > self.purchase_max_amount_naira:
            raise ValueError("purchase_min_amount_naira must not exceed purchase_max_amount_naira")
        return self

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def vtpass_url(self) -> str:
        """Base URL for VTpass calls; live only in production unless overridden."""
        if self.vtpass_base_url:
            return self.vtpass_base_url.rstrip("/")
        return VTPASS_LIVE_URL if self.is_production else VTPASS_SANDBOX_URL

    @property
    def is_sqlite(self) -> bool:
        """Check if the configured database is SQLite."""
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
