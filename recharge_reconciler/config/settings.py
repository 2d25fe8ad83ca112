"""Application settings using Pydantic for environment-based configuration."""
from enum import Enum
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Runtime(str, Enum):
    """Host runtime the client is embedded in."""

    WEB = "web"
    MINIAPP = "miniapp"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Payment Gateway Configuration
    gateway_base_url: str = Field(..., description="Recharge API base URL")
    gateway_api_token: Optional[str] = Field(
        default=None, description="Bearer token sent to the recharge API"
    )
    gateway_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Per-request timeout (seconds)"
    )
    gateway_create_order_max_attempts: int = Field(
        default=3, ge=1, description="Attempts for order creation on connection errors"
    )

    # Runtime Configuration
    runtime: Runtime = Field(default=Runtime.WEB, description="Host runtime (web/miniapp)")
    pay_platform: Literal["wechat", "alipay"] = Field(
        default="wechat", description="Payment platform"
    )

    # Reconciliation
    poll_interval_seconds: float = Field(
        default=3.0, gt=0, description="Delay between status queries (seconds)"
    )
    poll_max_attempts: int = Field(
        default=30, ge=1, description="Status queries before giving up"
    )

    # Application Configuration
    app_name: str = Field(default="recharge-reconciler", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("gateway_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) URL and drop the trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("gateway_base_url must start with 'http://' or 'https://'")
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def pay_entrypoint(self) -> str:
        """Gateway entrypoint matching the runtime."""
        return "MiniAppPay" if self.runtime is Runtime.MINIAPP else "H5Pay"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
