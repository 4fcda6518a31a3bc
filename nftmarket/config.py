"""
NFT Market Configuration Management

Centralized configuration using Pydantic Settings for type-safe environment
variable loading with validation.

Marketplace policy values (auction price floor, bid increment, overpayment
handling) are deployment parameters: the engines read them as fixed
constants and never write them back anywhere.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="NFTMARKET_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ═══════════════════════════════════════════════════════════════
    # APPLICATION
    # ═══════════════════════════════════════════════════════════════
    app_name: str = Field(default="nftmarket", description="Application name")
    app_env: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Debug mode")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_json: bool = Field(default=False, description="Render logs as JSON")

    # ═══════════════════════════════════════════════════════════════
    # MARKETPLACE POLICY
    # ═══════════════════════════════════════════════════════════════
    min_starting_price: Decimal = Field(
        default=Decimal("0.03"),
        description="Absolute floor for an auction starting price",
    )
    min_bid_increment: Decimal = Field(
        default=Decimal("0.01"),
        description="Amount an auction starting price must exceed the mint price by",
    )
    refund_excess_payment: bool = Field(
        default=True,
        description="Refund overpayment on direct buys (reject it when disabled)",
    )

    @field_validator("min_starting_price", "min_bid_increment")
    @classmethod
    def validate_positive_amount(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Marketplace policy amounts must be positive")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.app_env == "production"

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.app_env == "testing"

    def auction_floor(self, mint_price: Decimal) -> Decimal:
        """Lowest starting price accepted for an item minted at ``mint_price``."""
        return max(self.min_starting_price, mint_price + self.min_bid_increment)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Singleton settings instance
settings = get_settings()
