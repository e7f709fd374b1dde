"""
Configuration management using Pydantic Settings.
All environment variables are validated at startup.
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===================
    # Database Configuration
    # ===================
    database_url: str = Field(..., description="PostgreSQL connection string")

    # ===================
    # Solana / Helius Configuration
    # ===================
    helius_api_key: Optional[str] = Field(default=None, description="Helius API key")
    helius_webhook_secret: str = Field(
        default="",
        description="Shared secret Helius sends as 'Authorization: Bearer <secret>'"
    )
    helius_webhook_url: Optional[str] = Field(
        default=None,
        description="Public URL of our Helius webhook endpoint"
    )
    helius_rpc_url: str = Field(
        default="https://mainnet.helius-rpc.com",
        description="Helius Solana RPC endpoint (api-key appended)"
    )
    helius_api_url: str = Field(
        default="https://api-mainnet.helius-rpc.com",
        description="Helius enhanced transactions / webhooks API"
    )

    # ===================
    # Monad / nad.fun Configuration
    # ===================
    alchemy_signing_key: str = Field(
        default="",
        description="Alchemy webhook signing key (HMAC-SHA256 of the raw body)"
    )
    nadfun_api_url: str = Field(
        default="https://api.nadapp.net",
        description="nad.fun agent API"
    )
    nadfun_api_key: Optional[str] = Field(default=None, description="nad.fun API key")

    # ===================
    # Price Sources
    # ===================
    coingecko_api_url: str = Field(default="https://api.coingecko.com/api/v3")
    raydium_api_url: str = Field(default="https://api.raydium.io/v2")
    pyth_api_url: str = Field(default="https://hermes.pyth.network")
    pumpfun_api_url: str = Field(default="https://frontend-api.pump.fun")
    jupiter_token_url: str = Field(default="https://tokens.jup.ag")
    dexscreener_api_url: str = Field(default="https://api.dexscreener.com")
    geckoterminal_api_url: str = Field(default="https://api.geckoterminal.com/api/v2")
    price_cache_ttl: int = Field(default=60, ge=1, description="Base asset price TTL (seconds)")

    # ===================
    # Scheduling
    # ===================
    poll_interval: int = Field(default=60, ge=1, description="Fallback poller period (seconds)")
    poll_limit: int = Field(default=200, ge=1, le=1000, description="Transactions fetched per wallet")
    ranking_interval: int = Field(default=60, ge=1, description="Leaderboard recompute period (seconds)")
    token_poll_interval: int = Field(default=60, ge=1, description="Token snapshot period (seconds)")

    # ===================
    # Live Feed
    # ===================
    broadcast_queue_size: int = Field(default=100, ge=1, description="Pending events per subscriber")

    # ===================
    # Redis Cache
    # ===================
    redis_url: Optional[str] = Field(default=None, description="Redis URL (optional)")
    redis_pool_size: int = Field(default=10, ge=1)
    cache_ttl_token_stats: int = Field(default=30, ge=1)
    cache_ttl_candles: int = Field(default=60, ge=1)

    # ===================
    # Rate Limiting
    # ===================
    rate_limit_global: str = Field(default="300/minute")
    rate_limit_charts: str = Field(default="60/minute", description="Chart endpoints hit upstream APIs")
    trust_forwarded_for: bool = Field(default=False, description="Key limits on X-Forwarded-For behind a proxy")

    # ===================
    # Server
    # ===================
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000, ge=1, le=65535, validation_alias=AliasChoices("PORT", "API_PORT"))

    # ===================
    # Logging
    # ===================
    log_level: str = Field(default="INFO")
    log_json: Optional[bool] = Field(default=None, description="JSON lines; defaults to on unless stderr is a TTY")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is a standard level name."""
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level

    def webhook_secret(self, chain: str) -> str:
        """Get the webhook shared secret for a chain."""
        secrets = {
            "solana": self.helius_webhook_secret,
            "monad": self.alchemy_signing_key,
        }
        return secrets.get(chain.lower(), "")

    @property
    def helius_configured(self) -> bool:
        return bool(self.helius_api_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
