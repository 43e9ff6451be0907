"""Configuration management for the settlement ledger service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment."""

    database_url: str
    gateway_base_url: str
    gateway_api_key: str
    gateway_site_id: str
    gateway_secret: str
    gateway_timeout_seconds: float
    notify_url: str
    currency: str
    host: str
    port: int
    debug: bool
    log_level: str

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment variables."""
        load_dotenv()

        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///settlement_ledger.db"),
            gateway_base_url=os.getenv(
                "GATEWAY_BASE_URL", "https://api-checkout.cinetpay.com/v2"
            ),
            gateway_api_key=os.getenv("GATEWAY_API_KEY", ""),
            gateway_site_id=os.getenv("GATEWAY_SITE_ID", ""),
            gateway_secret=os.getenv("GATEWAY_SECRET", ""),
            gateway_timeout_seconds=float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "15")),
            notify_url=os.getenv("NOTIFY_URL", "http://localhost:8000/webhooks/gateway"),
            currency=os.getenv("LEDGER_CURRENCY", "XOF"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def gateway_configured(self) -> bool:
        """Whether credentials for the real gateway are present."""
        return bool(self.gateway_api_key and self.gateway_site_id and self.gateway_secret)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_env()
