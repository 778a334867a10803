"""
Application configuration loaded from environment variables.

All configuration is validated at startup to fail fast on misconfiguration.
Core components never read settings directly: the application edge builds
explicit config objects from them and passes those in at construction.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from rewardai.domain.invoices import InvoiceConfig
from rewardai.services.distribution import DistributionConfig
from rewardai.services.ledger import NETWORK_URLS, XRPLNetwork
from rewardai.services.x402 import DEFAULT_FACILITATOR_URL


class Settings(BaseSettings):
    """
    Application settings with validation.

    All settings are loaded from environment variables with the same name.
    Use .env file for local development.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./rewardai.db",
        description="SQLAlchemy async connection string (asyncpg or aiosqlite driver)"
    )

    # XRPL Configuration
    xrpl_network: Literal["testnet", "mainnet", "devnet"] = Field(
        default="testnet",
        description="XRPL network to connect to"
    )
    xrpl_rpc_url: str | None = Field(
        default=None,
        description="Override the JSON-RPC endpoint for the network"
    )
    xrpl_wallet_seed: str | None = Field(
        default=None,
        description="Vault wallet seed for signing distributions (optional for dry-runs)"
    )

    # x402 Facilitator
    facilitator_url: str = Field(
        default=DEFAULT_FACILITATOR_URL,
        description="Base URL of the x402 facilitator"
    )
    facilitator_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout for facilitator calls"
    )
    payment_base_url: str = Field(
        default="https://rewardai.dev",
        description="Base URL of the hosted invoice payment page"
    )
    invoice_timeout_seconds: int = Field(
        default=300,
        gt=0,
        description="Invoice lifetime and x402 maxTimeoutSeconds"
    )

    # Distribution
    transfer_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Per-recipient bound on submission plus confirmation"
    )
    confirmation_poll_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Delay between ledger confirmation polls"
    )
    max_concurrency: int = Field(
        default=1,
        ge=1,
        le=32,
        description="Parallel transfer submissions (1 = strictly sequential)"
    )

    # Server
    debug: bool = Field(
        default=False,
        description="Enable debug mode with detailed error messages"
    )

    @property
    def xrpl_url(self) -> str:
        """Return the JSON-RPC URL for the configured XRPL network."""
        return self.xrpl_rpc_url or NETWORK_URLS[XRPLNetwork(self.xrpl_network)]

    @property
    def x402_network(self) -> str:
        """x402 network identifier advertised in payment requirements."""
        return f"xrpl-{self.xrpl_network}"

    def invoice_config(self) -> InvoiceConfig:
        return InvoiceConfig(
            network=self.x402_network,
            payment_base_url=self.payment_base_url,
            timeout_seconds=self.invoice_timeout_seconds,
        )

    def distribution_config(self) -> DistributionConfig:
        return DistributionConfig(
            transfer_timeout_seconds=self.transfer_timeout_seconds,
            max_concurrency=self.max_concurrency,
        )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once at startup and cached for subsequent calls.
    Only the application entry point uses this; components receive
    explicit config objects.
    """
    return Settings()
