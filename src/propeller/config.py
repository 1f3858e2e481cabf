"""Application configuration using pydantic-settings.

EVM and Solana wallets are derived from mnemonics with configurable HD paths.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from propeller.errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="testnet", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")

    # ======================
    # Chain RPC Endpoints
    # ======================
    # EVM Chains
    avalanche_rpc_url: Optional[str] = Field(default=None, description="Avalanche RPC URL")
    bsc_rpc_url: Optional[str] = Field(default=None, description="BNB Chain RPC URL")
    ethereum_rpc_url: Optional[str] = Field(default=None, description="Ethereum RPC URL")
    polygon_rpc_url: Optional[str] = Field(default=None, description="Polygon RPC URL")

    # Non-EVM Chains
    solana_rpc_url: Optional[str] = Field(default=None, description="Solana RPC URL")
    solana_ws_url: Optional[str] = Field(
        default=None, description="Solana websocket URL (derived from the RPC URL if unset)"
    )

    # Bridge guardians
    wormhole_rpc_url: Optional[str] = Field(
        default=None, description="Wormhole guardian REST endpoint for signed VAAs"
    )

    # ======================
    # Wallets
    # ======================
    evm_mnemonic: Optional[str] = Field(default=None, description="EVM wallet mnemonic")
    evm_hd_path: str = Field(default="m/44'/60'/0'/0/0", description="EVM derivation path")
    solana_mnemonic: Optional[str] = Field(default=None, description="Solana wallet mnemonic")
    solana_hd_path: str = Field(default="m/44'/501'/0'/0'", description="Solana derivation path")

    # ======================
    # Swap Behaviour
    # ======================
    target_event_timeout: float = Field(
        default=600.0, description="Seconds to wait for the target chain event (0 = no bound)"
    )
    confirmation_timeout: float = Field(
        default=120.0, description="Seconds to wait for a transaction confirmation"
    )
    poll_interval: float = Field(default=2.0, description="Seconds between event polls")
    solana_final_log_marker: Optional[str] = Field(
        default=None,
        description="Log substring marking the final instruction of a Solana completion tx",
    )
    propeller_add_max_fee: int = Field(
        default=100_000, description="Max fee for the Solana pool add instruction (atomic)"
    )
    solana_compute_unit_limit: int = Field(
        default=350_000, description="Compute unit limit for Solana propeller transfers"
    )
    airdrop_when_low: bool = Field(
        default=False, description="Request a devnet airdrop when SOL balance is below 1 SOL"
    )

    # ======================
    # Catalog
    # ======================
    chain_catalog_path: Optional[str] = Field(
        default=None, description="JSON file with contract and token addresses per chain"
    )

    @property
    def has_evm_wallet(self) -> bool:
        """Check if an EVM mnemonic is configured."""
        return bool(self.evm_mnemonic)

    @property
    def has_solana_wallet(self) -> bool:
        """Check if a Solana mnemonic is configured."""
        return bool(self.solana_mnemonic)

    @property
    def target_wait_seconds(self) -> Optional[float]:
        """Bound for the target event wait, None when unbounded."""
        return self.target_event_timeout if self.target_event_timeout > 0 else None

    def get_rpc_url(self, chain: str) -> str:
        """Get RPC URL for a chain name.

        Raises:
            ConfigurationError: If no RPC URL is configured for the chain
        """
        rpc_map = {
            "avalanche": self.avalanche_rpc_url,
            "bsc": self.bsc_rpc_url,
            "ethereum": self.ethereum_rpc_url,
            "polygon": self.polygon_rpc_url,
            "solana": self.solana_rpc_url,
        }
        rpc_url = rpc_map.get(chain.lower())
        if not rpc_url:
            raise ConfigurationError(f"Missing RPC env variable for chain {chain}")
        return rpc_url

    def get_solana_ws_url(self) -> str:
        """Websocket endpoint for Solana log subscriptions."""
        if self.solana_ws_url:
            return self.solana_ws_url
        rpc_url = self.get_rpc_url("solana")
        if rpc_url.startswith("https://"):
            return "wss://" + rpc_url[len("https://"):]
        if rpc_url.startswith("http://"):
            return "ws://" + rpc_url[len("http://"):]
        return rpc_url

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "wallets": {
                "evm": {"mnemonic": "***" if self.evm_mnemonic else "(not set)", "hd_path": self.evm_hd_path},
                "solana": {"mnemonic": "***" if self.solana_mnemonic else "(not set)", "hd_path": self.solana_hd_path},
            },
            "chains": {
                "avalanche": self.avalanche_rpc_url or "(not set)",
                "bsc": self.bsc_rpc_url or "(not set)",
                "ethereum": self.ethereum_rpc_url or "(not set)",
                "polygon": self.polygon_rpc_url or "(not set)",
                "solana": self.solana_rpc_url or "(not set)",
            },
            "wormhole_rpc": self.wormhole_rpc_url or "(not set)",
            "swap": {
                "target_event_timeout": self.target_event_timeout,
                "confirmation_timeout": self.confirmation_timeout,
                "poll_interval": self.poll_interval,
                "solana_final_log_marker": self.solana_final_log_marker,
            },
            "chain_catalog": self.chain_catalog_path or "(built-in)",
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
