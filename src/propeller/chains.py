"""Chain and token catalog for propeller swaps.

Supports 5 chains:
- Avalanche, BNB Chain, Ethereum, Polygon (EVM routing contract)
- Solana (propeller program + two-pool)

Chain ids are Wormhole chain ids. Contract and token addresses are loaded
from a JSON catalog file so testnet and mainnet deployments can be swapped
without code changes.
"""

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from propeller.errors import ConfigurationError

logger = logging.getLogger(__name__)

EVM_FAMILY = "evm"
SOLANA_FAMILY = "solana"


@dataclass(frozen=True)
class TokenProject:
    """Token project known to the protocol.

    Attributes:
        id: Project identifier used in the catalog (e.g. "usdc")
        symbol: Display symbol
        token_number: Protocol-assigned numeric id, None if not swappable
    """

    id: str
    symbol: str
    token_number: Optional[int] = None


# ======================
# Token Projects
# ======================

SWIM_USD = "swimusd"
USDC = "usdc"
USDT = "usdt"
BUSD = "busd"
SWIM_LP = "swimlp"

TOKEN_PROJECTS: dict[str, TokenProject] = {
    SWIM_USD: TokenProject(id=SWIM_USD, symbol="swimUSD", token_number=0),
    USDC: TokenProject(id=USDC, symbol="USDC", token_number=1),
    USDT: TokenProject(id=USDT, symbol="USDT", token_number=2),
    BUSD: TokenProject(id=BUSD, symbol="BUSD", token_number=3),
    # LP share of the Solana hexapool, never routed directly
    SWIM_LP: TokenProject(id=SWIM_LP, symbol="SWIM-LP", token_number=None),
}

# Canonical bridgeable asset
CANONICAL_TOKEN = SWIM_USD

# Order of the Solana two-pool token accounts
SOLANA_POOL_TOKENS: tuple[str, str] = (USDC, USDT)


@dataclass(frozen=True)
class TokenConfig:
    """Token deployment on one chain."""

    address: str = ""
    decimals: int = 6


@dataclass(frozen=True)
class ChainAsset:
    """Immutable (chain, token, address, decimals) tuple used by the swap core."""

    chain: str
    token_id: str
    address: str
    decimals: int


@dataclass(frozen=True)
class ChainConfig:
    """Configuration for a blockchain."""

    # Required fields (no defaults) - must come first
    name: str
    display_name: str
    family: str
    wormhole_chain_id: int

    # Optional fields (with defaults)
    network_id: Optional[int] = None  # EVM chains only
    gas_decimals: int = 18
    routing_contract_address: str = ""
    wormhole_bridge: str = ""
    wormhole_portal: str = ""
    tokens: dict[str, TokenConfig] = field(default_factory=dict)

    # Solana only
    routing_state_address: str = ""
    two_pool_address: str = ""
    pool_token_accounts: tuple[str, ...] = ()
    governance_fee_account: str = ""

    @property
    def is_evm(self) -> bool:
        return self.family == EVM_FAMILY

    def asset(self, token_id: str) -> ChainAsset:
        """Resolve a token project to its deployment on this chain.

        Raises:
            ConfigurationError: If the token is not deployed on this chain
        """
        token = self.tokens.get(token_id)
        if token is None or not token.address:
            raise ConfigurationError(
                f"Token {token_id} has no address on {self.display_name}"
            )
        return ChainAsset(
            chain=self.name,
            token_id=token_id,
            address=token.address,
            decimals=token.decimals,
        )

    def require_routing_contract(self) -> str:
        if not self.routing_contract_address:
            raise ConfigurationError(
                f"Missing routing contract address for {self.display_name}"
            )
        return self.routing_contract_address


# ======================
# Chain Configurations
# ======================

CHAINS: dict[str, ChainConfig] = {
    "solana": ChainConfig(
        name="solana",
        display_name="Solana",
        family=SOLANA_FAMILY,
        wormhole_chain_id=1,
        gas_decimals=9,
    ),
    "ethereum": ChainConfig(
        name="ethereum",
        display_name="Ethereum",
        family=EVM_FAMILY,
        wormhole_chain_id=2,
        network_id=5,  # Goerli
    ),
    "bsc": ChainConfig(
        name="bsc",
        display_name="BNB Chain",
        family=EVM_FAMILY,
        wormhole_chain_id=4,
        network_id=97,
    ),
    "polygon": ChainConfig(
        name="polygon",
        display_name="Polygon",
        family=EVM_FAMILY,
        wormhole_chain_id=5,
        network_id=80001,  # Mumbai
    ),
    "avalanche": ChainConfig(
        name="avalanche",
        display_name="Avalanche",
        family=EVM_FAMILY,
        wormhole_chain_id=6,
        network_id=43113,  # Fuji
    ),
}


def get_chain(name: str, chains: Optional[dict[str, ChainConfig]] = None) -> ChainConfig:
    """Get chain configuration by name."""
    catalog = chains if chains is not None else CHAINS
    chain = catalog.get(name.lower())
    if chain is None:
        raise ConfigurationError(f"Unknown chain: {name}")
    return chain


def get_chain_by_id(
    wormhole_chain_id: int, chains: Optional[dict[str, ChainConfig]] = None
) -> ChainConfig:
    """Get chain configuration by Wormhole chain id."""
    catalog = chains if chains is not None else CHAINS
    for chain in catalog.values():
        if chain.wormhole_chain_id == wormhole_chain_id:
            return chain
    raise ConfigurationError(f"Unknown chain id: {wormhole_chain_id}")


def get_token_project(token_id: str) -> TokenProject:
    project = TOKEN_PROJECTS.get(token_id.lower())
    if project is None:
        raise ConfigurationError(f"Unknown token: {token_id}")
    return project


def _apply_overrides(chain: ChainConfig, data: dict) -> ChainConfig:
    tokens = dict(chain.tokens)
    for token_id, token_data in data.get("tokens", {}).items():
        tokens[token_id.lower()] = TokenConfig(
            address=token_data.get("address", ""),
            decimals=int(token_data.get("decimals", 6)),
        )

    updates = {
        key: data[key]
        for key in (
            "routing_contract_address",
            "wormhole_bridge",
            "wormhole_portal",
            "routing_state_address",
            "two_pool_address",
            "governance_fee_account",
        )
        if key in data
    }
    if "pool_token_accounts" in data:
        updates["pool_token_accounts"] = tuple(data["pool_token_accounts"])
    if "network_id" in data:
        updates["network_id"] = int(data["network_id"])

    return replace(chain, tokens=tokens, **updates)


def load_chain_catalog(path: Optional[str]) -> dict[str, ChainConfig]:
    """Merge a JSON catalog file into the built-in chain list.

    Args:
        path: Catalog file path, None to use the built-in chains only

    Returns:
        Chain configurations keyed by chain name
    """
    if not path:
        return dict(CHAINS)

    catalog_file = Path(path)
    if not catalog_file.exists():
        raise ConfigurationError(f"Chain catalog not found: {path}")

    raw = json.loads(catalog_file.read_text(encoding="utf-8"))
    chains = dict(CHAINS)
    for name, data in raw.items():
        if name.lower() not in chains:
            logger.warning(f"Ignoring unknown chain in catalog: {name}")
            continue
        chains[name.lower()] = _apply_overrides(chains[name.lower()], data)

    logger.info(f"Loaded chain catalog from {path} ({len(raw)} chains)")
    return chains
