"""Pytest configuration and fixtures."""

import os

import pytest
from solders.pubkey import Pubkey

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["EVM_MNEMONIC"] = ""
os.environ["SOLANA_MNEMONIC"] = ""
os.environ["TARGET_EVENT_TIMEOUT"] = "5"

from propeller.chains import ChainConfig, TokenConfig
from propeller.config import get_settings
from propeller.utils.locks import clear_swap_locks

EVM_OWNER = "0x" + "ab" * 20


def _evm_address(seed: int) -> str:
    return "0x" + f"{seed:02x}" * 20


@pytest.fixture(autouse=True)
def reset_state():
    """Clear cached settings and swap locks around each test."""
    get_settings.cache_clear()
    clear_swap_locks()
    yield
    clear_swap_locks()
    get_settings.cache_clear()


@pytest.fixture
def evm_chains() -> dict[str, ChainConfig]:
    """Two EVM chains with routing contracts and stablecoins."""
    return {
        "ethereum": ChainConfig(
            name="ethereum",
            display_name="Ethereum",
            family="evm",
            wormhole_chain_id=2,
            routing_contract_address=_evm_address(0x11),
            wormhole_bridge=_evm_address(0x12),
            wormhole_portal=_evm_address(0x13),
            tokens={
                "swimusd": TokenConfig(address=_evm_address(0x14), decimals=6),
                "usdc": TokenConfig(address=_evm_address(0x15), decimals=6),
                "usdt": TokenConfig(address=_evm_address(0x16), decimals=6),
            },
        ),
        "bsc": ChainConfig(
            name="bsc",
            display_name="BNB Chain",
            family="evm",
            wormhole_chain_id=4,
            routing_contract_address=_evm_address(0x21),
            wormhole_bridge=_evm_address(0x22),
            wormhole_portal=_evm_address(0x23),
            tokens={
                "swimusd": TokenConfig(address=_evm_address(0x24), decimals=6),
                "busd": TokenConfig(address=_evm_address(0x25), decimals=18),
                "usdt": TokenConfig(address=_evm_address(0x26), decimals=18),
            },
        ),
    }


@pytest.fixture
def solana_chain() -> ChainConfig:
    """Solana chain with the propeller program and two-pool configured."""
    def key() -> str:
        return str(Pubkey.new_unique())

    return ChainConfig(
        name="solana",
        display_name="Solana",
        family="solana",
        wormhole_chain_id=1,
        gas_decimals=9,
        routing_contract_address=key(),
        routing_state_address=key(),
        two_pool_address=key(),
        pool_token_accounts=(key(), key()),
        governance_fee_account=key(),
        wormhole_bridge=key(),
        wormhole_portal=key(),
        tokens={
            "swimusd": TokenConfig(address=key(), decimals=6),
            "usdc": TokenConfig(address=key(), decimals=6),
            "usdt": TokenConfig(address=key(), decimals=6),
        },
    )


@pytest.fixture
def chains(evm_chains, solana_chain) -> dict[str, ChainConfig]:
    return {**evm_chains, "solana": solana_chain}
