"""Builds chain adapters from settings."""

import logging
from typing import Callable, Optional

from propeller.adapters.base import ChainAdapter
from propeller.adapters.evm import EvmAdapter
from propeller.adapters.solana import SolanaAdapter
from propeller.chains import ChainConfig
from propeller.config import Settings
from propeller.wallets import derive_evm_account, derive_solana_keypair

logger = logging.getLogger(__name__)


def make_adapter_factory(settings: Settings) -> Callable[[ChainConfig], ChainAdapter]:
    """Return a factory for ProviderCache.

    Wallets are derived once and shared by every adapter of the same family.
    """
    evm_account = None
    if settings.has_evm_wallet:
        evm_account = derive_evm_account(settings.evm_mnemonic, settings.evm_hd_path)
        logger.info(f"EVM account address: {evm_account.address}")

    solana_keypair = None
    if settings.has_solana_wallet:
        solana_keypair = derive_solana_keypair(settings.solana_mnemonic, settings.solana_hd_path)
        logger.info(f"Solana account address: {solana_keypair.pubkey()}")

    def factory(chain: ChainConfig) -> ChainAdapter:
        rpc_url = settings.get_rpc_url(chain.name)
        if chain.is_evm:
            return EvmAdapter.from_rpc(
                chain,
                rpc_url,
                account=evm_account,
                poll_interval=settings.poll_interval,
                confirmation_timeout=settings.confirmation_timeout,
            )
        return SolanaAdapter.from_rpc(
            chain,
            rpc_url,
            keypair=solana_keypair,
            ws_url=settings.get_solana_ws_url(),
            final_log_marker=settings.solana_final_log_marker,
            compute_unit_limit=settings.solana_compute_unit_limit,
            airdrop_when_low=settings.airdrop_when_low,
        )

    return factory
