"""Wallet derivation from mnemonics.

EVM keys use SLIP-10 secp256k1 derivation, Solana keys use SLIP-10 ed25519
(hardened path, e.g. m/44'/501'/0'/0').
"""

import logging

from bip_utils import Bip32Slip10Ed25519, Bip32Slip10Secp256k1, Bip39SeedGenerator
from eth_account import Account
from eth_account.signers.local import LocalAccount
from solders.keypair import Keypair

logger = logging.getLogger(__name__)


def derive_evm_account(mnemonic: str, hd_path: str) -> LocalAccount:
    """Derive an EVM account at hd_path."""
    seed = Bip39SeedGenerator(mnemonic).Generate()
    node = Bip32Slip10Secp256k1.FromSeedAndPath(seed, hd_path)
    account = Account.from_key(node.PrivateKey().Raw().ToBytes())
    logger.debug(f"Derived EVM account {account.address} at {hd_path}")
    return account


def derive_solana_keypair(mnemonic: str, hd_path: str) -> Keypair:
    """Derive a Solana keypair at hd_path."""
    seed = Bip39SeedGenerator(mnemonic).Generate()
    node = Bip32Slip10Ed25519.FromSeedAndPath(seed, hd_path)
    keypair = Keypair.from_seed(node.PrivateKey().Raw().ToBytes()[:32])
    logger.debug(f"Derived Solana account {keypair.pubkey()} at {hd_path}")
    return keypair
