"""Propeller - cross-chain swap orchestration for EVM chains and Solana."""

__version__ = "0.1.0"
