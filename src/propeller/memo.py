"""Memo generation and encodings.

A memo is 16 random bytes that tie a source chain transaction to its target
chain counterpart. EVM routing contracts emit it as an indexed topic (right
zero-padded to 32 bytes), the Solana program writes it as hex in its logs.
"""

import secrets

SWIM_MEMO_LENGTH = 16
EVM_BYTES_LOG_LENGTH = 32


def generate_memo(length: int = SWIM_MEMO_LENGTH) -> bytes:
    """Generate a fresh memo from the OS CSPRNG."""
    return secrets.token_bytes(length)


def pad_for_evm(memo: bytes) -> bytes:
    """Right-pad a memo with zeros to the width of an EVM log topic."""
    if len(memo) > EVM_BYTES_LOG_LENGTH:
        raise ValueError(f"Memo longer than {EVM_BYTES_LOG_LENGTH} bytes")
    return memo + bytes(EVM_BYTES_LOG_LENGTH - len(memo))


def memo_hex(memo: bytes) -> str:
    """Lowercase hex form as written to Solana program logs."""
    return memo.hex()
