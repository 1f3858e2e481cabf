"""Memo matching predicates used by every chain watcher.

A candidate event is accepted only when its memo bytes equal the expected
memo exactly, after the same encoding used to install the filter.
"""

from typing import Iterable, Optional, Union

from propeller.memo import memo_hex, pad_for_evm


def _to_bytes(value: Union[bytes, str]) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = value[2:] if value.startswith(("0x", "0X")) else value
    return bytes.fromhex(text)


def topic_matches_memo(topic: Union[bytes, str], memo: bytes) -> bool:
    """Check an EVM indexed topic against a memo."""
    try:
        return _to_bytes(topic) == pad_for_evm(memo)
    except ValueError:
        return False


def find_memo_line(logs: Iterable[str], memo: bytes) -> Optional[str]:
    """Return the first Solana log line carrying the memo, if any."""
    needle = memo_hex(memo)
    for line in logs:
        if needle in line:
            return line
    return None


def logs_contain_marker(logs: Iterable[str], marker: Optional[str]) -> bool:
    """True when no marker is required or any line contains it."""
    if not marker:
        return True
    return any(marker in line for line in logs)
