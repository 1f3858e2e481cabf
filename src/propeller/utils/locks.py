"""Concurrency guard for swaps.

At most one swap may be in flight per session. A second attempt is rejected
immediately instead of queueing behind the first.
"""

import asyncio
import logging
from typing import Optional

from propeller.errors import SwapInProgressError

logger = logging.getLogger(__name__)

DEFAULT_SESSION = "default"

# Global lock registry: session_id -> asyncio.Lock
_swap_locks: dict[str, asyncio.Lock] = {}


def get_swap_lock(session_id: str = DEFAULT_SESSION) -> asyncio.Lock:
    """Get or create the lock for a session."""
    lock = _swap_locks.get(session_id)
    if lock is None:
        lock = asyncio.Lock()
        _swap_locks[session_id] = lock
    return lock


def has_swap_in_progress(session_id: str = DEFAULT_SESSION) -> bool:
    lock = _swap_locks.get(session_id)
    return lock is not None and lock.locked()


class SwapGuard:
    """Context manager holding a session's swap slot.

    Example:
        async with SwapGuard(session_id, operation="evm-to-evm"):
            await run_swap()
    """

    def __init__(self, session_id: str = DEFAULT_SESSION, operation: str = "swap"):
        """Initialize the guard.

        Args:
            session_id: Caller session owning the swap slot
            operation: Description of the operation for logging
        """
        self.session_id = session_id
        self.operation = operation
        self._lock: Optional[asyncio.Lock] = None
        self._acquired = False

    async def __aenter__(self) -> "SwapGuard":
        """Take the slot or reject."""
        self._lock = get_swap_lock(self.session_id)

        # No await between the check and the acquire, so this cannot interleave
        if self._lock.locked():
            logger.warning(
                f"Rejected {self.operation} for session {self.session_id}: swap in progress"
            )
            raise SwapInProgressError(self.session_id)

        await self._lock.acquire()
        self._acquired = True
        logger.debug(f"Swap slot taken for session {self.session_id} ({self.operation})")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Release the slot."""
        if self._acquired and self._lock:
            self._lock.release()
            self._acquired = False
            logger.debug(f"Swap slot released for session {self.session_id} ({self.operation})")


def clear_swap_locks() -> None:
    """Clear all session locks (for testing)."""
    _swap_locks.clear()
