"""Base classes for chain adapters.

An adapter exposes the uniform capability set the orchestrator needs over a
concrete chain: balances and allowances, approval and transfer submission,
and a fire-once memo watcher.
"""

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from propeller.chains import ChainAsset, ChainConfig
from propeller.memo import memo_hex

logger = logging.getLogger(__name__)

_handle_ids = itertools.count(1)


@dataclass(frozen=True)
class TransferParams:
    """Arguments of the propeller transfer call, in contract order.

    Attributes:
        asset: Source asset being bridged
        amount: Atomic input amount
        target_chain_id: Wormhole id of the target chain
        target_owner: 32-byte owner encoding on the target chain
        gas_kickstart: Target gas request flag
        max_fee: Atomic max relayer fee
        target_token_number: Protocol token number on the target chain
        memo: 16-byte correlation memo
        overrides: Chain specific transaction overrides
    """

    asset: ChainAsset
    amount: int
    target_chain_id: int
    target_owner: bytes
    gas_kickstart: bool
    max_fee: int
    target_token_number: int
    memo: bytes
    overrides: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransferResult:
    """Outcome of a confirmed transfer submission."""

    transaction_id: str
    sequence: Optional[int] = None


class SubscriptionHandle:
    """Fire-once memo subscription.

    The handle owns the watcher task and the callbacks. It fires at most once,
    then stops its watcher. A watcher that dies reports its error through
    on_error instead. Closing is idempotent and safe after firing.
    """

    def __init__(
        self,
        chain: str,
        memo: bytes,
        on_match: Callable[[str], None],
        on_error: Optional[Callable[[BaseException], None]] = None,
    ):
        self.id = next(_handle_ids)
        self.chain = chain
        self.memo = memo
        self._on_match = on_match
        self._on_error = on_error
        self._task: Optional[asyncio.Task] = None
        self.fired = False
        self.closed = False
        self.transaction_id: Optional[str] = None
        self.error: Optional[BaseException] = None

    @property
    def active(self) -> bool:
        return not (self.fired or self.closed)

    def attach(self, task: asyncio.Task) -> None:
        self._task = task

    def fire(self, transaction_id: str) -> bool:
        """Deliver a match. Returns False if the handle already fired or closed."""
        if not self.active:
            return False
        self.fired = True
        self.transaction_id = transaction_id
        logger.info(
            f"Memo {memo_hex(self.memo)} matched on {self.chain}: {transaction_id}"
        )
        self._on_match(transaction_id)
        return True

    def fail(self, error: BaseException) -> bool:
        """Report a dead watcher. Returns False if the handle already fired or closed."""
        if not self.active:
            return False
        self.error = error
        self.closed = True
        if self._on_error:
            self._on_error(error)
        return True

    async def close(self) -> None:
        """Stop the watcher task."""
        self.closed = True
        task = self._task
        self._task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def __repr__(self) -> str:
        state = "fired" if self.fired else "closed" if self.closed else "active"
        return f"<SubscriptionHandle #{self.id} {self.chain} {memo_hex(self.memo)} {state}>"


class SubscriptionRegistry:
    """Subscriptions installed during one swap attempt.

    The orchestrator releases everything it registered on every exit path.
    """

    def __init__(self):
        self._entries: list[tuple["ChainAdapter", SubscriptionHandle]] = []

    def add(self, adapter: "ChainAdapter", handle: SubscriptionHandle) -> SubscriptionHandle:
        self._entries.append((adapter, handle))
        return handle

    @property
    def handles(self) -> list[SubscriptionHandle]:
        return [handle for _, handle in self._entries]

    async def release_all(self) -> None:
        """Unsubscribe every registered handle."""
        entries, self._entries = self._entries, []
        for adapter, handle in entries:
            try:
                await adapter.unsubscribe(handle)
            except Exception as e:
                logger.warning(f"Failed to release {handle!r}: {e}")


class ChainAdapter(ABC):
    """Abstract base class for chain adapters."""

    def __init__(self, chain: ChainConfig):
        self.chain = chain

    @property
    @abstractmethod
    def address(self) -> Optional[str]:
        """Owner address of the connected wallet, None if not connected."""
        pass

    @property
    def is_connected(self) -> bool:
        """Whether a signer is available on this chain."""
        return self.address is not None

    @property
    def spender(self) -> str:
        """Routing contract or program that pulls the source asset."""
        return self.chain.require_routing_contract()

    def check_overrides(self, overrides: dict[str, Any]) -> None:
        """Reject transaction overrides this chain does not understand."""
        return None

    async def prepare(self) -> None:
        """Chain specific setup before any transaction (token accounts, funding)."""
        return None

    @abstractmethod
    async def get_gas_balance(self, owner: Optional[str] = None) -> int:
        """Native balance in smallest units."""
        pass

    @abstractmethod
    async def get_token_balance(self, asset: ChainAsset, owner: Optional[str] = None) -> int:
        """Token balance in smallest units."""
        pass

    @abstractmethod
    async def get_allowance(self, owner: str, spender: str, asset: ChainAsset) -> int:
        """Amount of asset the spender may pull from owner."""
        pass

    @abstractmethod
    async def approve_if_needed(
        self, owner: str, spender: str, asset: ChainAsset, required_amount: int
    ) -> Optional[str]:
        """Approve spender for required_amount when the allowance is short.

        Returns:
            Approval transaction id, or None if no transaction was needed

        Raises:
            WalletNotConnected: If no signer is available
        """
        pass

    @abstractmethod
    def encode_owner(self, asset: ChainAsset, owner: Optional[str] = None) -> bytes:
        """32-byte owner encoding used as the transfer recipient on this chain."""
        pass

    @abstractmethod
    async def submit_transfer(self, params: TransferParams) -> TransferResult:
        """Submit the propeller transfer and wait for one confirmation."""
        pass

    @abstractmethod
    async def _watch(self, handle: SubscriptionHandle) -> None:
        """Watch loop; calls handle.fire() once on a match and returns."""
        pass

    async def watch_for_memo(
        self,
        memo: bytes,
        on_match: Callable[[str], None],
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> SubscriptionHandle:
        """Install a fire-once listener for the memo on this chain.

        The listener is live when this returns. If the watcher stops on an
        error before a match, on_error receives it.
        """
        handle = SubscriptionHandle(self.chain.name, memo, on_match, on_error)
        await self._before_watch(handle)
        task = asyncio.create_task(
            self._run_watch(handle), name=f"watch-{self.chain.name}-{handle.id}"
        )
        handle.attach(task)
        logger.debug(f"Installed {handle!r}")
        return handle

    async def _before_watch(self, handle: SubscriptionHandle) -> None:
        """Hook to capture a start point before the watcher task runs."""
        return None

    async def _run_watch(self, handle: SubscriptionHandle) -> None:
        try:
            await self._watch(handle)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Watcher for {handle!r} stopped: {e}")
            handle.fail(e)

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Release a subscription. Safe after the handle already fired."""
        await handle.close()
        logger.debug(f"Released {handle!r}")
