"""In-memory chain adapters for tests."""

import asyncio
import itertools
from typing import Callable, Optional, Sequence

from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from propeller.adapters.base import (
    ChainAdapter,
    SubscriptionHandle,
    TransferParams,
    TransferResult,
)
from propeller.chains import ChainAsset, ChainConfig


class FakeAdapter(ChainAdapter):
    """Records every call in a shared log and never touches a network."""

    def __init__(
        self,
        chain: ChainConfig,
        address: Optional[str] = "0x" + "ab" * 20,
        allowance: int = 0,
        calls: Optional[list] = None,
        sequence: Optional[int] = 42,
    ):
        super().__init__(chain)
        self._address = address
        self.allowance = allowance
        self.calls = calls if calls is not None else []
        self.sequence = sequence
        self.handles: list[SubscriptionHandle] = []
        self.submitted: list[TransferParams] = []
        self.submit_error: Optional[Exception] = None
        self.watch_error: Optional[Exception] = None
        self.on_submit: Optional[Callable[[TransferParams, str], None]] = None
        self._tx_ids = itertools.count(1)

    @property
    def address(self) -> Optional[str]:
        return self._address

    async def prepare(self) -> None:
        self.calls.append(("prepare", self.chain.name))

    async def get_gas_balance(self, owner: Optional[str] = None) -> int:
        return 10**18

    async def get_token_balance(self, asset: ChainAsset, owner: Optional[str] = None) -> int:
        return 0

    async def get_allowance(self, owner: str, spender: str, asset: ChainAsset) -> int:
        self.calls.append(("allowance", self.chain.name))
        return self.allowance

    async def approve_if_needed(
        self, owner: str, spender: str, asset: ChainAsset, required_amount: int
    ) -> Optional[str]:
        if await self.get_allowance(owner, spender, asset) >= required_amount:
            return None
        self.allowance = required_amount
        tx_id = f"{self.chain.name}-approve-{next(self._tx_ids)}"
        self.calls.append(("approve", self.chain.name, required_amount))
        return tx_id

    def encode_owner(self, asset: ChainAsset, owner: Optional[str] = None) -> bytes:
        return (owner or self._address or "").encode()[-32:].rjust(32, b"\x00")

    async def submit_transfer(self, params: TransferParams) -> TransferResult:
        self.calls.append(("submit", self.chain.name, params.amount))
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(params)
        tx_id = f"{self.chain.name}-tx-{next(self._tx_ids)}"
        if self.on_submit:
            self.on_submit(params, tx_id)
        return TransferResult(transaction_id=tx_id, sequence=self.sequence)

    async def _before_watch(self, handle: SubscriptionHandle) -> None:
        self.calls.append(("watch", self.chain.name))
        self.handles.append(handle)

    async def _watch(self, handle: SubscriptionHandle) -> None:
        if self.watch_error is not None:
            raise self.watch_error
        # Matches arrive through deliver()
        await asyncio.Event().wait()

    def deliver(self, memo: bytes, transaction_id: str) -> int:
        """Push an event carrying memo to every active handle. Returns fired count."""
        fired = 0
        for handle in self.handles:
            if handle.active and handle.memo == memo and handle.fire(transaction_id):
                fired += 1
        return fired

    @property
    def active_handles(self) -> list[SubscriptionHandle]:
        return [h for h in self.handles if h.active]


class FakeSolanaAdapter(FakeAdapter):
    """Fake with the Solana surface the conversion step uses."""

    def __init__(self, chain: ChainConfig, logs: Optional[list[str]] = None, **kwargs):
        self.keypair = Keypair()
        super().__init__(chain, address=str(self.keypair.pubkey()), **kwargs)
        self.logs = logs if logs is not None else []
        self.sent: list[tuple[list[Instruction], list[Keypair]]] = []
        self._token_accounts: dict[str, Pubkey] = {}

    @property
    def payer(self) -> Keypair:
        return self.keypair

    def token_account(self, token_id: str, owner: Optional[str] = None) -> Pubkey:
        if token_id not in self._token_accounts:
            self._token_accounts[token_id] = Pubkey.new_unique()
        return self._token_accounts[token_id]

    async def send_instructions(
        self, instructions: Sequence[Instruction], signers: Sequence[Keypair] = ()
    ) -> str:
        self.calls.append(("send", self.chain.name, len(instructions)))
        self.sent.append((list(instructions), list(signers)))
        return f"{self.chain.name}-sig-{len(self.sent)}"

    async def fetch_logs(self, signature: str) -> list[str]:
        return list(self.logs)
