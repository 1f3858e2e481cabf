"""Swap data model.

SwapRequest is the caller's immutable intent, SwapExecution is the mutable
record the orchestrator owns while a swap runs.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from propeller.errors import InvalidSwapRequest
from propeller.memo import memo_hex


class SwapState(str, Enum):
    """Orchestrator states."""

    INIT = "init"
    VALIDATING_WALLETS = "validating_wallets"
    ADDING_LIQUIDITY = "adding_liquidity"
    APPROVING_ALLOWANCE = "approving_allowance"
    SUBMITTING_TRANSFER = "submitting_transfer"
    AWAITING_SOURCE_EVENT = "awaiting_source_event"
    AWAITING_TARGET_EVENT = "awaiting_target_event"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SwapState.COMPLETED, SwapState.FAILED)


class BalanceKind(str, Enum):
    GAS = "gas"
    TOKEN = "token"


@dataclass(frozen=True)
class BalanceKey:
    """Caller-side balance cache key invalidated after a swap ends."""

    role: str  # "source" or "target"
    kind: BalanceKind
    chain: str

    def __str__(self) -> str:
        return f"{self.role}:{self.kind.value}:{self.chain}"


@dataclass(frozen=True)
class TxRecord:
    """A transaction observed on one chain during a swap."""

    chain: str
    transaction_id: str


@dataclass(frozen=True)
class SwapRequest:
    """Caller intent for one propeller swap.

    Attributes:
        source_chain: Chain name the swap starts on
        source_token: Token project id spent on the source chain
        target_chain: Chain name the swap completes on
        target_token: Token project id received on the target chain
        input_amount: Human-readable amount of source token
        max_fee: Human-readable maximum relayer fee in the canonical asset
        gas_kickstart: Request target gas (accepted, not yet actionable)
        overrides: Chain specific tx overrides (gas_limit, gas_price)
    """

    source_chain: str
    source_token: str
    target_chain: str
    target_token: str
    input_amount: str
    max_fee: str
    gas_kickstart: bool = False
    overrides: dict[str, Any] = field(default_factory=dict)


def to_atomic(amount: str, decimals: int, label: str = "amount") -> int:
    """Convert a human-readable amount to smallest units.

    Raises:
        InvalidSwapRequest: If the amount is malformed, negative or has
            more fractional digits than the token supports
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise InvalidSwapRequest(f"Invalid {label}: {amount}")

    if not value.is_finite() or value < 0:
        raise InvalidSwapRequest(f"Invalid {label}: {amount}")

    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise InvalidSwapRequest(
            f"Invalid {label}: {amount} has more than {decimals} decimals"
        )
    return int(scaled)


def from_atomic(amount: int, decimals: int) -> Decimal:
    """Convert smallest units back to a human-readable Decimal."""
    return Decimal(amount).scaleb(-decimals)


@dataclass
class SwapExecution:
    """Run-time record of one swap attempt."""

    request: SwapRequest
    memo: bytes
    state: SwapState = SwapState.INIT
    input_amount_atomic: Optional[int] = None
    converted_amount_atomic: Optional[int] = None
    conversion_transaction_id: Optional[str] = None
    sequence: Optional[int] = None
    records: list[TxRecord] = field(default_factory=list)
    error: Optional[BaseException] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def memo_hex(self) -> str:
        return memo_hex(self.memo)

    @property
    def transfer_amount_atomic(self) -> Optional[int]:
        """Amount actually approved and transferred (converted if a conversion ran)."""
        if self.converted_amount_atomic is not None:
            return self.converted_amount_atomic
        return self.input_amount_atomic

    @property
    def failure_reason(self) -> Optional[str]:
        if self.error is None:
            return None
        return str(self.error) or type(self.error).__name__

    def transition(self, state: SwapState) -> None:
        if self.state.is_terminal:
            raise RuntimeError(f"Swap already {self.state.value}, cannot move to {state.value}")
        self.state = state
        if state.is_terminal:
            self.finished_at = datetime.now(timezone.utc)

    def fail(self, error: BaseException) -> None:
        self.error = error
        if not self.state.is_terminal:
            self.transition(SwapState.FAILED)

    def add_record(self, record: TxRecord) -> bool:
        """Append a record unless its transaction id was already seen.

        Returns:
            True if the record was added
        """
        if any(r.transaction_id == record.transaction_id for r in self.records):
            return False
        self.records.append(record)
        return True

    def has_record_for(self, chain: str) -> bool:
        return any(r.chain == chain for r in self.records)
