"""Liquidity conversion on Solana.

Converts a non-canonical pool token (USDC or USDT) into swimUSD before the
propeller transfer. The add runs as one transaction:

    approve(ephemeral delegate) -> propeller_add -> revoke -> memo

so the user's primary authority never keeps a standing delegation.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Pattern

from solders.keypair import Keypair

from propeller.adapters.solana import (
    SolanaAdapter,
    build_approve_and_revoke,
    build_memo_instruction,
    build_propeller_add_instruction,
)
from propeller.chains import CANONICAL_TOKEN, SOLANA_POOL_TOKENS, ChainAsset
from propeller.errors import ConversionOutputUnparseable, InvalidSwapRequest
from propeller.memo import memo_hex

logger = logging.getLogger(__name__)

DEFAULT_ADD_MAX_FEE = 100_000


class ConversionOutputParser:
    """Reads the swimUSD output amount from propeller_add program logs."""

    DEFAULT_PATTERN = re.compile(
        r"^Program log: propeller_add output_amount: (?P<amount>\d+)"
    )

    def __init__(self, pattern: Optional[Pattern[str]] = None):
        self.pattern = pattern or self.DEFAULT_PATTERN

    def parse(self, logs: Iterable[str], transaction_id: str) -> int:
        """Return the atomic output amount.

        Raises:
            ConversionOutputUnparseable: If no log line matches
        """
        for line in logs:
            match = self.pattern.search(line)
            if match:
                return int(match.group("amount"))
        raise ConversionOutputUnparseable(transaction_id)


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of a pool add."""

    transaction_id: str
    input_amount: int
    output_amount: int


class LiquidityConversionStep:
    """Approve, add and revoke in one Solana transaction."""

    def __init__(
        self,
        adapter: SolanaAdapter,
        max_fee: int = DEFAULT_ADD_MAX_FEE,
        parser: Optional[ConversionOutputParser] = None,
    ):
        self.adapter = adapter
        self.max_fee = max_fee
        self.parser = parser or ConversionOutputParser()

    @staticmethod
    def input_amounts(token_id: str, amount: int) -> list[int]:
        """Per-pool-token amounts with the input on its pool index."""
        if token_id not in SOLANA_POOL_TOKENS:
            raise InvalidSwapRequest(f"Invalid source token: {token_id} is not a pool token")
        return [amount if pool_token == token_id else 0 for pool_token in SOLANA_POOL_TOKENS]

    async def run(self, asset: ChainAsset, amount: int, memo: bytes) -> ConversionResult:
        """Convert amount of asset into swimUSD.

        Args:
            asset: Source pool token on Solana
            amount: Atomic input amount
            memo: Swap memo, attached as an SPL memo for explorers

        Returns:
            ConversionResult with the swimUSD amount read from the logs
        """
        if asset.token_id == CANONICAL_TOKEN:
            raise InvalidSwapRequest("swimUSD does not need conversion")

        adapter = self.adapter
        payer = adapter.payer.pubkey()
        # Discarded after this call
        delegate = Keypair()

        input_amounts = self.input_amounts(asset.token_id, amount)
        user_token_accounts = [adapter.token_account(token) for token in SOLANA_POOL_TOKENS]
        source_account = adapter.token_account(asset.token_id)

        approve_ix, revoke_ix = build_approve_and_revoke(
            source_account, amount, delegate.pubkey(), payer
        )
        add_ix = build_propeller_add_instruction(
            adapter.chain,
            input_amounts,
            self.max_fee,
            user_token_accounts,
            adapter.token_account(CANONICAL_TOKEN),
            delegate.pubkey(),
        )

        logger.info(
            f"Pool add tx params: input_amounts={input_amounts} "
            f"max_fee={self.max_fee} memo={memo_hex(memo)}"
        )
        transaction_id = await adapter.send_instructions(
            [approve_ix, add_ix, revoke_ix, build_memo_instruction(memo, payer)],
            signers=[delegate],
        )

        logs = await adapter.fetch_logs(transaction_id)
        output_amount = self.parser.parse(logs, transaction_id)
        logger.info(f"Add tx confirmed: tx={transaction_id} output_amount={output_amount}")

        return ConversionResult(
            transaction_id=transaction_id,
            input_amount=amount,
            output_amount=output_amount,
        )
