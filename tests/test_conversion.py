"""Tests for the Solana liquidity conversion step."""

import re
import struct

import pytest
from spl.token.constants import TOKEN_PROGRAM_ID

from propeller.adapters.solana import MEMO_PROGRAM_ID, anchor_discriminator
from propeller.conversion import ConversionOutputParser, LiquidityConversionStep
from propeller.errors import ConversionOutputUnparseable, InvalidSwapRequest

from tests.fakes import FakeSolanaAdapter

ADD_LOGS = [
    "Program log: Instruction: PropellerAdd",
    "Program log: propeller_add output_amount: 2339000",
    "Program log: propeller_add output_amount: 1",
]


class TestConversionOutputParser:
    """Tests for reading the output amount from logs."""

    def test_parses_first_match(self):
        assert ConversionOutputParser().parse(ADD_LOGS, "sig") == 2339000

    def test_unparseable(self):
        """Missing output line is a typed error naming the transaction."""
        with pytest.raises(ConversionOutputUnparseable) as exc_info:
            ConversionOutputParser().parse(["Program log: Instruction: PropellerAdd"], "sig-7")

        assert exc_info.value.transaction_id == "sig-7"

    def test_line_must_start_with_prefix(self):
        logs = ["Program data: propeller_add output_amount: 5"]

        with pytest.raises(ConversionOutputUnparseable):
            ConversionOutputParser().parse(logs, "sig")

    def test_custom_pattern(self):
        parser = ConversionOutputParser(re.compile(r"minted (?P<amount>\d+)"))

        assert parser.parse(["Program log: minted 77"], "sig") == 77


class TestLiquidityConversionStep:
    """Tests for the approve, add and revoke transaction."""

    def test_input_amounts_by_pool_index(self):
        assert LiquidityConversionStep.input_amounts("usdc", 10) == [10, 0]
        assert LiquidityConversionStep.input_amounts("usdt", 10) == [0, 10]

    def test_input_amounts_rejects_non_pool_token(self):
        with pytest.raises(InvalidSwapRequest):
            LiquidityConversionStep.input_amounts("busd", 10)

    @pytest.mark.asyncio
    async def test_single_transaction_order(self, solana_chain):
        """Approve, add, revoke and memo go out in one transaction."""
        adapter = FakeSolanaAdapter(solana_chain, logs=ADD_LOGS)
        step = LiquidityConversionStep(adapter, max_fee=100_000)
        memo = bytes(range(16))

        result = await step.run(solana_chain.asset("usdt"), 2_340_000, memo)

        assert len(adapter.sent) == 1
        instructions, signers = adapter.sent[0]
        approve_ix, add_ix, revoke_ix, memo_ix = instructions
        assert approve_ix.program_id == TOKEN_PROGRAM_ID
        assert revoke_ix.program_id == TOKEN_PROGRAM_ID
        assert add_ix.data[:8] == anchor_discriminator("propeller_add")
        assert struct.unpack("<QQQ", bytes(add_ix.data[8:])) == (0, 2_340_000, 100_000)
        assert memo_ix.program_id == MEMO_PROGRAM_ID
        assert bytes(memo_ix.data) == memo.hex().encode()

        assert result.transaction_id == "solana-sig-1"
        assert result.input_amount == 2_340_000
        assert result.output_amount == 2_339_000

    @pytest.mark.asyncio
    async def test_ephemeral_delegate(self, solana_chain):
        """The delegate is a fresh key that signs the add, never the payer."""
        adapter = FakeSolanaAdapter(solana_chain, logs=ADD_LOGS)
        step = LiquidityConversionStep(adapter)

        await step.run(solana_chain.asset("usdc"), 1_000_000, bytes(16))
        await step.run(solana_chain.asset("usdc"), 1_000_000, bytes(16))

        first = adapter.sent[0][1][0].pubkey()
        second = adapter.sent[1][1][0].pubkey()
        assert first != adapter.payer.pubkey()
        assert first != second
        add_ix = adapter.sent[0][0][1]
        authority = [meta for meta in add_ix.accounts if meta.is_signer]
        assert [meta.pubkey for meta in authority] == [first]

    @pytest.mark.asyncio
    async def test_canonical_token_rejected(self, solana_chain):
        adapter = FakeSolanaAdapter(solana_chain, logs=ADD_LOGS)

        with pytest.raises(InvalidSwapRequest):
            await LiquidityConversionStep(adapter).run(
                solana_chain.asset("swimusd"), 1, bytes(16)
            )

        assert adapter.sent == []

    @pytest.mark.asyncio
    async def test_unparseable_output(self, solana_chain):
        adapter = FakeSolanaAdapter(solana_chain, logs=["Program log: nothing"])

        with pytest.raises(ConversionOutputUnparseable):
            await LiquidityConversionStep(adapter).run(solana_chain.asset("usdt"), 1, bytes(16))
