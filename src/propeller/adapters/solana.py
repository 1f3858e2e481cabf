"""Solana chain adapter.

Uses solders for keys, instructions and versioned transactions, solana-py for
RPC and websocket log subscriptions, and spl.token for SPL instructions.
"""

import hashlib
import logging
import re
import struct
from typing import Any, Callable, Iterable, Optional, Sequence

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.websocket_api import connect
from solders.compute_budget import set_compute_unit_limit
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.rpc.config import RpcTransactionLogsFilterMentions
from solders.signature import Signature
from solders.sysvar import CLOCK
from solders.transaction import VersionedTransaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    ApproveParams,
    RevokeParams,
    approve,
    create_associated_token_account,
    get_associated_token_address,
    revoke,
)

from propeller.adapters.base import (
    ChainAdapter,
    SubscriptionHandle,
    TransferParams,
    TransferResult,
)
from propeller.chains import CANONICAL_TOKEN, SOLANA_POOL_TOKENS, ChainAsset, ChainConfig
from propeller.correlator import find_memo_line, logs_contain_marker
from propeller.errors import ChainRequestError, ConfigurationError, WalletNotConnected
from propeller.memo import memo_hex

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000
MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")

SEQUENCE_LOG_PATTERN = re.compile(r"Sequence: (?P<sequence>\d+)")


def anchor_discriminator(instruction_name: str) -> bytes:
    """First 8 bytes of sha256("global:<name>"), the Anchor method selector."""
    return hashlib.sha256(f"global:{instruction_name}".encode()).digest()[:8]


def parse_sequence_from_logs(logs: Iterable[str]) -> Optional[int]:
    """Wormhole sequence printed by the core bridge program."""
    for line in logs:
        match = SEQUENCE_LOG_PATTERN.search(line)
        if match:
            return int(match.group("sequence"))
    return None


def _pubkey(value: str, label: str) -> Pubkey:
    if not value:
        raise ConfigurationError(f"Missing Solana address: {label}")
    return Pubkey.from_string(value)


def build_memo_instruction(memo: bytes, signer: Pubkey) -> Instruction:
    """SPL memo carrying the hex memo, readable from explorers."""
    return Instruction(
        MEMO_PROGRAM_ID,
        memo_hex(memo).encode("utf-8"),
        [AccountMeta(signer, is_signer=True, is_writable=True)],
    )


def build_approve_and_revoke(
    token_account: Pubkey, amount: int, delegate: Pubkey, authority: Pubkey
) -> tuple[Instruction, Instruction]:
    """SPL approve of amount to delegate, and the matching revoke."""
    approve_ix = approve(
        ApproveParams(
            program_id=TOKEN_PROGRAM_ID,
            source=token_account,
            delegate=delegate,
            owner=authority,
            amount=amount,
        )
    )
    revoke_ix = revoke(
        RevokeParams(
            program_id=TOKEN_PROGRAM_ID,
            account=token_account,
            owner=authority,
        )
    )
    return approve_ix, revoke_ix


def build_propeller_add_instruction(
    chain: ChainConfig,
    input_amounts: Sequence[int],
    max_fee: int,
    user_token_accounts: Sequence[Pubkey],
    user_lp_token_account: Pubkey,
    transfer_authority: Pubkey,
) -> Instruction:
    """propeller_add: deposit into the two-pool and mint swimUSD."""
    if len(chain.pool_token_accounts) != 2:
        raise ConfigurationError("Solana two-pool token accounts are not configured")

    data = anchor_discriminator("propeller_add") + struct.pack(
        "<QQQ", input_amounts[0], input_amounts[1], max_fee
    )
    lp_mint = _pubkey(chain.asset(CANONICAL_TOKEN).address, "swimUSD mint")
    accounts = [
        AccountMeta(_pubkey(chain.routing_state_address, "propeller state"), False, False),
        AccountMeta(TOKEN_PROGRAM_ID, False, False),
        AccountMeta(_pubkey(chain.pool_token_accounts[0], "pool token account 0"), False, True),
        AccountMeta(_pubkey(chain.pool_token_accounts[1], "pool token account 1"), False, True),
        AccountMeta(lp_mint, False, True),
        AccountMeta(_pubkey(chain.governance_fee_account, "governance fee"), False, True),
        AccountMeta(transfer_authority, True, False),
        AccountMeta(user_token_accounts[0], False, True),
        AccountMeta(user_token_accounts[1], False, True),
        AccountMeta(user_lp_token_account, False, True),
        AccountMeta(_pubkey(chain.two_pool_address, "two-pool program"), False, False),
    ]
    return Instruction(_pubkey(chain.routing_contract_address, "propeller program"), data, accounts)


def derive_transfer_accounts(
    chain: ChainConfig,
    payer: Pubkey,
    swim_usd_account: Pubkey,
    message_account: Pubkey,
) -> list[AccountMeta]:
    """Accounts of propeller_transfer_native_with_payload, in program order."""
    bridge = _pubkey(chain.wormhole_bridge, "wormhole bridge")
    portal = _pubkey(chain.wormhole_portal, "wormhole portal")
    swim_usd_mint = _pubkey(chain.asset(CANONICAL_TOKEN).address, "swimUSD mint")

    wormhole_config, _ = Pubkey.find_program_address([b"Bridge"], bridge)
    token_bridge_config, _ = Pubkey.find_program_address([b"config"], portal)
    custody, _ = Pubkey.find_program_address([bytes(swim_usd_mint)], portal)
    custody_signer, _ = Pubkey.find_program_address([b"custody_signer"], portal)
    authority_signer, _ = Pubkey.find_program_address([b"authority_signer"], portal)
    wormhole_emitter, _ = Pubkey.find_program_address([b"emitter"], portal)
    wormhole_sequence, _ = Pubkey.find_program_address(
        [b"Sequence", bytes(wormhole_emitter)], bridge
    )
    fee_collector, _ = Pubkey.find_program_address([b"fee_collector"], bridge)

    return [
        AccountMeta(_pubkey(chain.routing_state_address, "propeller state"), False, False),
        AccountMeta(TOKEN_PROGRAM_ID, False, False),
        AccountMeta(payer, True, True),
        AccountMeta(bridge, False, False),
        AccountMeta(token_bridge_config, False, False),
        AccountMeta(swim_usd_account, False, True),
        AccountMeta(swim_usd_mint, False, True),
        AccountMeta(custody, False, True),
        AccountMeta(portal, False, False),
        AccountMeta(custody_signer, False, False),
        AccountMeta(authority_signer, False, False),
        AccountMeta(wormhole_config, False, True),
        AccountMeta(message_account, True, True),
        AccountMeta(wormhole_emitter, False, False),
        AccountMeta(wormhole_sequence, False, True),
        AccountMeta(fee_collector, False, True),
        AccountMeta(CLOCK, False, False),
    ]


def encode_transfer_args(params: TransferParams) -> bytes:
    """Borsh layout: u64 amount, u16 chain, Vec<u8> owner, bool, u64 fee, u16 token, [u8; 16] memo."""
    return (
        anchor_discriminator("propeller_transfer_native_with_payload")
        + struct.pack("<QH", params.amount, params.target_chain_id)
        + struct.pack("<I", len(params.target_owner))
        + params.target_owner
        + struct.pack("<?QH", params.gas_kickstart, params.max_fee, params.target_token_number)
        + params.memo
    )


class SolanaAdapter(ChainAdapter):
    """Adapter for the Solana propeller program."""

    def __init__(
        self,
        chain: ChainConfig,
        client: AsyncClient,
        keypair: Optional[Keypair] = None,
        ws_url: Optional[str] = None,
        final_log_marker: Optional[str] = None,
        compute_unit_limit: int = 350_000,
        airdrop_when_low: bool = False,
        ws_connect: Callable = connect,
    ):
        super().__init__(chain)
        self.client = client
        self.keypair = keypair
        self.ws_url = ws_url
        self.final_log_marker = final_log_marker
        self.compute_unit_limit = compute_unit_limit
        self.airdrop_when_low = airdrop_when_low
        self._ws_connect = ws_connect
        # handle id -> (websocket, subscription id), opened before the watch task runs
        self._sockets: dict[int, tuple[Any, int]] = {}

    @classmethod
    def from_rpc(
        cls,
        chain: ChainConfig,
        rpc_url: str,
        keypair: Optional[Keypair] = None,
        **kwargs,
    ) -> "SolanaAdapter":
        return cls(chain, AsyncClient(rpc_url, commitment=Confirmed), keypair=keypair, **kwargs)

    @property
    def address(self) -> Optional[str]:
        return str(self.keypair.pubkey()) if self.keypair else None

    @property
    def payer(self) -> Keypair:
        if self.keypair is None:
            raise WalletNotConnected("Solana")
        return self.keypair

    def _owner_pubkey(self, owner: Optional[str]) -> Pubkey:
        if owner:
            return Pubkey.from_string(owner)
        return self.payer.pubkey()

    def token_account(self, token_id: str, owner: Optional[str] = None) -> Pubkey:
        """Associated token account of owner for a token project."""
        mint = Pubkey.from_string(self.chain.asset(token_id).address)
        return get_associated_token_address(self._owner_pubkey(owner), mint)

    async def prepare(self) -> None:
        """Fund the wallet on devnet if asked, and create missing token accounts."""
        payer = self.payer
        if self.airdrop_when_low:
            balance = await self.get_gas_balance()
            if balance < LAMPORTS_PER_SOL:
                resp = await self.client.request_airdrop(payer.pubkey(), LAMPORTS_PER_SOL)
                logger.info(f"Airdrop tx hash: {resp.value}")

        for token_id in (CANONICAL_TOKEN, *SOLANA_POOL_TOKENS):
            if token_id not in self.chain.tokens:
                continue
            await self.get_or_create_token_account(token_id)

    async def get_or_create_token_account(self, token_id: str) -> Pubkey:
        payer = self.payer
        mint = Pubkey.from_string(self.chain.asset(token_id).address)
        account = get_associated_token_address(payer.pubkey(), mint)

        resp = await self.client.get_account_info(account)
        if resp.value is None:
            logger.info(f"Creating {token_id} token account {account}")
            await self.send_instructions(
                [create_associated_token_account(payer.pubkey(), payer.pubkey(), mint)]
            )
        return account

    async def get_gas_balance(self, owner: Optional[str] = None) -> int:
        resp = await self.client.get_balance(self._owner_pubkey(owner))
        return resp.value

    async def get_token_balance(self, asset: ChainAsset, owner: Optional[str] = None) -> int:
        account = get_associated_token_address(
            self._owner_pubkey(owner), Pubkey.from_string(asset.address)
        )
        resp = await self.client.get_token_account_balance(account)
        return int(resp.value.amount)

    async def get_allowance(self, owner: str, spender: str, asset: ChainAsset) -> int:
        account = get_associated_token_address(
            Pubkey.from_string(owner), Pubkey.from_string(asset.address)
        )
        resp = await self.client.get_account_info_json_parsed(account)
        if resp.value is None:
            return 0

        info = resp.value.data.parsed["info"]
        if info.get("delegate") != spender:
            return 0
        return int(info.get("delegatedAmount", {}).get("amount", 0))

    async def approve_if_needed(
        self, owner: str, spender: str, asset: ChainAsset, required_amount: int
    ) -> Optional[str]:
        payer = self.payer
        current = await self.get_allowance(owner, spender, asset)
        if current >= required_amount:
            return None

        account = get_associated_token_address(
            Pubkey.from_string(owner), Pubkey.from_string(asset.address)
        )
        approve_ix, _ = build_approve_and_revoke(
            account, required_amount, Pubkey.from_string(spender), payer.pubkey()
        )
        signature = await self.send_instructions([approve_ix])
        logger.info(f"Solana approval transaction hash: {signature}")
        return signature

    def encode_owner(self, asset: ChainAsset, owner: Optional[str] = None) -> bytes:
        # Tokens are delivered to the owner's associated token account
        return bytes(
            get_associated_token_address(
                self._owner_pubkey(owner), Pubkey.from_string(asset.address)
            )
        )

    async def send_instructions(
        self, instructions: Sequence[Instruction], signers: Sequence[Keypair] = ()
    ) -> str:
        """Sign with the payer plus signers, send and wait for confirmation."""
        payer = self.payer
        try:
            blockhash = (await self.client.get_latest_blockhash()).value.blockhash
            message = MessageV0.try_compile(payer.pubkey(), list(instructions), [], blockhash)
            tx = VersionedTransaction(message, [payer, *signers])
            resp = await self.client.send_transaction(tx)
            signature = resp.value
            await self.client.confirm_transaction(signature, commitment=Confirmed)
        except Exception as e:
            raise ChainRequestError(f"Solana transaction failed: {e}") from e
        return str(signature)

    async def fetch_logs(self, signature: str) -> list[str]:
        """Program log lines of a confirmed transaction."""
        resp = await self.client.get_transaction(
            Signature.from_string(signature),
            commitment=Confirmed,
            max_supported_transaction_version=0,
        )
        if resp.value is None or resp.value.transaction.meta is None:
            raise ChainRequestError(f"Could not retrieve tx {signature}")
        return list(resp.value.transaction.meta.log_messages or [])

    async def submit_transfer(self, params: TransferParams) -> TransferResult:
        payer = self.payer
        # Fresh account that receives the posted Wormhole message
        message_keypair = Keypair()
        accounts = derive_transfer_accounts(
            self.chain,
            payer.pubkey(),
            self.token_account(CANONICAL_TOKEN),
            message_keypair.pubkey(),
        )

        logger.info(
            "Propeller transfer tx params: "
            f"swim_usd_input_amount_atomic={params.amount} "
            f"target_chain={params.target_chain_id} "
            f"owner={params.target_owner.hex()} "
            f"gas_kickstart={params.gas_kickstart} "
            f"max_fee={params.max_fee} "
            f"target_token_number={params.target_token_number} "
            f"memo={memo_hex(params.memo)}"
        )

        transfer_ix = Instruction(
            _pubkey(self.chain.routing_contract_address, "propeller program"),
            encode_transfer_args(params),
            accounts,
        )
        signature = await self.send_instructions(
            [set_compute_unit_limit(self.compute_unit_limit), transfer_ix],
            signers=[message_keypair],
        )
        logger.info(f"Source chain propeller transfer transaction hash: {signature}")

        sequence = parse_sequence_from_logs(await self.fetch_logs(signature))
        logger.info(f"Wormhole sequence: {sequence}")
        return TransferResult(transaction_id=signature, sequence=sequence)

    def handle_logs(
        self, handle: SubscriptionHandle, signature: str, logs: Sequence[str], slot: Optional[int] = None
    ) -> bool:
        """Match one transaction's logs against a handle.

        Returns:
            True if the handle fired
        """
        if not handle.active:
            return False
        line = find_memo_line(logs, handle.memo)
        if line is None:
            return False
        if not logs_contain_marker(logs, self.final_log_marker):
            logger.debug(f"Memo {memo_hex(handle.memo)} seen in {signature}, waiting for final log")
            return False

        logger.info(
            f"Propeller tx detected on Solana: memo={memo_hex(handle.memo)} "
            f"tx={signature} slot={slot}"
        )
        return handle.fire(signature)

    async def _before_watch(self, handle: SubscriptionHandle) -> None:
        # Subscribe here so the listener is live before the transfer is sent
        if not self.ws_url:
            raise ConfigurationError("Missing Solana websocket URL")
        program = _pubkey(self.chain.routing_contract_address, "propeller program")

        websocket = await self._ws_connect(self.ws_url)
        try:
            await websocket.logs_subscribe(
                RpcTransactionLogsFilterMentions(program), commitment=Confirmed
            )
            first_resp = await websocket.recv()
            subscription_id = first_resp[0].result
        except Exception as e:
            await websocket.close()
            raise ChainRequestError(f"Solana log subscription failed: {e}") from e

        self._sockets[handle.id] = (websocket, subscription_id)
        logger.debug(f"Solana log subscription {subscription_id} for {handle!r}")

    async def _watch(self, handle: SubscriptionHandle) -> None:
        websocket, _ = self._sockets[handle.id]
        try:
            async for messages in websocket:
                for message in messages:
                    value = message.result.value
                    if value.err is not None:
                        continue
                    if self.handle_logs(
                        handle, str(value.signature), value.logs, message.result.context.slot
                    ):
                        return
        finally:
            await self._release_socket(handle)

        if handle.active:
            raise ChainRequestError("Solana log subscription closed before a match")

    async def _release_socket(self, handle: SubscriptionHandle) -> None:
        entry = self._sockets.pop(handle.id, None)
        if entry is None:
            return
        websocket, subscription_id = entry
        try:
            await websocket.logs_unsubscribe(subscription_id)
        except Exception as e:
            logger.debug(f"Solana logs_unsubscribe {subscription_id} failed: {e}")
        finally:
            await websocket.close()

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        await super().unsubscribe(handle)
        # The watch task may have been cancelled before it started
        await self._release_socket(handle)
