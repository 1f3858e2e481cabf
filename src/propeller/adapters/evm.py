"""EVM chain adapter.

Uses web3.py (async provider) for reads, transaction building and log
polling, and eth-account for local signing.
"""

import asyncio
import logging
from typing import Any, Optional

from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.exceptions import TimeExhausted

from propeller.adapters.base import (
    ChainAdapter,
    SubscriptionHandle,
    TransferParams,
    TransferResult,
)
from propeller.chains import ChainAsset, ChainConfig
from propeller.correlator import topic_matches_memo
from propeller.errors import ChainRequestError, InvalidSwapRequest, WalletNotConnected
from propeller.memo import memo_hex, pad_for_evm

logger = logging.getLogger(__name__)

WORMHOLE_ADDRESS_LENGTH = 32

PROPELLER_INITIATE_SIGNATURE = (
    "propellerInitiate(address,uint256,uint16,bytes32,bool,uint64,uint16,bytes16)"
)
MEMO_INTERACTION_TOPIC = Web3.to_hex(Web3.keccak(text="MemoInteraction(bytes16)"))
LOG_MESSAGE_PUBLISHED_TOPIC = Web3.to_hex(
    Web3.keccak(text="LogMessagePublished(address,uint64,uint32,bytes,uint8)")
)

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
]

ROUTING_ABI = [
    {
        "inputs": [
            {"name": "fromToken", "type": "address"},
            {"name": "inputAmount", "type": "uint256"},
            {"name": "wormholeRecipientChain", "type": "uint16"},
            {"name": "toOwner", "type": "bytes32"},
            {"name": "gasKickStart", "type": "bool"},
            {"name": "maxPropellerFee", "type": "uint64"},
            {"name": "toTokenNumber", "type": "uint16"},
            {"name": "memo", "type": "bytes16"},
        ],
        "name": "propellerInitiate",
        "outputs": [{"name": "swimUsdAmount", "type": "uint256"}],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [{"indexed": True, "name": "memo", "type": "bytes16"}],
        "name": "MemoInteraction",
        "type": "event",
    },
]

# Override keys accepted from callers -> web3 transaction fields
OVERRIDE_FIELDS = {
    "gas_limit": "gas",
    "gas_price": "gasPrice",
    "max_fee_per_gas": "maxFeePerGas",
    "max_priority_fee_per_gas": "maxPriorityFeePerGas",
    "value": "value",
}


def evm_address_to_wormhole(address: str) -> bytes:
    """Left-pad a 20-byte address to a 32-byte Wormhole address."""
    raw = bytes.fromhex(address[2:] if address.startswith("0x") else address)
    return bytes(WORMHOLE_ADDRESS_LENGTH - len(raw)) + raw


def normalize_overrides(overrides: dict[str, Any]) -> dict[str, Any]:
    """Map caller override names to web3 transaction fields.

    Raises:
        InvalidSwapRequest: For unknown override names or non-integer values
    """
    tx_params = {}
    for key, value in overrides.items():
        field_name = OVERRIDE_FIELDS.get(key)
        if field_name is None:
            raise InvalidSwapRequest(
                f"Unknown transaction override: {key} "
                f"(expected one of {', '.join(sorted(OVERRIDE_FIELDS))})"
            )
        try:
            tx_params[field_name] = int(value)
        except (TypeError, ValueError) as e:
            raise InvalidSwapRequest(f"Invalid value for {key}: {value!r}") from e
    return tx_params


def parse_sequence_from_receipt(receipt: Any, bridge_address: str) -> Optional[int]:
    """Extract the Wormhole sequence from the bridge LogMessagePublished log."""
    if not bridge_address:
        return None
    for log in receipt["logs"]:
        if str(log["address"]).lower() != bridge_address.lower():
            continue
        topics = log["topics"]
        if not topics or Web3.to_hex(topics[0]) != LOG_MESSAGE_PUBLISHED_TOPIC:
            continue
        data = bytes(log["data"])
        return int.from_bytes(data[:32], "big")
    return None


class EvmAdapter(ChainAdapter):
    """Adapter for EVM chains with a propeller routing contract."""

    def __init__(
        self,
        chain: ChainConfig,
        web3: AsyncWeb3,
        account: Optional[LocalAccount] = None,
        poll_interval: float = 2.0,
        confirmation_timeout: float = 120.0,
    ):
        super().__init__(chain)
        self.web3 = web3
        self.account = account
        self.poll_interval = poll_interval
        self.confirmation_timeout = confirmation_timeout
        self._network_checked = False
        self._watch_start: dict[int, int] = {}

    @classmethod
    def from_rpc(
        cls,
        chain: ChainConfig,
        rpc_url: str,
        account: Optional[LocalAccount] = None,
        **kwargs,
    ) -> "EvmAdapter":
        web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        return cls(chain, web3, account=account, **kwargs)

    @property
    def address(self) -> Optional[str]:
        return self.account.address if self.account else None

    def _require_account(self) -> LocalAccount:
        if self.account is None:
            raise WalletNotConnected("EVM")
        return self.account

    def _erc20(self, asset: ChainAsset):
        return self.web3.eth.contract(
            address=Web3.to_checksum_address(asset.address), abi=ERC20_ABI
        )

    def _routing(self):
        return self.web3.eth.contract(
            address=Web3.to_checksum_address(self.chain.require_routing_contract()),
            abi=ROUTING_ABI,
        )

    async def ensure_network(self) -> None:
        """Verify the node serves this chain before submitting anything.

        Raises:
            ChainRequestError: If the node reports a different chain id
        """
        if self._network_checked or self.chain.network_id is None:
            return
        chain_id = await self.web3.eth.chain_id
        if chain_id != self.chain.network_id:
            raise ChainRequestError(
                f"Wallet is on network {chain_id}, expected {self.chain.display_name} "
                f"({self.chain.network_id})"
            )
        self._network_checked = True

    async def get_gas_balance(self, owner: Optional[str] = None) -> int:
        owner = owner or self._require_account().address
        return await self.web3.eth.get_balance(Web3.to_checksum_address(owner))

    async def get_token_balance(self, asset: ChainAsset, owner: Optional[str] = None) -> int:
        owner = owner or self._require_account().address
        return await self._erc20(asset).functions.balanceOf(
            Web3.to_checksum_address(owner)
        ).call()

    async def get_allowance(self, owner: str, spender: str, asset: ChainAsset) -> int:
        return await self._erc20(asset).functions.allowance(
            Web3.to_checksum_address(owner),
            Web3.to_checksum_address(spender),
        ).call()

    async def approve_if_needed(
        self, owner: str, spender: str, asset: ChainAsset, required_amount: int
    ) -> Optional[str]:
        self._require_account()
        await self.ensure_network()

        current = await self.get_allowance(owner, spender, asset)
        if current >= required_amount:
            logger.info(
                f"Allowance {current} covers {required_amount} on {self.chain.display_name}"
            )
            return None

        # Approve exactly the amount needed
        tx = await self._erc20(asset).functions.approve(
            Web3.to_checksum_address(spender), required_amount
        ).build_transaction({"from": owner})
        tx_hash = await self._send_transaction(tx)
        logger.info(f"Source chain approval transaction hash: {tx_hash}")
        await self._wait_for_receipt(tx_hash)
        return tx_hash

    def check_overrides(self, overrides: dict[str, Any]) -> None:
        normalize_overrides(overrides)

    def encode_owner(self, asset: ChainAsset, owner: Optional[str] = None) -> bytes:
        owner = owner or self._require_account().address
        return evm_address_to_wormhole(owner)

    async def submit_transfer(self, params: TransferParams) -> TransferResult:
        account = self._require_account()
        await self.ensure_network()

        logger.info(
            "Propeller kick-off tx params: "
            f"source_token={params.asset.address} "
            f"input_amount_atomic={params.amount} "
            f"target_chain={params.target_chain_id} "
            f"target_owner=0x{params.target_owner.hex()} "
            f"gas_kickstart={params.gas_kickstart} "
            f"max_fee={params.max_fee} "
            f"target_token_number={params.target_token_number} "
            f"memo={memo_hex(params.memo)}"
        )

        initiate = self._routing().get_function_by_signature(PROPELLER_INITIATE_SIGNATURE)
        tx = await initiate(
            Web3.to_checksum_address(params.asset.address),
            params.amount,
            params.target_chain_id,
            params.target_owner,
            params.gas_kickstart,
            params.max_fee,
            params.target_token_number,
            params.memo,
        ).build_transaction({"from": account.address, **normalize_overrides(params.overrides)})

        tx_hash = await self._send_transaction(tx)
        logger.info(f"Source chain kick-off transaction hash: {tx_hash}")

        receipt = await self._wait_for_receipt(tx_hash)
        sequence = parse_sequence_from_receipt(receipt, self.chain.wormhole_bridge)
        logger.info(f"Wormhole sequence: {sequence}")
        return TransferResult(transaction_id=tx_hash, sequence=sequence)

    async def _send_transaction(self, tx_params: dict) -> str:
        """Sign locally and broadcast. Returns the 0x-prefixed hash."""
        account = self._require_account()

        if "nonce" not in tx_params:
            tx_params["nonce"] = await self.web3.eth.get_transaction_count(
                account.address, "pending"
            )
        if "chainId" not in tx_params:
            tx_params["chainId"] = await self.web3.eth.chain_id

        signed_tx = account.sign_transaction(tx_params)
        try:
            tx_hash = await self.web3.eth.send_raw_transaction(signed_tx.raw_transaction)
        except Exception as e:
            raise ChainRequestError(f"{self.chain.display_name} submission rejected: {e}") from e
        return Web3.to_hex(tx_hash)

    async def _wait_for_receipt(self, tx_hash: str) -> Any:
        try:
            receipt = await self.web3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.confirmation_timeout,
                poll_latency=self.poll_interval,
            )
        except TimeExhausted as e:
            raise ChainRequestError(
                f"Transaction {tx_hash} not confirmed after {self.confirmation_timeout}s"
            ) from e

        if receipt["status"] == 0:
            raise ChainRequestError(f"Transaction {tx_hash} failed (reverted)")
        return receipt

    async def _before_watch(self, handle: SubscriptionHandle) -> None:
        # Events mined after this block belong to this subscription
        self._watch_start[handle.id] = await self.web3.eth.block_number

    async def _watch(self, handle: SubscriptionHandle) -> None:
        routing_address = Web3.to_checksum_address(self.chain.require_routing_contract())
        memo_topic = Web3.to_hex(pad_for_evm(handle.memo))
        from_block = self._watch_start.pop(handle.id)

        while handle.active:
            try:
                latest = await self.web3.eth.block_number
                if latest >= from_block:
                    logs = await self.web3.eth.get_logs({
                        "address": routing_address,
                        "fromBlock": from_block,
                        "toBlock": latest,
                        "topics": [MEMO_INTERACTION_TOPIC, memo_topic],
                    })
                    for log in logs:
                        topics = log["topics"]
                        if len(topics) > 1 and topic_matches_memo(topics[1], handle.memo):
                            logger.info(
                                f"Propeller tx detected on {self.chain.display_name}: "
                                f"memo={memo_hex(handle.memo)} "
                                f"tx={Web3.to_hex(log['transactionHash'])} "
                                f"block={log['blockNumber']}"
                            )
                            handle.fire(Web3.to_hex(log["transactionHash"]))
                            return
                    from_block = latest + 1
            except Exception as e:
                logger.warning(f"Log poll failed on {self.chain.display_name}: {e}")

            await asyncio.sleep(self.poll_interval)
