"""Propeller swap orchestrator.

One state machine drives every route:

    INIT -> VALIDATING_WALLETS -> [ADDING_LIQUIDITY] -> APPROVING_ALLOWANCE
         -> SUBMITTING_TRANSFER -> [AWAITING_SOURCE_EVENT] -> AWAITING_TARGET_EVENT
         -> COMPLETED

FAILED is reachable from every non-terminal state. The swap completes once a
TxRecord exists for the target chain. Subscriptions, the session guard and the
caller's balance cache are released or signaled on every exit path.
"""

import asyncio
import logging
from typing import Callable, Optional

from propeller.adapters.base import (
    ChainAdapter,
    SubscriptionRegistry,
    TransferParams,
)
from propeller.adapters.cache import ProviderCache
from propeller.chains import (
    CANONICAL_TOKEN,
    ChainConfig,
    get_chain,
    get_token_project,
)
from propeller.conversion import DEFAULT_ADD_MAX_FEE, LiquidityConversionStep
from propeller.errors import InvalidSwapRequest, TargetEventTimeout, WalletNotConnected
from propeller.memo import generate_memo
from propeller.models import (
    BalanceKey,
    BalanceKind,
    SwapExecution,
    SwapRequest,
    SwapState,
    TxRecord,
    to_atomic,
)
from propeller.swap.routes import RouteDescriptor, resolve_route
from propeller.utils.locks import DEFAULT_SESSION, SwapGuard

logger = logging.getLogger(__name__)


def wallet_family(chain: ChainConfig) -> str:
    return "EVM" if chain.is_evm else "Solana"


def balance_keys(source: ChainConfig, target: ChainConfig) -> list[BalanceKey]:
    """The four balances a swap touches."""
    return [
        BalanceKey("source", BalanceKind.GAS, source.name),
        BalanceKey("source", BalanceKind.TOKEN, source.name),
        BalanceKey("target", BalanceKind.GAS, target.name),
        BalanceKey("target", BalanceKind.TOKEN, target.name),
    ]


class SwapOrchestrator:
    """Runs propeller swaps over cached chain adapters."""

    def __init__(
        self,
        adapters: ProviderCache,
        chains: Optional[dict[str, ChainConfig]] = None,
        session_id: str = DEFAULT_SESSION,
        target_timeout: Optional[float] = None,
        conversion_factory: Optional[Callable[[ChainAdapter], LiquidityConversionStep]] = None,
        on_transaction_detected: Optional[Callable[[TxRecord], None]] = None,
        on_balances_invalidated: Optional[Callable[[list[BalanceKey]], None]] = None,
        add_max_fee: int = DEFAULT_ADD_MAX_FEE,
    ):
        """Initialize the orchestrator.

        Args:
            adapters: Adapter cache keyed by chain id
            chains: Chain catalog, built-in chains if None
            session_id: Session for the one-swap-at-a-time guard
            target_timeout: Seconds to wait for the target event, None = unbounded
            conversion_factory: Builds the conversion step for a Solana adapter
            on_transaction_detected: Called with each new TxRecord
            on_balances_invalidated: Called with the touched balance keys after
                every terminal state
            add_max_fee: Max fee for the pool add instruction
        """
        self.adapters = adapters
        self.chains = chains
        self.session_id = session_id
        self.target_timeout = target_timeout
        self.conversion_factory = conversion_factory or (
            lambda adapter: LiquidityConversionStep(adapter, max_fee=add_max_fee)
        )
        self.on_transaction_detected = on_transaction_detected
        self.on_balances_invalidated = on_balances_invalidated

    async def execute(self, request: SwapRequest) -> SwapExecution:
        """Run one swap to completion.

        Returns:
            The completed SwapExecution

        Raises:
            SwapInProgressError: If this session already runs a swap
            PropellerError: Any precondition, conversion, chain or timeout failure
        """
        async with SwapGuard(self.session_id, operation="propeller swap"):
            execution = SwapExecution(request=request, memo=generate_memo())
            registry = SubscriptionRegistry()
            source_chain: Optional[ChainConfig] = None
            target_chain: Optional[ChainConfig] = None

            try:
                source_chain = get_chain(request.source_chain, self.chains)
                target_chain = get_chain(request.target_chain, self.chains)
                await self._run(execution, source_chain, target_chain, registry)
            except BaseException as e:
                stage = execution.state.value
                execution.fail(e)
                logger.error(
                    f"Swap {execution.memo_hex} failed during {stage}: {execution.failure_reason}"
                )
                raise
            finally:
                await registry.release_all()
                if source_chain is not None and target_chain is not None:
                    self._invalidate_balances(source_chain, target_chain)

            return execution

    async def _run(
        self,
        execution: SwapExecution,
        source_chain: ChainConfig,
        target_chain: ChainConfig,
        registry: SubscriptionRegistry,
    ) -> None:
        request = execution.request

        # INIT: everything that needs no chain access
        route = resolve_route(source_chain, target_chain)
        source_project = get_token_project(request.source_token)
        target_project = get_token_project(request.target_token)
        if target_project.token_number is None:
            raise InvalidSwapRequest("Invalid target token")
        if source_project.id != CANONICAL_TOKEN and source_project.token_number is None:
            raise InvalidSwapRequest("Invalid source token")

        source_asset = source_chain.asset(source_project.id)
        target_asset = target_chain.asset(target_project.id)
        fee_decimals = target_chain.asset(CANONICAL_TOKEN).decimals

        execution.input_amount_atomic = to_atomic(
            request.input_amount, source_asset.decimals, "input amount"
        )
        if execution.input_amount_atomic == 0:
            raise InvalidSwapRequest("Input amount must be positive")
        max_fee_atomic = to_atomic(request.max_fee, fee_decimals, "max fee")

        logger.info(
            f"* {source_chain.display_name} {source_project.symbol} -> "
            f"{target_chain.display_name} {target_project.symbol} "
            f"via {route.name}, memo {execution.memo_hex}"
        )

        source = self.adapters.get_by_chain(source_chain)
        target = self.adapters.get_by_chain(target_chain)
        source.check_overrides(request.overrides)

        self._enter(execution, SwapState.VALIDATING_WALLETS)
        if not source.is_connected:
            raise WalletNotConnected(wallet_family(source_chain))
        if route.requires_target_wallet and not target.is_connected:
            raise WalletNotConnected(wallet_family(target_chain))

        await source.prepare()
        if route.requires_target_wallet:
            await target.prepare()

        transfer_asset = source_asset
        if route.needs_conversion and source_asset.token_id != CANONICAL_TOKEN:
            self._enter(execution, SwapState.ADDING_LIQUIDITY)
            conversion = self.conversion_factory(source)
            result = await conversion.run(source_asset, execution.input_amount_atomic, execution.memo)
            execution.conversion_transaction_id = result.transaction_id
            execution.converted_amount_atomic = result.output_amount
            transfer_asset = source_chain.asset(CANONICAL_TOKEN)

        amount = execution.transfer_amount_atomic

        self._enter(execution, SwapState.APPROVING_ALLOWANCE)
        if route.needs_allowance:
            await source.approve_if_needed(source.address, source.spender, transfer_asset, amount)

        self._enter(execution, SwapState.SUBMITTING_TRANSFER)
        target_done = await self._install_watchers(execution, route, source, target, registry)

        owner = target.encode_owner(
            target_asset, None if route.requires_target_wallet else source.address
        )
        params = TransferParams(
            asset=transfer_asset,
            amount=amount,
            target_chain_id=target_chain.wormhole_chain_id,
            target_owner=owner,
            gas_kickstart=request.gas_kickstart,
            max_fee=max_fee_atomic,
            target_token_number=target_project.token_number,
            memo=execution.memo,
            overrides=dict(request.overrides),
        )
        result = await source.submit_transfer(params)
        execution.sequence = result.sequence
        self._record(execution, TxRecord(source_chain.name, result.transaction_id))

        if route.watches_source_event:
            self._enter(execution, SwapState.AWAITING_SOURCE_EVENT)
        self._enter(execution, SwapState.AWAITING_TARGET_EVENT)
        await self._await_target(execution, target_done)

        self._enter(execution, SwapState.COMPLETED)
        logger.info(
            f"Swap {execution.memo_hex} completed: "
            + ", ".join(f"{r.chain}:{r.transaction_id}" for r in execution.records)
        )

    async def _install_watchers(
        self,
        execution: SwapExecution,
        route: RouteDescriptor,
        source: ChainAdapter,
        target: ChainAdapter,
        registry: SubscriptionRegistry,
    ) -> "asyncio.Future[str]":
        """Install listeners before the transfer is sent.

        The returned future resolves with the target transaction id, or raises
        the error of a watcher that stopped before a match.
        """
        loop = asyncio.get_running_loop()
        target_done: asyncio.Future[str] = loop.create_future()

        def on_target(transaction_id: str) -> None:
            self._record(execution, TxRecord(target.chain.name, transaction_id))
            if not target_done.done():
                target_done.set_result(transaction_id)

        def on_source(transaction_id: str) -> None:
            self._record(execution, TxRecord(source.chain.name, transaction_id))

        # A dead watcher on either chain is fatal for the attempt
        def on_watch_error(error: BaseException) -> None:
            if not target_done.done():
                target_done.set_exception(error)

        if route.watches_target_event:
            handle = await target.watch_for_memo(execution.memo, on_target, on_watch_error)
            registry.add(target, handle)
        if route.watches_source_event:
            handle = await source.watch_for_memo(execution.memo, on_source, on_watch_error)
            registry.add(source, handle)
        return target_done

    async def _await_target(self, execution: SwapExecution, target_done: "asyncio.Future[str]") -> None:
        try:
            await asyncio.wait_for(target_done, timeout=self.target_timeout)
        except asyncio.TimeoutError:
            raise TargetEventTimeout(execution.memo_hex, self.target_timeout)

    def _record(self, execution: SwapExecution, record: TxRecord) -> None:
        if execution.add_record(record) and self.on_transaction_detected:
            self.on_transaction_detected(record)

    @staticmethod
    def _enter(execution: SwapExecution, state: SwapState) -> None:
        execution.transition(state)
        logger.info(f"Swap {execution.memo_hex}: {state.value}")

    def _invalidate_balances(self, source: ChainConfig, target: ChainConfig) -> None:
        keys = balance_keys(source, target)
        logger.debug(f"Invalidating balances: {', '.join(str(k) for k in keys)}")
        if self.on_balances_invalidated:
            self.on_balances_invalidated(keys)
