"""Command line runner for propeller swaps.

Usage:
    propeller swap --source-chain bsc --source-token usdt \\
        --target-chain ethereum --target-token usdc --amount 1.23 --max-fee 5.1
    propeller get-vaa bsc 1234

Environment variables (or .env):
    EVM_MNEMONIC, EVM_HD_PATH: EVM wallet
    SOLANA_MNEMONIC, SOLANA_HD_PATH: Solana wallet
    AVALANCHE_RPC_URL, BSC_RPC_URL, ETHEREUM_RPC_URL, POLYGON_RPC_URL, SOLANA_RPC_URL
    WORMHOLE_RPC_URL: Guardian REST endpoint for get-vaa
    CHAIN_CATALOG_PATH: JSON file with contract and token addresses
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from propeller.adapters.cache import ProviderCache
from propeller.adapters.factory import make_adapter_factory
from propeller.balances import BalanceSnapshot
from propeller.chains import TOKEN_PROJECTS, get_chain, load_chain_catalog
from propeller.config import Settings, get_settings
from propeller.errors import ConfigurationError, PropellerError
from propeller.models import SwapRequest, TxRecord
from propeller.swap.orchestrator import SwapOrchestrator
from propeller.vaa import fetch_signed_vaa

logger = logging.getLogger(__name__)

# get-vaa accepts "bnb" as in the bridge explorer
CHAIN_ALIASES = {"bnb": "bsc"}


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="propeller", description="Propeller cross-chain swaps")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    swap = subparsers.add_parser("swap", help="Run one propeller swap")
    swap.add_argument("--source-chain", required=True, help="Source chain (e.g. bsc, solana)")
    swap.add_argument(
        "--source-token", required=True, choices=sorted(TOKEN_PROJECTS), help="Source token"
    )
    swap.add_argument("--target-chain", required=True, help="Target chain")
    swap.add_argument(
        "--target-token", required=True, choices=sorted(TOKEN_PROJECTS), help="Target token"
    )
    swap.add_argument("--amount", required=True, help="Input amount in human units")
    swap.add_argument("--max-fee", required=True, help="Max propeller fee in swimUSD")
    swap.add_argument("--gas-kickstart", action="store_true", help="Request gas on target")
    swap.add_argument("--gas-limit", type=int, default=None, help="EVM gas limit override")
    swap.add_argument("--gas-price", type=int, default=None, help="EVM gas price override (wei)")
    swap.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for the target event (default: from settings)",
    )

    get_vaa = subparsers.add_parser("get-vaa", help="Fetch a signed VAA")
    get_vaa.add_argument("chain", help="avalanche | bnb | ethereum | polygon")
    get_vaa.add_argument("sequence", type=int, help="Wormhole sequence")
    get_vaa.add_argument("--emitter", default=None, help="Emitter address (hex)")

    return parser


def request_from_args(args: argparse.Namespace) -> SwapRequest:
    overrides = {}
    if args.gas_limit is not None:
        overrides["gas_limit"] = args.gas_limit
    if args.gas_price is not None:
        overrides["gas_price"] = args.gas_price

    return SwapRequest(
        source_chain=args.source_chain,
        source_token=args.source_token,
        target_chain=args.target_chain,
        target_token=args.target_token,
        input_amount=args.amount,
        max_fee=args.max_fee,
        gas_kickstart=args.gas_kickstart,
        overrides=overrides,
    )


async def run_swap(args: argparse.Namespace, settings: Settings) -> int:
    chains = load_chain_catalog(settings.chain_catalog_path)
    adapters = ProviderCache(make_adapter_factory(settings), chains)
    request = request_from_args(args)

    timeout = args.timeout if args.timeout is not None else settings.target_wait_seconds

    def on_transaction_detected(record: TxRecord) -> None:
        logger.info(f"Transaction detected on {record.chain}: {record.transaction_id}")

    orchestrator = SwapOrchestrator(
        adapters,
        chains=chains,
        target_timeout=timeout,
        on_transaction_detected=on_transaction_detected,
        add_max_fee=settings.propeller_add_max_fee,
    )

    source_chain = get_chain(request.source_chain, chains)
    target_chain = get_chain(request.target_chain, chains)
    source = adapters.get_by_chain(source_chain)
    target = adapters.get_by_chain(target_chain)
    source_asset = source_chain.asset(request.source_token)
    target_asset = target_chain.asset(request.target_token)

    snapshot: Optional[BalanceSnapshot] = None
    if source.is_connected:
        snapshot = await BalanceSnapshot.capture(source, source_asset, target, target_asset)
        snapshot.log("Initial balances")

    execution = await orchestrator.execute(request)

    if snapshot is not None:
        final = await BalanceSnapshot.capture(source, source_asset, target, target_asset)
        final.log("Final balances")

    logger.info(f"Swap {execution.memo_hex} {execution.state.value}, sequence {execution.sequence}")
    return 0


async def run_get_vaa(args: argparse.Namespace, settings: Settings) -> int:
    if not settings.wormhole_rpc_url:
        raise ConfigurationError("Please set WORMHOLE_RPC_URL")

    chains = load_chain_catalog(settings.chain_catalog_path)
    chain = get_chain(CHAIN_ALIASES.get(args.chain, args.chain), chains)
    vaa = await fetch_signed_vaa(settings.wormhole_rpc_url, chain, args.sequence, emitter=args.emitter)
    print(f"VAA {vaa.hex()}")
    return 0


async def async_main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(args.debug or settings.debug)

    try:
        if args.command == "swap":
            return await run_swap(args, settings)
        return await run_get_vaa(args, settings)
    except PropellerError as e:
        logger.error(e.message)
        return 1


def main() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
