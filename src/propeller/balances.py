"""Balance snapshots around a swap."""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from propeller.adapters.base import ChainAdapter
from propeller.chains import ChainAsset
from propeller.models import from_atomic

logger = logging.getLogger(__name__)


def target_owner(source: ChainAdapter, target: ChainAdapter) -> Optional[str]:
    """Address whose target balances are read, None when there is none.

    Same-family routes deliver to the source wallet when no target wallet is
    connected. Addresses never cross chain families.
    """
    if target.address:
        return target.address
    if source.chain.is_evm == target.chain.is_evm:
        return source.address
    return None


@dataclass(frozen=True)
class BalanceSnapshot:
    """Source and target balances of the swapping wallet(s).

    Target balances are None when no wallet exists for the target family.
    """

    source_gas: Decimal
    source_token: Decimal
    target_gas: Optional[Decimal] = None
    target_token: Optional[Decimal] = None

    @classmethod
    async def capture(
        cls,
        source: ChainAdapter,
        source_asset: ChainAsset,
        target: ChainAdapter,
        target_asset: ChainAsset,
    ) -> "BalanceSnapshot":
        owner = target_owner(source, target)
        reads = [source.get_gas_balance(), source.get_token_balance(source_asset)]
        if owner is not None:
            reads += [target.get_gas_balance(owner), target.get_token_balance(target_asset, owner)]

        results = await asyncio.gather(*reads)
        target_gas = target_token = None
        if owner is None:
            logger.info(f"No {target.chain.display_name} wallet, skipping target balances")
        else:
            target_gas = from_atomic(results[2], target.chain.gas_decimals)
            target_token = from_atomic(results[3], target_asset.decimals)

        return cls(
            source_gas=from_atomic(results[0], source.chain.gas_decimals),
            source_token=from_atomic(results[1], source_asset.decimals),
            target_gas=target_gas,
            target_token=target_token,
        )

    def log(self, label: str) -> None:
        logger.info(
            f"{label}: source_gas={self.source_gas} source_token={self.source_token} "
            f"target_gas={self.target_gas if self.target_gas is not None else 'n/a'} "
            f"target_token={self.target_token if self.target_token is not None else 'n/a'}"
        )
