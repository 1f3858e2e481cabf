"""Per-chain adapter cache.

Adapters hold RPC clients; one is built per chain on first use and reused
for every later swap.
"""

import logging
from typing import Callable, Optional

from propeller.adapters.base import ChainAdapter
from propeller.chains import ChainConfig, get_chain_by_id

logger = logging.getLogger(__name__)


class ProviderCache:
    """Adapters keyed by Wormhole chain id, populated on miss.

    Lookups and inserts run on the event loop thread only, so a plain dict
    is enough; the factory must not await.
    """

    def __init__(
        self,
        factory: Callable[[ChainConfig], ChainAdapter],
        chains: Optional[dict[str, ChainConfig]] = None,
    ):
        self._factory = factory
        self._chains = chains
        self._adapters: dict[int, ChainAdapter] = {}

    def get(self, chain_id: int) -> ChainAdapter:
        adapter = self._adapters.get(chain_id)
        if adapter is None:
            chain = get_chain_by_id(chain_id, self._chains)
            adapter = self._factory(chain)
            self._adapters[chain_id] = adapter
            logger.debug(f"Created adapter for {chain.display_name}")
        return adapter

    def get_by_chain(self, chain: ChainConfig) -> ChainAdapter:
        return self.get(chain.wormhole_chain_id)
