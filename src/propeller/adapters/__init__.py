"""Chain adapters."""

from propeller.adapters.base import (
    ChainAdapter,
    SubscriptionHandle,
    SubscriptionRegistry,
    TransferParams,
    TransferResult,
)

__all__ = [
    "ChainAdapter",
    "SubscriptionHandle",
    "SubscriptionRegistry",
    "TransferParams",
    "TransferResult",
]
