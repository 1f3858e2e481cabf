"""Swap routes.

Every route runs through the same state machine. A descriptor says which
optional stages apply.
"""

from dataclasses import dataclass

from propeller.chains import ChainConfig
from propeller.errors import InvalidSwapRequest


@dataclass(frozen=True)
class RouteDescriptor:
    """Capabilities of a route.

    Attributes:
        name: Route label for logs
        needs_conversion: Non-canonical source assets go through a pool add
        watches_source_event: Source chain emits a memo event worth watching
        watches_target_event: Target chain emits the completion event
        needs_allowance: Source chain requires a token allowance for the router
        requires_target_wallet: Target wallet must be connected to build the owner
    """

    name: str
    needs_conversion: bool
    watches_source_event: bool
    watches_target_event: bool
    needs_allowance: bool
    requires_target_wallet: bool


EVM_TO_EVM = RouteDescriptor(
    name="evm-to-evm",
    needs_conversion=False,
    watches_source_event=True,
    watches_target_event=True,
    needs_allowance=True,
    requires_target_wallet=False,
)

EVM_TO_SOLANA = RouteDescriptor(
    name="evm-to-solana",
    needs_conversion=False,
    watches_source_event=True,
    watches_target_event=True,
    needs_allowance=True,
    requires_target_wallet=True,
)

SOLANA_TO_EVM = RouteDescriptor(
    name="solana-to-evm",
    needs_conversion=True,
    watches_source_event=False,
    watches_target_event=True,
    needs_allowance=False,
    requires_target_wallet=True,
)


def resolve_route(source: ChainConfig, target: ChainConfig) -> RouteDescriptor:
    """Pick the route for a chain pair.

    Raises:
        InvalidSwapRequest: For same-chain swaps or unsupported pairs
    """
    if source.name == target.name:
        raise InvalidSwapRequest("Invalid target chain")

    if source.is_evm and target.is_evm:
        return EVM_TO_EVM
    if source.is_evm:
        return EVM_TO_SOLANA
    if target.is_evm:
        return SOLANA_TO_EVM

    raise InvalidSwapRequest(
        f"Unsupported route: {source.display_name} -> {target.display_name}"
    )
