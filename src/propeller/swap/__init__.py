"""Swap orchestration."""

from propeller.swap.orchestrator import SwapOrchestrator
from propeller.swap.routes import RouteDescriptor, resolve_route

__all__ = ["RouteDescriptor", "SwapOrchestrator", "resolve_route"]
