"""Resolver service package.

Re-exports all public symbols from the resolver service and configuration
modules.
"""

from .configs import ResolverConfig
from .service import RelayResolver, ResolutionPhase, ResolutionState, plan_relays


__all__ = [
    "RelayResolver",
    "ResolutionPhase",
    "ResolutionState",
    "ResolverConfig",
    "plan_relays",
]
