"""Shared building blocks for nstatus services."""

from .configs import (
    DEFAULT_DISCOVERY_RELAYS,
    DEFAULT_RELAYS,
    FetchConfig,
    RelayDefaultsConfig,
)
from .utils import chunked, observe_relay_requests


__all__ = [
    "DEFAULT_DISCOVERY_RELAYS",
    "DEFAULT_RELAYS",
    "FetchConfig",
    "RelayDefaultsConfig",
    "chunked",
    "observe_relay_requests",
]
