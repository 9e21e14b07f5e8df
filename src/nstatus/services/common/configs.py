"""Shared configuration models for nstatus services.

Relay URLs in configuration are validated with the
[Relay][nstatus.models.relay.Relay] model at load time, so a typo in a YAML
file fails on startup instead of on the first network request.

Examples:
    ```yaml
    relays:
      discovery:
        - wss://purplepag.es
      defaults:
        - wss://relay.damus.io
    fetch:
      timeout: 8.0
      max_parallel: 16
    ```
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from nstatus.models.relay import Relay


DEFAULT_DISCOVERY_RELAYS = (
    "wss://purplepag.es",
    "wss://directory.yabu.me",
)

DEFAULT_RELAYS = (
    "wss://relay.damus.io",
    "wss://relay.nostr.wirednet.jp",
    "wss://yabu.me",
)


# =============================================================================
# Relay Sets
# =============================================================================


class RelayDefaultsConfig(BaseModel):
    """Bootstrap relay sets.

    ``discovery`` relays index kind 10002 lists for the whole network;
    ``defaults`` are used whenever an identity has no resolvable list.
    """

    discovery: list[str] = Field(
        default_factory=lambda: list(DEFAULT_DISCOVERY_RELAYS),
        description="Index relays queried for relay lists",
    )
    defaults: list[str] = Field(
        default_factory=lambda: list(DEFAULT_RELAYS),
        min_length=1,
        description="Fallback relays for identities without a relay list",
    )

    @field_validator("discovery", "defaults")
    @classmethod
    def _validate_urls(cls, urls: list[str]) -> list[str]:
        normalized: list[str] = []
        for url in urls:
            relay = Relay(url)
            if relay.url not in normalized:
                normalized.append(relay.url)
        return normalized

    @property
    def discovery_relays(self) -> tuple[Relay, ...]:
        return tuple(Relay(url) for url in self.discovery)

    @property
    def default_relays(self) -> tuple[Relay, ...]:
        return tuple(Relay(url) for url in self.defaults)


# =============================================================================
# Network Behaviour
# =============================================================================


class FetchConfig(BaseModel):
    """Per-relay timeout and fan-out limit for network requests."""

    timeout: float = Field(default=10.0, ge=0.1, le=120.0, description="Per-relay timeout")
    max_parallel: int = Field(default=8, ge=1, le=200, description="Concurrent relay requests")
