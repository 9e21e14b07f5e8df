"""Resolver configuration models.

See Also:
    [RelayResolver][nstatus.services.resolver.RelayResolver]: The component
        that consumes these configurations.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from nstatus.services.common.configs import FetchConfig, RelayDefaultsConfig


class ResolverConfig(BaseModel):
    """Configuration for relay list resolution.

    Attributes:
        relays: Discovery and default relay sets.
        fetch: Per-relay timeout and concurrency cap.
        use_cache_ttl: Skip the network for identities whose cached relay
            list is younger than ``cache_ttl``.
        cache_ttl: Age in seconds below which a cached list counts as fresh.
        batch_size: Maximum authors per multi-author relay list query.

    Examples:
        ```yaml
        resolver:
          relays:
            defaults: [wss://relay.damus.io]
          fetch:
            timeout: 8.0
          batch_size: 250
        ```
    """

    relays: RelayDefaultsConfig = Field(default_factory=RelayDefaultsConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    use_cache_ttl: bool = Field(default=True, description="Serve fresh cached lists offline")
    cache_ttl: float = Field(default=86_400.0, ge=0.0, description="Freshness window in seconds")
    batch_size: int = Field(default=250, ge=1, le=1000, description="Authors per query")
