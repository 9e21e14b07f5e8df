"""Session configuration models.

[SessionConfig][nstatus.services.session.SessionConfig] aggregates the
configuration of every component the session drives, so a single YAML file
describes a whole client.

Examples:
    ```yaml
    interval: 300.0
    key:
      path: ~/.config/nstatus/key.nsvault
      legacy_config: ~/.config/nostr-status/config.json
    vault:
      log_n: 16
    resolver:
      relays:
        defaults: [wss://relay.damus.io, wss://yabu.me]
    timeline:
      limit: 500
    metrics:
      enabled: false
    ```

See Also:
    [Session][nstatus.services.session.Session]: The service that consumes
        these configurations.
"""

from __future__ import annotations

from pydantic import Field

from nstatus.core.base_service import BaseServiceConfig
from nstatus.core.vault import VaultConfig
from nstatus.services.resolver.configs import ResolverConfig
from nstatus.services.timeline.configs import TimelineConfig
from nstatus.utils.keys import KeyRecordConfig


class SessionConfig(BaseServiceConfig):
    """Configuration for the client session.

    Attributes:
        key: Where the encrypted signing key record lives.
        vault: Key derivation cost for newly written records.
        resolver: Relay list resolution settings.
        timeline: Status fetching settings.
        fetch_profiles: Fetch profiles of followed identities on refresh.
        migrate_legacy_cache: Import the previous client's cache on unlock
            (the store's ``legacy_path`` must be set).
    """

    key: KeyRecordConfig = Field(default_factory=KeyRecordConfig)
    vault: VaultConfig = Field(default_factory=VaultConfig)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    timeline: TimelineConfig = Field(default_factory=TimelineConfig)
    fetch_profiles: bool = Field(default=True, description="Fetch profiles on refresh")
    migrate_legacy_cache: bool = Field(default=True, description="Import legacy cache on unlock")
