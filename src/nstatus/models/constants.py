"""Shared constants for the models layer.

Defines enumerations and other constants that are used across multiple
model modules. Placing them here avoids circular dependencies between
the models, nips, and services layers.

See Also:
    [nstatus.models.relay][]: Uses [NetworkType][nstatus.models.constants.NetworkType]
        to classify relay URLs during construction.
    [nstatus.models.cache_entry][]: Uses [CacheKind][nstatus.models.constants.CacheKind]
        to namespace persisted entries.
    [nstatus.nips.event_builders][]: Uses [EventKind][nstatus.models.constants.EventKind]
        when building events to publish.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum


class NetworkType(StrEnum):
    """Network type enum for relay classification.

    Each relay URL is classified into exactly one network type during
    [Relay][nstatus.models.relay.Relay] construction. Clearnet relays
    require ``wss://`` while overlay networks use ``ws://``.

    Warning:
        ``LOCAL`` and ``UNKNOWN`` cause [Relay][nstatus.models.relay.Relay]
        construction to raise ``ValueError``. They exist for internal
        detection logic only.
    """

    CLEARNET = "clearnet"
    TOR = "tor"
    I2P = "i2p"
    LOKI = "loki"
    LOCAL = "local"
    UNKNOWN = "unknown"


class ServiceName(StrEnum):
    """Canonical component identifiers used in logging and metrics labels."""

    SESSION = "session"
    RESOLVER = "resolver"
    TIMELINE = "timeline"


class EventKind(IntEnum):
    """Nostr event kinds handled by the client.

    Attributes:
        METADATA: Kind 0 -- user profile metadata (NIP-01).
        CONTACTS: Kind 3 -- follow list (NIP-02).
        RELAY_LIST: Kind 10002 -- relay list metadata (NIP-65).
        USER_STATUS: Kind 30315 -- user status, addressable by ``d`` tag (NIP-38).
    """

    METADATA = 0
    CONTACTS = 3
    RELAY_LIST = 10_002
    USER_STATUS = 30_315


class StatusKind(StrEnum):
    """Well-known ``d`` tag values for NIP-38 user statuses.

    Other values are accepted on the wire; these are the ones the client
    publishes and renders specially.
    """

    GENERAL = "general"
    MUSIC = "music"
    PODCAST = "podcast"


class CacheKind(StrEnum):
    """Namespaces of the local cache.

    Each value is the ``kind`` column of the ``cache_entry`` table in
    [CacheStore][nstatus.core.cache_store.CacheStore].
    """

    PROFILE = "profile"
    RELAY_LIST = "relay_list"
    FOLLOW_LIST = "follow_list"
    STATUS = "status"


# Schema version written on every cache entry; bump on incompatible changes.
CACHE_SCHEMA_VERSION = 1

# Maximum status content length accepted for publishing.
MAX_STATUS_LENGTH = 140

EVENT_KIND_MAX = 65_535
