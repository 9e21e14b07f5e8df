"""Pure frozen dataclasses with zero I/O for identities, relays, statuses, and cache rows.

The models layer is the foundation of the diamond DAG. It depends only on
the standard library and ``rfc3986``. Every model uses
``@dataclass(frozen=True, slots=True)`` and validates in ``__post_init__``,
so invalid instances never escape the constructor. Validation failures raise
``ValueError`` or ``TypeError``; translation into the typed
[NstatusError][nstatus.core.exceptions.NstatusError] hierarchy happens in
the layers above.

Attributes:
    Relay: Validated relay URL with network detection. Rejects local IPs.
    RelayDescriptor: Relay plus NIP-65 read/write permissions.
    RelayList: Per-identity relay list, last-write-wins by ``created_at``.
    FollowList: NIP-02 follow set, last-write-wins by ``created_at``.
    ProfileMetadata: NIP-01 profile fields plus free-form extras.
    StatusEvent: NIP-38 status, replaceable per ``(author, d-tag)``.
    Timeline: Monotonic merge of status events, newest first.
    CacheEntry: Schema-versioned row owned by the cache store.
    EncryptedKeyRecord: Versioned at-rest format of the signing key.

See Also:
    [nstatus.models.constants][]: Shared constants and enumerations.
    [nstatus.nips][]: Conversion between nostr-sdk events and these models.
"""

from .cache_entry import CacheEntry, CacheEntryDbParams
from .constants import (
    CACHE_SCHEMA_VERSION,
    EVENT_KIND_MAX,
    MAX_STATUS_LENGTH,
    CacheKind,
    EventKind,
    NetworkType,
    ServiceName,
    StatusKind,
)
from .follow_list import FollowList
from .key_record import EncryptedKeyRecord, RecordVersionError
from .profile import ProfileMetadata
from .relay import Relay, RelayDescriptor, RelayList
from .status import StatusEvent
from .timeline import Timeline


__all__ = [
    "CACHE_SCHEMA_VERSION",
    "EVENT_KIND_MAX",
    "MAX_STATUS_LENGTH",
    "CacheEntry",
    "CacheEntryDbParams",
    "CacheKind",
    "EncryptedKeyRecord",
    "EventKind",
    "FollowList",
    "NetworkType",
    "ProfileMetadata",
    "RecordVersionError",
    "Relay",
    "RelayDescriptor",
    "RelayList",
    "ServiceName",
    "StatusEvent",
    "StatusKind",
    "Timeline",
]
