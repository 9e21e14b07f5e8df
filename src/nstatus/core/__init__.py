"""Core layer: key vault, cache store, base service and shared infrastructure.

Sits in the middle of the diamond DAG. It depends only on
``nstatus.models`` and ``nostr_sdk`` (for key parsing), and
``nstatus.services`` depends on it.

Attributes:
    KeyVault: Scrypt + ChaCha20-Poly1305 encryption of the signing key.
        See [KeyVault][nstatus.core.vault.KeyVault].
    Pool: aiosqlite connection manager with lock-contention retry.
        See [Pool][nstatus.core.pool.Pool].
    CacheStore: Keyed, versioned, last-write-wins store for client state.
        Services use [CacheStore][nstatus.core.cache_store.CacheStore],
        never [Pool][nstatus.core.pool.Pool] directly.
    BaseService: Generic base class with ``run()`` / ``run_forever()``
        lifecycle, factory methods and Prometheus metrics.
    Logger: Structured logger with key=value and JSON output modes.
    MetricsServer: Optional Prometheus ``/metrics`` endpoint.

Examples:
    ```python
    from nstatus.core import CacheStore, KeyVault

    store = CacheStore.from_yaml("cache.yaml")
    async with store:
        relay_list = await store.get_relay_list(pubkey)
    ```
"""

from .base_service import BaseService, BaseServiceConfig, ConfigT
from .cache_store import CacheConfig, CacheStore
from .exceptions import (
    CacheError,
    ConfigurationError,
    CorruptCacheEntry,
    CorruptRecord,
    IncorrectPassphrase,
    InvalidKeyFormat,
    InvalidPassphrase,
    MigrationEntryFailed,
    NoConnectableRelays,
    NstatusError,
    PartialRelayFailure,
    PublishFailed,
    RelayError,
    SessionError,
    SessionLocked,
    TimelineFetchFailed,
    UnsupportedRecordVersion,
    UnsupportedSchema,
    VaultError,
)
from .legacy import MigrationReport, migrate_from_legacy
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import (
    CLIENT_INFO,
    COMPONENT_COUNTER,
    COMPONENT_GAUGE,
    CYCLE_DURATION_SECONDS,
    RELAY_REQUEST_SECONDS,
    MetricsConfig,
    MetricsServer,
)
from .pool import Pool, PoolConfig, PoolRetryConfig
from .vault import KeyVault, VaultConfig, zeroize
from .yaml import load_yaml


__all__ = [
    "CLIENT_INFO",
    "COMPONENT_COUNTER",
    "COMPONENT_GAUGE",
    "CYCLE_DURATION_SECONDS",
    "RELAY_REQUEST_SECONDS",
    "BaseService",
    "BaseServiceConfig",
    "CacheConfig",
    "CacheError",
    "CacheStore",
    "ConfigT",
    "ConfigurationError",
    "CorruptCacheEntry",
    "CorruptRecord",
    "IncorrectPassphrase",
    "InvalidKeyFormat",
    "InvalidPassphrase",
    "KeyVault",
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "MigrationEntryFailed",
    "MigrationReport",
    "NoConnectableRelays",
    "NstatusError",
    "PartialRelayFailure",
    "Pool",
    "PoolConfig",
    "PoolRetryConfig",
    "PublishFailed",
    "RelayError",
    "SessionError",
    "SessionLocked",
    "StructuredFormatter",
    "TimelineFetchFailed",
    "UnsupportedRecordVersion",
    "UnsupportedSchema",
    "VaultConfig",
    "VaultError",
    "format_kv_pairs",
    "load_yaml",
    "migrate_from_legacy",
    "zeroize",
]
