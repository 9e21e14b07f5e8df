r"""nstatus -- Nostr status client core.

Unlocks a passphrase-protected signing key, resolves NIP-65 relay lists for
the user and everyone they follow, fetches and publishes NIP-38 statuses,
and keeps everything in a local last-write-wins SQLite cache.

Architecture follows a **diamond DAG** dependency structure where imports
flow strictly downward:

```text
              services         Session, resolver, timeline
             /   |   \
          core  nips  utils    Vault, cache, protocol and helpers
             \   |   /
              models           Pure frozen dataclasses (zero I/O)
```

Attributes:
    models: Pure frozen dataclasses. Zero I/O.
    core: Key vault, cache store, connection pool, base service, exceptions,
        logging, metrics.
    nips: Event builders and parsers for kinds 0, 3, 10002 and 30315.
    utils: Key record files and per-relay client transport.
    services: Session, relay resolver, and timeline fetcher.

Note:
    For lightweight usage, import directly from subpackages::

        from nstatus.models import Relay
        from nstatus.core import CacheStore

    Top-level imports (``from nstatus import Session``) use lazy loading
    and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("nstatus")

__all__ = [
    "BaseService",
    "CacheConfig",
    "CacheStore",
    "EncryptedKeyRecord",
    "FollowList",
    "KeyVault",
    "Logger",
    "NstatusError",
    "Pool",
    "PoolConfig",
    "ProfileMetadata",
    "RelayEdit",
    "Relay",
    "RelayList",
    "RelayResolver",
    "Session",
    "SessionConfig",
    "StatusEvent",
    "Timeline",
    "TimelineFetcher",
    "VaultConfig",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "BaseService": ("nstatus.core", "BaseService"),
    "CacheConfig": ("nstatus.core", "CacheConfig"),
    "CacheStore": ("nstatus.core", "CacheStore"),
    "KeyVault": ("nstatus.core", "KeyVault"),
    "Logger": ("nstatus.core", "Logger"),
    "NstatusError": ("nstatus.core", "NstatusError"),
    "Pool": ("nstatus.core", "Pool"),
    "PoolConfig": ("nstatus.core", "PoolConfig"),
    "VaultConfig": ("nstatus.core", "VaultConfig"),
    "EncryptedKeyRecord": ("nstatus.models", "EncryptedKeyRecord"),
    "FollowList": ("nstatus.models", "FollowList"),
    "ProfileMetadata": ("nstatus.models", "ProfileMetadata"),
    "Relay": ("nstatus.models", "Relay"),
    "RelayList": ("nstatus.models", "RelayList"),
    "StatusEvent": ("nstatus.models", "StatusEvent"),
    "Timeline": ("nstatus.models", "Timeline"),
    "RelayEdit": ("nstatus.services", "RelayEdit"),
    "RelayResolver": ("nstatus.services", "RelayResolver"),
    "Session": ("nstatus.services", "Session"),
    "SessionConfig": ("nstatus.services", "SessionConfig"),
    "TimelineFetcher": ("nstatus.services", "TimelineFetcher"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value  # Cache for subsequent access
        return value
    raise AttributeError(f"module 'nstatus' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
