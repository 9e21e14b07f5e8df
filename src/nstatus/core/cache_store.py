"""
Durable, keyed, schema-versioned local cache.

[CacheStore][nstatus.core.cache_store.CacheStore] is the only owner of
persisted client state: profiles, relay lists, follow lists and statuses.
Entries live in one SQLite table addressed by ``(kind, key)``; the rest of
the engine only ever holds transient copies.

Writes are serialized per ``(kind, key)`` with an ``asyncio.Lock`` taken
from a weak registry; there is no store-wide lock. Each write is a single
SQL statement, so a cancelled caller never leaves a half-written entry.

Last-write-wins is enforced twice: in Python under the key lock, and in the
``ON CONFLICT ... WHERE`` clause of the upsert, so a second client process
sharing the database cannot regress an entry either.

Examples:
    ```python
    store = CacheStore.from_dict({"pool": {"path": "/tmp/cache.sqlite3"}})

    async with store:
        await store.put_relay_list(relay_list)
        cached = await store.get_relay_list(pubkey)
    ```

See Also:
    [Pool][nstatus.core.pool.Pool]: Connection manager wrapped by this store.
    [migrate_from_legacy()][nstatus.core.legacy.migrate_from_legacy]: One-shot
        import of the previous file-based cache.
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import Iterable
from pathlib import Path
from time import time
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from nstatus.models import (
    CACHE_SCHEMA_VERSION,
    CacheEntry,
    CacheEntryDbParams,
    CacheKind,
    FollowList,
    ProfileMetadata,
    RelayList,
    StatusEvent,
)

from .exceptions import CorruptCacheEntry, UnsupportedSchema
from .logger import Logger
from .pool import Pool, PoolConfig
from .yaml import load_yaml


if TYPE_CHECKING:
    from collections.abc import Mapping

    from .legacy import MigrationReport


SCHEMA_VERSION_META = "schema_version"
MIGRATION_MARKER_META = "migration_marker"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entry (
    kind            TEXT    NOT NULL,
    key             TEXT    NOT NULL,
    schema_version  INTEGER NOT NULL,
    updated_at      INTEGER NOT NULL,
    tie_break       TEXT    NOT NULL DEFAULT '',
    refreshed_at    INTEGER NOT NULL,
    value           TEXT    NOT NULL,
    PRIMARY KEY (kind, key)
) WITHOUT ROWID;

CREATE TABLE IF NOT EXISTS cache_meta (
    name   TEXT PRIMARY KEY,
    value  TEXT NOT NULL
);
"""

_COLUMNS = "kind, key, schema_version, updated_at, tie_break, refreshed_at, value"

_UPSERT = f"""
INSERT INTO cache_entry ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (kind, key) DO UPDATE SET
    schema_version = excluded.schema_version,
    updated_at     = excluded.updated_at,
    tie_break      = excluded.tie_break,
    refreshed_at   = excluded.refreshed_at,
    value          = excluded.value
"""  # noqa: S608

_UPSERT_IF_NEWER = (
    _UPSERT
    + """
WHERE (excluded.updated_at, excluded.tie_break) > (cache_entry.updated_at, cache_entry.tie_break)
  AND cache_entry.schema_version <= excluded.schema_version
"""
)

_TOUCH = """
UPDATE cache_entry SET refreshed_at = MAX(refreshed_at, ?)
WHERE kind = ? AND key = ? AND updated_at = ? AND tie_break = ? AND value = ?
"""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class CacheConfig(BaseModel):
    """Cache behaviour settings.

    ``max_age`` controls when an entry is considered stale and worth
    refreshing from relays; stale entries are still served.
    """

    max_age: float = Field(
        default=86_400.0, ge=0.0, description="Seconds before an entry is considered stale"
    )
    legacy_path: str | None = Field(
        default=None, description="Directory of the previous file-based cache, if any"
    )


# ---------------------------------------------------------------------------
# CacheStore
# ---------------------------------------------------------------------------


class CacheStore:
    """Keyed, versioned store for client state backed by SQLite.

    Generic operations ([get()][nstatus.core.cache_store.CacheStore.get],
    [put()][nstatus.core.cache_store.CacheStore.put],
    [put_if_newer()][nstatus.core.cache_store.CacheStore.put_if_newer],
    [invalidate()][nstatus.core.cache_store.CacheStore.invalidate]) work on
    raw [CacheEntry][nstatus.models.cache_entry.CacheEntry] values; the typed
    helpers convert to and from the domain models.
    """

    def __init__(self, pool: Pool | None = None, config: CacheConfig | None = None) -> None:
        self._pool = pool or Pool()
        self._config = config or CacheConfig()
        self._logger = Logger("cache_store")
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @classmethod
    def from_yaml(cls, config_path: str) -> CacheStore:
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> CacheStore:
        """Build from a dict with an optional ``pool`` key and cache settings."""
        pool = Pool(PoolConfig(**config_dict["pool"])) if "pool" in config_dict else None
        rest = {k: v for k, v in config_dict.items() if k != "pool"}
        return cls(pool=pool, config=CacheConfig(**rest) if rest else None)

    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def pool(self) -> Pool:
        return self._pool

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the database, create tables, and check the store schema version.

        Raises:
            UnsupportedSchema: If the database was written by a newer schema.
        """
        await self._pool.connect()
        await self._pool.executescript(_SCHEMA)

        stored = await self.get_meta(SCHEMA_VERSION_META)
        if stored is None:
            await self.set_meta(SCHEMA_VERSION_META, str(CACHE_SCHEMA_VERSION))
        elif int(stored) > CACHE_SCHEMA_VERSION:
            await self._pool.close()
            raise UnsupportedSchema(int(stored), CACHE_SCHEMA_VERSION, operation="connect")

    async def close(self) -> None:
        await self._pool.close()

    async def __aenter__(self) -> CacheStore:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _lock(self, kind: CacheKind, key: str) -> asyncio.Lock:
        lock_key = (kind.value, key)
        lock = self._locks.get(lock_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[lock_key] = lock
        return lock

    # -------------------------------------------------------------------------
    # Metadata
    # -------------------------------------------------------------------------

    async def get_meta(self, name: str) -> str | None:
        value = await self._pool.fetchval("SELECT value FROM cache_meta WHERE name = ?", (name,))
        return None if value is None else str(value)

    async def set_meta(self, name: str, value: str) -> None:
        await self._pool.execute(
            "INSERT INTO cache_meta (name, value) VALUES (?, ?) "
            "ON CONFLICT (name) DO UPDATE SET value = excluded.value",
            (name, value),
        )

    # -------------------------------------------------------------------------
    # Generic Entry Operations
    # -------------------------------------------------------------------------

    def _decode(self, row: Any, operation: str) -> CacheEntry:
        params = CacheEntryDbParams(*row)
        if params.schema_version > CACHE_SCHEMA_VERSION:
            raise UnsupportedSchema(
                params.schema_version, CACHE_SCHEMA_VERSION, operation=operation
            )
        try:
            return CacheEntry.from_db_params(params)
        except (ValueError, TypeError) as e:
            raise CorruptCacheEntry(
                f"{params.kind}/{params.key} cannot be decoded", operation=operation, cause=e
            ) from e

    async def get(self, kind: CacheKind, key: str) -> CacheEntry | None:
        """Return the entry at ``(kind, key)``, or ``None`` when absent.

        Raises:
            UnsupportedSchema: If the entry was written by a newer schema.
            CorruptCacheEntry: If the stored value cannot be decoded.
        """
        row = await self._pool.fetchone(
            f"SELECT {_COLUMNS} FROM cache_entry WHERE kind = ? AND key = ?",  # noqa: S608
            (CacheKind(kind).value, key),
        )
        return None if row is None else self._decode(row, "get")

    async def entries(self, kind: CacheKind) -> list[CacheEntry]:
        """Return every entry of one namespace, ordered by key.

        Raises:
            UnsupportedSchema: If any entry was written by a newer schema.
            CorruptCacheEntry: If any stored value cannot be decoded.
        """
        rows = await self._pool.fetchall(
            f"SELECT {_COLUMNS} FROM cache_entry WHERE kind = ? ORDER BY key",  # noqa: S608
            (CacheKind(kind).value,),
        )
        return [self._decode(row, "entries") for row in rows]

    async def put(
        self,
        kind: CacheKind,
        key: str,
        value: Mapping[str, Any],
        *,
        updated_at: int = 0,
        tie_break: str = "",
    ) -> CacheEntry:
        """Unconditionally write ``value`` at ``(kind, key)``."""
        entry = CacheEntry(
            kind=kind, key=key, value=value, updated_at=updated_at, tie_break=tie_break
        )
        async with self._lock(entry.kind, key):
            await self._pool.execute(_UPSERT, tuple(entry.to_db_params()))
        self._logger.debug("entry_written", kind=entry.kind, key=key, updated_at=updated_at)
        return entry

    async def put_if_newer(
        self,
        kind: CacheKind,
        key: str,
        value: Mapping[str, Any],
        updated_at: int,
        *,
        tie_break: str = "",
        refreshed_at: int | None = None,
    ) -> bool:
        """Write ``value`` only if it is newer than the stored entry.

        "Newer" means a greater ``updated_at``, or an equal one with a greater
        ``tie_break``. Re-writing the identical value only bumps
        ``refreshed_at``. *refreshed_at* defaults to the current time.

        Returns:
            ``True`` if the entry was created or replaced.
        """
        entry = CacheEntry(
            kind=kind,
            key=key,
            value=value,
            updated_at=updated_at,
            tie_break=tie_break,
            **({} if refreshed_at is None else {"refreshed_at": refreshed_at}),
        )
        params = entry.to_db_params()
        async with self._lock(entry.kind, key):
            written = await self._pool.execute(_UPSERT_IF_NEWER, tuple(params))
            if written:
                self._logger.debug(
                    "entry_replaced", kind=entry.kind, key=key, updated_at=updated_at
                )
                return True
            await self._pool.execute(
                _TOUCH,
                (
                    params.refreshed_at,
                    params.kind,
                    params.key,
                    params.updated_at,
                    params.tie_break,
                    params.value,
                ),
            )
        return False

    async def invalidate(self, kind: CacheKind, key: str) -> bool:
        """Delete the entry at ``(kind, key)``. Returns whether it existed."""
        kind = CacheKind(kind)
        async with self._lock(kind, key):
            deleted = await self._pool.execute(
                "DELETE FROM cache_entry WHERE kind = ? AND key = ?", (kind.value, key)
            )
        if deleted:
            self._logger.info("entry_invalidated", kind=kind, key=key)
        return bool(deleted)

    async def clear(self, kind: CacheKind | None = None) -> int:
        """Delete every entry, or every entry of one namespace."""
        if kind is None:
            deleted = await self._pool.execute("DELETE FROM cache_entry")
        else:
            deleted = await self._pool.execute(
                "DELETE FROM cache_entry WHERE kind = ?", (CacheKind(kind).value,)
            )
        self._logger.info("cache_cleared", kind=kind or "all", deleted=deleted)
        return deleted

    async def migrate_from_legacy(self, legacy_path: str | Path) -> MigrationReport:
        """Import the previous file-based cache once.

        See [migrate_from_legacy()][nstatus.core.legacy.migrate_from_legacy].
        """
        from .legacy import migrate_from_legacy  # noqa: PLC0415

        return await migrate_from_legacy(self, legacy_path)

    # -------------------------------------------------------------------------
    # Typed Helpers
    # -------------------------------------------------------------------------

    async def get_relay_list(self, pubkey: str) -> RelayList | None:
        entry = await self.get(CacheKind.RELAY_LIST, pubkey)
        return None if entry is None else self._model(entry, RelayList.from_dict)

    async def put_relay_list(self, relay_list: RelayList) -> bool:
        return await self.put_if_newer(
            CacheKind.RELAY_LIST, relay_list.owner, relay_list.to_dict(), relay_list.created_at
        )

    async def get_follow_list(self, pubkey: str) -> FollowList | None:
        entry = await self.get(CacheKind.FOLLOW_LIST, pubkey)
        return None if entry is None else self._model(entry, FollowList.from_dict)

    async def put_follow_list(self, follow_list: FollowList) -> bool:
        return await self.put_if_newer(
            CacheKind.FOLLOW_LIST,
            follow_list.owner,
            follow_list.to_dict(),
            follow_list.created_at,
        )

    async def get_profile(self, pubkey: str) -> ProfileMetadata | None:
        entry = await self.get(CacheKind.PROFILE, pubkey)
        return None if entry is None else self._model(entry, ProfileMetadata.from_dict)

    async def put_profile(self, profile: ProfileMetadata) -> bool:
        return await self.put_if_newer(
            CacheKind.PROFILE, profile.pubkey, profile.to_dict(), profile.created_at
        )

    async def put_status(self, status: StatusEvent) -> bool:
        return await self.put_if_newer(
            CacheKind.STATUS,
            status.cache_key,
            status.to_dict(),
            status.created_at,
            tie_break=status.event_id,
        )

    async def statuses(self, authors: Iterable[str] | None = None) -> list[StatusEvent]:
        """Return cached statuses, optionally restricted to *authors*.

        Entries that fail to decode are logged and left out so one bad row
        cannot hide the whole timeline.
        """
        allowed = None if authors is None else set(authors)
        result: list[StatusEvent] = []
        for entry in await self.entries(CacheKind.STATUS):
            try:
                status = self._model(entry, StatusEvent.from_dict)
            except CorruptCacheEntry as e:
                self._logger.warning("status_entry_corrupt", key=entry.key, error=str(e))
                continue
            if allowed is None or status.author in allowed:
                result.append(status)
        return result

    @staticmethod
    def _model(entry: CacheEntry, factory: Any) -> Any:
        try:
            return factory(entry.plain_value())
        except (KeyError, ValueError, TypeError) as e:
            raise CorruptCacheEntry(
                f"{entry.kind}/{entry.key} does not match its model",
                operation="decode",
                cause=e,
            ) from e

    def is_stale(self, entry: CacheEntry, now: float | None = None) -> bool:
        return entry.is_stale(self._config.max_age, time() if now is None else now)

    def __repr__(self) -> str:
        return f"CacheStore(pool={self._pool!r})"
