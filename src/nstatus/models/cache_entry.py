"""
Versioned cache entry and its SQLite row representation.

Every row written by [CacheStore][nstatus.core.cache_store.CacheStore]
carries the schema version it was written with, the protocol timestamp of
the value (``updated_at``, used for last-write-wins) and the local wall
clock time of the write (``refreshed_at``, used for staleness).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from time import time
from typing import Any, NamedTuple

from ._validation import (
    deep_freeze,
    thaw,
    validate_mapping,
    validate_str_no_null,
    validate_str_not_empty,
    validate_timestamp,
)
from .constants import CACHE_SCHEMA_VERSION, CacheKind


class CacheEntryDbParams(NamedTuple):
    """Positional parameters for the ``cache_entry`` upsert."""

    kind: str
    key: str
    schema_version: int
    updated_at: int
    tie_break: str
    refreshed_at: int
    value: str


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A single cached value addressed by ``(kind, key)``.

    Attributes:
        kind: Cache namespace.
        key: Identifier within the namespace (pubkey, or ``pubkey:d`` for statuses).
        value: JSON-compatible payload, deep-frozen.
        updated_at: Protocol timestamp of the value.
        refreshed_at: Local time the entry was last written.
        schema_version: Schema version the value was written with.
        tie_break: Secondary ordering key for equal ``updated_at`` (event id).
    """

    kind: CacheKind
    key: str
    value: Any
    updated_at: int = 0
    refreshed_at: int = field(default_factory=lambda: int(time()))
    schema_version: int = CACHE_SCHEMA_VERSION
    tie_break: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", CacheKind(self.kind))
        validate_str_not_empty(self.key, "key")
        validate_mapping(self.value, "value")
        validate_timestamp(self.updated_at, "updated_at")
        validate_timestamp(self.refreshed_at, "refreshed_at")
        validate_timestamp(self.schema_version, "schema_version")
        validate_str_no_null(self.tie_break, "tie_break")
        object.__setattr__(self, "value", deep_freeze(self.value))

    def is_stale(self, max_age: float, now: float | None = None) -> bool:
        """Whether the entry was refreshed more than *max_age* seconds ago."""
        current = time() if now is None else now
        return current - self.refreshed_at > max_age

    def plain_value(self) -> dict[str, Any]:
        """Return the payload as plain mutable dicts and lists."""
        return thaw(self.value)

    def to_db_params(self) -> CacheEntryDbParams:
        return CacheEntryDbParams(
            kind=self.kind.value,
            key=self.key,
            schema_version=self.schema_version,
            updated_at=self.updated_at,
            tie_break=self.tie_break,
            refreshed_at=self.refreshed_at,
            value=json.dumps(self.plain_value(), sort_keys=True, separators=(",", ":")),
        )

    @classmethod
    def from_db_params(cls, params: CacheEntryDbParams) -> CacheEntry:
        """Rebuild an entry from a stored row.

        Raises:
            ValueError: If the stored JSON is invalid.
            TypeError: If the stored JSON is not an object.
        """
        value = json.loads(params.value)
        return cls(
            kind=CacheKind(params.kind),
            key=params.key,
            value=value,
            updated_at=params.updated_at,
            refreshed_at=params.refreshed_at,
            schema_version=params.schema_version,
            tie_break=params.tie_break,
        )
