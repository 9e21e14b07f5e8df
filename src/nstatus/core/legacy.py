"""
One-shot import of the previous client's file-based cache.

The previous client kept one JSON file per identity and kind in a ``cache/``
directory::

    <64-hex-pubkey>_followed.json   {"timestamp": ..., "data": ["<hex>", ...]}
    <64-hex-pubkey>_nip65.json      {"timestamp": ..., "data": [["wss://...", "read"|null], ...]}
    <64-hex-pubkey>_profile.json    {"timestamp": ..., "data": {"name": ..., ...}}

[migrate_from_legacy()][nstatus.core.legacy.migrate_from_legacy] converts
each file into a typed cache entry, records per-file failures without
aborting, and writes a marker into ``cache_meta`` so a second run does
nothing. The legacy directory is only ever read.

Migrated values carry ``created_at=0``: the legacy files do not record the
protocol timestamp of the event they came from, so any value later fetched
from relays supersedes them. The legacy ``timestamp`` becomes the entry's
``refreshed_at``, which makes old files immediately stale.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from time import time
from typing import TYPE_CHECKING, Any

from nstatus.models import CacheKind, FollowList, ProfileMetadata, RelayDescriptor, RelayList

from .exceptions import MigrationEntryFailed
from .logger import Logger


if TYPE_CHECKING:
    from .cache_store import CacheStore


LEGACY_FILE_PATTERN = re.compile(r"^([0-9a-f]{64})_(followed|nip65|profile)\.json$")
_FRACTION = re.compile(r"\.\d+")

ALREADY_MIGRATED = "already_migrated"
NO_LEGACY_CACHE = "no_legacy_cache"

_logger = Logger("legacy_migration")


@dataclass(slots=True)
class MigrationReport:
    """Outcome of a legacy migration run.

    Attributes:
        migrated: Files converted and written (or already present and newer).
        failed: Files that could not be converted.
        ignored: Files in the directory that are not legacy cache files.
        writes: Entries actually created or replaced in the store.
        failures: One error per failed file.
        skipped_reason: Set when the run did nothing at all.
    """

    migrated: int = 0
    failed: int = 0
    ignored: int = 0
    writes: int = 0
    failures: list[MigrationEntryFailed] = field(default_factory=list)
    skipped_reason: str | None = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


# ---------------------------------------------------------------------------
# Converters
# ---------------------------------------------------------------------------


def _parse_timestamp(raw: Any) -> int:
    if not isinstance(raw, str):
        raise ValueError(f"timestamp must be an ISO 8601 string, got {type(raw).__name__}")
    # Legacy timestamps carry nanoseconds; datetime keeps microseconds.
    normalized = _FRACTION.sub(lambda m: m.group(0)[:7], raw.replace("Z", "+00:00"))
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def _convert_followed(pubkey: str, data: Any) -> FollowList:
    if not isinstance(data, list):
        raise ValueError("followed data must be a list")
    return FollowList(owner=pubkey, followed=frozenset(data))


def _convert_nip65(pubkey: str, data: Any) -> RelayList:
    if not isinstance(data, list):
        raise ValueError("nip65 data must be a list")
    descriptors = []
    for item in data:
        url, marker = item
        if marker == "read":
            descriptors.append(RelayDescriptor.parse(url, read=True, write=False))
        elif marker == "write":
            descriptors.append(RelayDescriptor.parse(url, read=False, write=True))
        elif marker is None:
            descriptors.append(RelayDescriptor.parse(url))
        else:
            raise ValueError(f"unknown relay marker {marker!r}")
    return RelayList(owner=pubkey, descriptors=frozenset(descriptors))


def _convert_profile(pubkey: str, data: Any) -> ProfileMetadata:
    if not isinstance(data, dict):
        raise ValueError("profile data must be an object")
    content = {k: v for k, v in data.items() if k != "emojis" and v != ""}
    emojis = {shortcode: url for shortcode, url in data.get("emojis") or []}
    return ProfileMetadata.from_content(pubkey, content, 0, emojis)


async def _migrate_file(store: CacheStore, path: Path, pubkey: str, suffix: str) -> bool:
    with path.open(encoding="utf-8") as f:
        document = json.load(f)
    if not isinstance(document, dict):
        raise ValueError("legacy file must hold a JSON object")
    refreshed_at = _parse_timestamp(document.get("timestamp"))
    data = document.get("data")

    if suffix == "followed":
        follow_list = _convert_followed(pubkey, data)
        kind, value = CacheKind.FOLLOW_LIST, follow_list.to_dict()
    elif suffix == "nip65":
        relay_list = _convert_nip65(pubkey, data)
        kind, value = CacheKind.RELAY_LIST, relay_list.to_dict()
    else:
        profile = _convert_profile(pubkey, data)
        kind, value = CacheKind.PROFILE, profile.to_dict()

    return await store.put_if_newer(kind, pubkey, value, 0, refreshed_at=refreshed_at)


# ---------------------------------------------------------------------------
# Entry Point
# ---------------------------------------------------------------------------


async def migrate_from_legacy(store: CacheStore, legacy_path: str | Path) -> MigrationReport:
    """Import the legacy cache directory into *store* exactly once.

    Files are processed in name order. A file that fails to parse, convert or
    write is logged and recorded in ``report.failures``; the run continues.
    The marker is written after every file has been attempted, so a crash
    mid-run repeats the import next time (each write is last-write-wins and
    therefore idempotent).

    Args:
        store: A connected cache store.
        legacy_path: The previous client's ``cache/`` directory.

    Returns:
        A [MigrationReport][nstatus.core.legacy.MigrationReport].

    Raises:
        MigrationEntryFailed: If the completion marker cannot be written.
    """
    from .cache_store import MIGRATION_MARKER_META  # noqa: PLC0415

    report = MigrationReport()
    if await store.get_meta(MIGRATION_MARKER_META) is not None:
        report.skipped_reason = ALREADY_MIGRATED
        return report

    directory = Path(legacy_path).expanduser()
    if not directory.is_dir():
        report.skipped_reason = NO_LEGACY_CACHE
        return report

    _logger.info("migration_started", path=str(directory))

    for path in sorted(directory.iterdir()):
        match = LEGACY_FILE_PATTERN.match(path.name)
        if match is None or not path.is_file():
            report.ignored += 1
            continue
        pubkey, suffix = match.groups()
        try:
            written = await _migrate_file(store, path, pubkey, suffix)
        except (OSError, ValueError, TypeError, KeyError) as e:
            failure = MigrationEntryFailed(path.name, str(e), cause=e)
            report.failures.append(failure)
            report.failed += 1
            _logger.warning("migration_entry_failed", file=path.name, error=str(e))
            continue
        report.migrated += 1
        report.writes += int(written)

    try:
        await store.set_meta(MIGRATION_MARKER_META, str(int(time())))
    except Exception as e:
        raise MigrationEntryFailed(MIGRATION_MARKER_META, "cannot record migration", cause=e) from e

    _logger.info(
        "migration_completed",
        migrated=report.migrated,
        failed=report.failed,
        ignored=report.ignored,
        writes=report.writes,
    )
    return report
