"""
Unit tests for core.legacy module.

Tests:
- Conversion of followed, nip65 and profile files
- Non-cache files ignored, broken files recorded as failures
- Marker written once; second run is a no-op
- Legacy directory left untouched
- Migrated values never overwrite newer relay data
"""

import json
from pathlib import Path

import pytest

from nstatus.core.cache_store import MIGRATION_MARKER_META
from nstatus.core.exceptions import MigrationEntryFailed
from nstatus.core.legacy import (
    ALREADY_MIGRATED,
    LEGACY_FILE_PATTERN,
    NO_LEGACY_CACHE,
    _parse_timestamp,
    migrate_from_legacy,
)
from nstatus.models import CacheKind, FollowList
from tests.conftest import ALICE, BOB, CAROL


TIMESTAMP = "2024-01-02T03:04:05.123456789Z"
TIMESTAMP_SECS = 1_704_164_645


def write_legacy(directory: Path, name: str, data: object, timestamp: str = TIMESTAMP) -> Path:
    path = directory / name
    path.write_text(json.dumps({"timestamp": timestamp, "data": data}), encoding="utf-8")
    return path


@pytest.fixture
def legacy_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "cache"
    directory.mkdir()
    write_legacy(directory, f"{ALICE}_followed.json", [BOB, CAROL])
    write_legacy(
        directory,
        f"{ALICE}_nip65.json",
        [["wss://relay.damus.io", None], ["wss://yabu.me", "read"], ["wss://nos.lol", "write"]],
    )
    write_legacy(
        directory,
        f"{BOB}_profile.json",
        {"name": "bob", "about": "", "emojis": [["wave", "https://example.com/wave.png"]]},
    )
    (directory / "notes.txt").write_text("not a cache file", encoding="utf-8")
    return directory


# ============================================================================
# Timestamp Parsing
# ============================================================================


class TestParseTimestamp:
    """Legacy ISO 8601 timestamps."""

    def test_nanoseconds_truncated(self):
        assert _parse_timestamp(TIMESTAMP) == TIMESTAMP_SECS

    def test_naive_is_utc(self):
        assert _parse_timestamp("2024-01-02T03:04:05") == TIMESTAMP_SECS

    def test_offset_respected(self):
        assert _parse_timestamp("2024-01-02T04:04:05+01:00") == TIMESTAMP_SECS

    def test_non_string_rejected(self):
        with pytest.raises(ValueError, match="ISO 8601"):
            _parse_timestamp(1_704_164_645)


class TestFilePattern:
    """Recognized legacy file names."""

    @pytest.mark.parametrize("suffix", ["followed", "nip65", "profile"])
    def test_matches(self, suffix):
        assert LEGACY_FILE_PATTERN.match(f"{ALICE}_{suffix}.json")

    @pytest.mark.parametrize(
        "name",
        [f"{ALICE}_status.json", f"{ALICE.upper()}_followed.json", "abc_followed.json", "x.json"],
    )
    def test_rejects(self, name):
        assert LEGACY_FILE_PATTERN.match(name) is None


# ============================================================================
# Migration
# ============================================================================


class TestMigrateFromLegacy:
    """End-to-end import into a real store."""

    async def test_converts_all_kinds(self, store, legacy_dir):
        report = await migrate_from_legacy(store, legacy_dir)

        assert report.migrated == 3
        assert report.writes == 3
        assert report.ignored == 1
        assert report.failed == 0
        assert not report.skipped

        follow_list = await store.get_follow_list(ALICE)
        assert follow_list is not None
        assert follow_list.followed == frozenset({BOB, CAROL})
        assert follow_list.created_at == 0

        relay_list = await store.get_relay_list(ALICE)
        assert relay_list is not None
        assert [r.url for r in relay_list.read_relays] == [
            "wss://relay.damus.io",
            "wss://yabu.me",
        ]
        assert [r.url for r in relay_list.write_relays] == ["wss://nos.lol", "wss://relay.damus.io"]

        profile = await store.get_profile(BOB)
        assert profile is not None
        assert profile.name == "bob"
        assert profile.about is None
        assert profile.emojis == {"wave": "https://example.com/wave.png"}

    async def test_refreshed_at_from_legacy_timestamp(self, store, legacy_dir):
        await migrate_from_legacy(store, legacy_dir)
        entry = await store.get(CacheKind.FOLLOW_LIST, ALICE)
        assert entry.refreshed_at == TIMESTAMP_SECS
        assert entry.updated_at == 0

    async def test_second_run_is_noop(self, store, legacy_dir):
        await migrate_from_legacy(store, legacy_dir)
        write_legacy(legacy_dir, f"{CAROL}_followed.json", [ALICE])

        report = await migrate_from_legacy(store, legacy_dir)

        assert report.skipped_reason == ALREADY_MIGRATED
        assert report.migrated == 0
        assert await store.get_follow_list(CAROL) is None

    async def test_marker_written(self, store, legacy_dir):
        await migrate_from_legacy(store, legacy_dir)
        assert await store.get_meta(MIGRATION_MARKER_META) is not None

    async def test_directory_unmodified(self, store, legacy_dir):
        before = {p.name: p.read_bytes() for p in legacy_dir.iterdir()}
        await migrate_from_legacy(store, legacy_dir)
        after = {p.name: p.read_bytes() for p in legacy_dir.iterdir()}
        assert before == after

    async def test_missing_directory(self, store, tmp_path):
        report = await migrate_from_legacy(store, tmp_path / "absent")
        assert report.skipped_reason == NO_LEGACY_CACHE
        assert await store.get_meta(MIGRATION_MARKER_META) is None

    async def test_broken_files_recorded_and_run_continues(self, store, legacy_dir):
        (legacy_dir / f"{CAROL}_followed.json").write_text("{not json", encoding="utf-8")
        write_legacy(legacy_dir, f"{CAROL}_nip65.json", [["wss://yabu.me", "sometimes"]])
        write_legacy(legacy_dir, f"{CAROL}_profile.json", ["not", "an", "object"])

        report = await migrate_from_legacy(store, legacy_dir)

        assert report.failed == 3
        assert report.migrated == 3
        assert all(isinstance(f, MigrationEntryFailed) for f in report.failures)
        assert sorted(f.source for f in report.failures) == [
            f"{CAROL}_followed.json",
            f"{CAROL}_nip65.json",
            f"{CAROL}_profile.json",
        ]
        assert await store.get_meta(MIGRATION_MARKER_META) is not None

    async def test_bad_timestamp_is_entry_failure(self, store, tmp_path):
        write_legacy(tmp_path, f"{ALICE}_followed.json", [BOB], timestamp="yesterday")
        report = await migrate_from_legacy(store, tmp_path)
        assert report.failed == 1
        assert report.migrated == 0

    async def test_newer_relay_data_not_overwritten(self, store, legacy_dir):
        await store.put_follow_list(FollowList(ALICE, frozenset({CAROL}), 1_700_000_000))

        report = await migrate_from_legacy(store, legacy_dir)

        assert report.migrated == 3
        assert report.writes == 2
        follow_list = await store.get_follow_list(ALICE)
        assert follow_list.followed == frozenset({CAROL})

    async def test_via_store_method(self, store, legacy_dir):
        report = await store.migrate_from_legacy(legacy_dir)
        assert report.migrated == 3
