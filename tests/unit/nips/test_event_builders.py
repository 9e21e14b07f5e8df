"""
Unit tests for nips.event_builders module.

Tests:
- Kind 30315 status tags, length limit, clearing
- Kind 10002 r-tag markers and ordering
- Kind 0 content and emoji tags
- Kind 3 p-tags
- Built events sign with real keys and parse back
"""

import json

import pytest

from nstatus.models import (
    MAX_STATUS_LENGTH,
    ProfileMetadata,
    RelayDescriptor,
    RelayList,
    StatusKind,
)
from nstatus.nips.event_builders import (
    build_contacts_event,
    build_profile_event,
    build_relay_list_event,
    build_status_event,
    relay_list_tags,
)
from nstatus.nips.parsing import event_tags, parse_relay_list_event, parse_status_event
from nstatus.utils.protocol import sign_event
from tests.conftest import ALICE, BOB, CAROL


class TestBuildStatusEvent:
    """Kind 30315 (NIP-38)."""

    async def test_general_status(self, keys, pubkey):
        event = await sign_event(build_status_event("coding"), keys)
        assert event.kind().as_u16() == 30315
        assert event.content() == "coding"
        assert event_tags(event) == [["d", "general"]]
        assert event.author().to_hex() == pubkey
        assert event.verify()

    async def test_music_with_url_and_expiration(self, keys):
        builder = build_status_event(
            "Song - Artist",
            StatusKind.MUSIC,
            url="spotify:track:abc",
            expiration=1_700_000_600,
        )
        event = await sign_event(builder, keys)
        assert event_tags(event) == [
            ["d", "music"],
            ["r", "spotify:track:abc"],
            ["expiration", "1700000600"],
        ]

    async def test_custom_kind_string(self, keys):
        event = await sign_event(build_status_event("hi", "gaming"), keys)
        assert parse_status_event(event).kind == "gaming"

    async def test_empty_content_clears(self, keys):
        status = parse_status_event(await sign_event(build_status_event(""), keys))
        assert status.content == ""

    def test_max_length_accepted(self, keys):
        build_status_event("x" * MAX_STATUS_LENGTH)

    def test_too_long_rejected(self):
        with pytest.raises(ValueError, match="maximum"):
            build_status_event("x" * (MAX_STATUS_LENGTH + 1))

    def test_empty_kind_rejected(self):
        with pytest.raises(ValueError, match="kind"):
            build_status_event("hi", "")

    async def test_roundtrip(self, keys, pubkey):
        event = await sign_event(build_status_event("away", url="https://example.com"), keys)
        status = parse_status_event(event)
        assert status.author == pubkey
        assert status.content == "away"
        assert status.url == "https://example.com"
        assert status.event_id == event.id().to_hex()


class TestBuildRelayListEvent:
    """Kind 10002 (NIP-65)."""

    @pytest.fixture
    def relay_list(self):
        return RelayList(
            ALICE,
            frozenset(
                {
                    RelayDescriptor.parse("wss://z.example.com"),
                    RelayDescriptor.parse("wss://r.example.com", write=False),
                    RelayDescriptor.parse("wss://w.example.com", read=False),
                }
            ),
        )

    def test_tags(self, relay_list):
        assert relay_list_tags(relay_list) == [
            ["r", "wss://r.example.com", "read"],
            ["r", "wss://w.example.com", "write"],
            ["r", "wss://z.example.com"],
        ]

    async def test_signed_event_parses_back(self, keys, pubkey, relay_list):
        event = await sign_event(build_relay_list_event(relay_list), keys)
        assert event.kind().as_u16() == 10002
        parsed = parse_relay_list_event(event)
        assert parsed.owner == pubkey
        assert parsed.descriptors == relay_list.descriptors


class TestBuildProfileEvent:
    """Kind 0 (NIP-01, NIP-30)."""

    async def test_content_and_emojis(self, keys):
        profile = ProfileMetadata(
            pubkey=ALICE,
            name="alice",
            about="hi :wave:",
            emojis={"wave": "https://example.com/wave.png"},
        )
        event = await sign_event(build_profile_event(profile), keys)
        assert event.kind().as_u16() == 0
        assert json.loads(event.content()) == {"name": "alice", "about": "hi :wave:"}
        assert event_tags(event) == [["emoji", "wave", "https://example.com/wave.png"]]


class TestBuildContactsEvent:
    """Kind 3 (NIP-02)."""

    async def test_sorted_unique_p_tags(self, keys):
        event = await sign_event(build_contacts_event([CAROL, BOB, CAROL]), keys)
        assert event.kind().as_u16() == 3
        assert event_tags(event) == [["p", BOB], ["p", CAROL]]
