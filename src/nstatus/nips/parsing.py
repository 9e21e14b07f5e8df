"""
Conversion of received ``nostr_sdk.Event`` objects into typed models.

Relay responses are untrusted. Each ``parse_*`` function checks the event
kind and the tags it depends on and raises ``ValueError`` when the event is
unusable as a whole; individual malformed tags (an invalid relay URL in a
relay list, a bad pubkey in a follow list) are dropped and logged at debug
level so one bad entry does not discard an otherwise valid list.

Signature verification is the caller's job (see
[verify_events()][nstatus.utils.protocol.verify_events]); these functions
only reshape data.

See Also:
    [nstatus.nips.event_builders][nstatus.nips.event_builders]: The
        publishing direction.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from nstatus.models import (
    FollowList,
    ProfileMetadata,
    RelayDescriptor,
    RelayList,
    StatusEvent,
)
from nstatus.models.constants import EventKind


if TYPE_CHECKING:
    from nostr_sdk import Event


logger = logging.getLogger(__name__)

_HEX64_LENGTH = 64


def event_tags(event: Event) -> list[list[str]]:
    """Return the event tags as plain lists (one FFI round-trip per tag)."""
    return [list(tag.as_vec()) for tag in event.tags().to_vec()]


def first_tag_value(tags: list[list[str]], name: str) -> str | None:
    """Return the first value of the first tag called *name*, if any."""
    for tag in tags:
        if len(tag) >= 2 and tag[0] == name:  # noqa: PLR2004
            return tag[1]
    return None


def _check_kind(event: Event, expected: EventKind) -> None:
    kind = event.kind().as_u16()
    if kind != expected:
        raise ValueError(f"expected kind {int(expected)}, got {kind}")


# =============================================================================
# Kind 30315 (NIP-38)
# =============================================================================


def parse_status_event(event: Event) -> StatusEvent:
    """Convert a Kind 30315 event into a [StatusEvent][nstatus.models.status.StatusEvent].

    Raises:
        ValueError: If the kind is wrong, the ``d`` tag is missing or empty,
            or a field fails model validation.
    """
    _check_kind(event, EventKind.USER_STATUS)
    tags = event_tags(event)

    d_value = first_tag_value(tags, "d")
    if not d_value:
        raise ValueError("status event has no d tag")

    expiration: int | None = None
    raw_expiration = first_tag_value(tags, "expiration")
    if raw_expiration is not None:
        try:
            expiration = int(raw_expiration)
        except ValueError:
            logger.debug("status_expiration_invalid value=%s", raw_expiration)

    return StatusEvent(
        event_id=event.id().to_hex(),
        author=event.author().to_hex(),
        kind=d_value,
        content=event.content(),
        created_at=event.created_at().as_secs(),
        sig=event.signature(),
        url=first_tag_value(tags, "r") or None,
        expiration=expiration,
    )


# =============================================================================
# Kind 10002 (NIP-65)
# =============================================================================


def parse_relay_list_event(event: Event) -> RelayList:
    """Convert a Kind 10002 event into a [RelayList][nstatus.models.relay.RelayList].

    ``["r", url]`` is read and write, ``["r", url, "read"]`` and
    ``["r", url, "write"]`` restrict it. Tags with an invalid URL or an
    unknown marker are skipped.

    Raises:
        ValueError: If the kind is wrong.
    """
    _check_kind(event, EventKind.RELAY_LIST)
    owner = event.author().to_hex()

    descriptors: list[RelayDescriptor] = []
    for tag in event_tags(event):
        if len(tag) < 2 or tag[0] != "r":  # noqa: PLR2004
            continue
        marker = tag[2] if len(tag) > 2 else None  # noqa: PLR2004
        if marker in (None, ""):
            read, write = True, True
        elif marker == "read":
            read, write = True, False
        elif marker == "write":
            read, write = False, True
        else:
            logger.debug("relay_marker_unknown owner=%s marker=%s", owner, marker)
            continue
        try:
            descriptors.append(RelayDescriptor.parse(tag[1], read=read, write=write))
        except (ValueError, TypeError) as e:
            logger.debug("relay_url_invalid owner=%s url=%s error=%s", owner, tag[1], e)

    return RelayList(owner, frozenset(descriptors), event.created_at().as_secs())


# =============================================================================
# Kind 3 (NIP-02)
# =============================================================================


def parse_contacts_event(event: Event) -> FollowList:
    """Convert a Kind 3 event into a [FollowList][nstatus.models.follow_list.FollowList].

    Raises:
        ValueError: If the kind is wrong.
    """
    _check_kind(event, EventKind.CONTACTS)
    owner = event.author().to_hex()

    followed: set[str] = set()
    for tag in event_tags(event):
        if len(tag) < 2 or tag[0] != "p":  # noqa: PLR2004
            continue
        pubkey = tag[1].lower()
        if len(pubkey) != _HEX64_LENGTH or not all(c in "0123456789abcdef" for c in pubkey):
            logger.debug("contact_pubkey_invalid owner=%s value=%s", owner, tag[1])
            continue
        followed.add(pubkey)

    return FollowList(owner, frozenset(followed), event.created_at().as_secs())


# =============================================================================
# Kind 0 (NIP-01)
# =============================================================================


def parse_metadata_event(event: Event) -> ProfileMetadata:
    """Convert a Kind 0 event into [ProfileMetadata][nstatus.models.profile.ProfileMetadata].

    NIP-30 ``["emoji", shortcode, url]`` tags become the custom emoji map.

    Raises:
        ValueError: If the kind is wrong or the content is not a JSON object.
    """
    _check_kind(event, EventKind.METADATA)
    try:
        content: Any = json.loads(event.content())
    except json.JSONDecodeError as e:
        raise ValueError(f"profile content is not valid JSON: {e}") from e
    if not isinstance(content, dict):
        raise ValueError("profile content must be a JSON object")

    emojis = {
        tag[1]: tag[2]
        for tag in event_tags(event)
        if len(tag) >= 3 and tag[0] == "emoji" and tag[1] and tag[2]  # noqa: PLR2004
    }
    return ProfileMetadata.from_content(
        event.author().to_hex(), content, event.created_at().as_secs(), emojis
    )
