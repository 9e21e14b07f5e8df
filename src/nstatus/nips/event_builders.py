"""Nostr event builders for the kinds this client publishes.

Standalone functions that turn typed models into unsigned
``nostr_sdk.EventBuilder`` instances. Signing and sending happen in
[nstatus.utils.protocol][nstatus.utils.protocol].

See Also:
    [nstatus.nips.parsing][nstatus.nips.parsing]: The inverse direction,
        from received events back to models.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from nostr_sdk import EventBuilder, Kind, Tag

from nstatus.models.constants import MAX_STATUS_LENGTH, EventKind, StatusKind


if TYPE_CHECKING:
    from collections.abc import Iterable

    from nstatus.models import ProfileMetadata, RelayList


# =============================================================================
# Kind 30315 (NIP-38)
# =============================================================================


def build_status_event(
    content: str,
    kind: StatusKind | str = StatusKind.GENERAL,
    *,
    url: str | None = None,
    expiration: int | None = None,
) -> EventBuilder:
    """Build a Kind 30315 user status event per NIP-38.

    Tags: ``["d", kind]``, then ``["r", url]`` and ``["expiration", ts]``
    when given. An empty *content* clears the status for that ``d`` value.

    Raises:
        ValueError: If *content* exceeds ``MAX_STATUS_LENGTH`` characters or
            *kind* is empty.
    """
    if len(content) > MAX_STATUS_LENGTH:
        raise ValueError(
            f"status content is {len(content)} characters, maximum is {MAX_STATUS_LENGTH}"
        )
    d_value = str(kind)
    if not d_value:
        raise ValueError("status kind must not be empty")

    tags = [Tag.parse(["d", d_value])]
    if url:
        tags.append(Tag.parse(["r", url]))
    if expiration is not None:
        tags.append(Tag.parse(["expiration", str(expiration)]))
    return EventBuilder(Kind(EventKind.USER_STATUS), content).tags(tags)


# =============================================================================
# Kind 10002 (NIP-65)
# =============================================================================


def relay_list_tags(relay_list: RelayList) -> list[list[str]]:
    """Return the ``r`` tags for *relay_list*, sorted by URL.

    A relay that is both read and write gets no marker.
    """
    tags = []
    for descriptor in sorted(relay_list.descriptors, key=lambda d: d.url):
        if descriptor.read and descriptor.write:
            tags.append(["r", descriptor.url])
        elif descriptor.read:
            tags.append(["r", descriptor.url, "read"])
        else:
            tags.append(["r", descriptor.url, "write"])
    return tags


def build_relay_list_event(relay_list: RelayList) -> EventBuilder:
    """Build a Kind 10002 relay list metadata event per NIP-65."""
    tags = [Tag.parse(values) for values in relay_list_tags(relay_list)]
    return EventBuilder(Kind(EventKind.RELAY_LIST), "").tags(tags)


# =============================================================================
# Kind 0 (NIP-01) and Kind 3 (NIP-02)
# =============================================================================


def build_profile_event(profile: ProfileMetadata) -> EventBuilder:
    """Build a Kind 0 profile metadata event, with NIP-30 ``emoji`` tags."""
    content = json.dumps(profile.to_content(), ensure_ascii=False, sort_keys=True)
    tags = [
        Tag.parse(["emoji", shortcode, url]) for shortcode, url in sorted(profile.emojis.items())
    ]
    return EventBuilder(Kind(EventKind.METADATA), content).tags(tags)


def build_contacts_event(followed: Iterable[str]) -> EventBuilder:
    """Build a Kind 3 follow list event per NIP-02."""
    tags = [Tag.parse(["p", pubkey]) for pubkey in sorted(set(followed))]
    return EventBuilder(Kind(EventKind.CONTACTS), "").tags(tags)
