"""Nostr Implementation Possibilities: event building and parsing.

The NIPs layer sits beside ``nstatus.core`` in the diamond DAG, depending
only on [nstatus.models][nstatus.models] and ``nostr_sdk``. It performs no
I/O.

Attributes:
    build_status_event: Kind 30315 user status (NIP-38).
    build_relay_list_event: Kind 10002 relay list metadata (NIP-65).
    build_profile_event: Kind 0 profile metadata with NIP-30 emoji tags.
    build_contacts_event: Kind 3 follow list (NIP-02).
    parse_status_event, parse_relay_list_event, parse_contacts_event,
    parse_metadata_event: Received events to typed models.
"""

from nstatus.nips.event_builders import (
    build_contacts_event,
    build_profile_event,
    build_relay_list_event,
    build_status_event,
    relay_list_tags,
)
from nstatus.nips.parsing import (
    event_tags,
    first_tag_value,
    parse_contacts_event,
    parse_metadata_event,
    parse_relay_list_event,
    parse_status_event,
)


__all__ = [
    "build_contacts_event",
    "build_profile_event",
    "build_relay_list_event",
    "build_status_event",
    "event_tags",
    "first_tag_value",
    "parse_contacts_event",
    "parse_metadata_event",
    "parse_relay_list_event",
    "parse_status_event",
    "relay_list_tags",
]
