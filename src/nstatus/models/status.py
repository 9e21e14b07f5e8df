"""
NIP-38 user status events.

A status is addressable per ``(author, kind)`` where ``kind`` is the value
of the event's ``d`` tag (``general``, ``music``, ...). Only the newest
event per address is current; see [Timeline][nstatus.models.timeline.Timeline]
for the merge rule.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ._validation import (
    validate_event_id,
    validate_pubkey,
    validate_signature,
    validate_str_no_null,
    validate_str_not_empty,
    validate_timestamp,
)


@dataclass(frozen=True, slots=True)
class StatusEvent:
    """A signed kind 30315 event, reduced to the fields the client uses.

    Attributes:
        event_id: Hex event id.
        author: Hex public key of the author.
        kind: Status discriminator from the ``d`` tag.
        content: Status text (may be empty, which clears the status).
        created_at: Unix timestamp of the event.
        sig: Hex Schnorr signature.
        url: Optional ``r`` tag link (track, episode, web page).
        expiration: Optional NIP-40 expiration timestamp.
    """

    event_id: str
    author: str
    kind: str
    content: str
    created_at: int
    sig: str
    url: str | None = None
    expiration: int | None = None

    def __post_init__(self) -> None:
        validate_event_id(self.event_id, "event_id")
        validate_pubkey(self.author, "author")
        validate_str_not_empty(self.kind, "kind")
        validate_str_no_null(self.content, "content")
        validate_timestamp(self.created_at, "created_at")
        validate_signature(self.sig, "sig")
        if self.url is not None:
            validate_str_not_empty(self.url, "url")
        if self.expiration is not None:
            validate_timestamp(self.expiration, "expiration")

    @property
    def address(self) -> tuple[str, str]:
        """Replaceable address ``(author, kind)``."""
        return (self.author, self.kind)

    @property
    def cache_key(self) -> str:
        """Key used for this address in the ``status`` cache namespace."""
        return f"{self.author}:{self.kind}"

    def is_newer_than(self, other: StatusEvent | None) -> bool:
        """Replaceable-event ordering: greater timestamp, then greater event id."""
        if other is None:
            return True
        return (self.created_at, self.event_id) > (other.created_at, other.event_id)

    def is_expired(self, now: int) -> bool:
        return self.expiration is not None and self.expiration <= now

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.event_id,
            "pubkey": self.author,
            "d": self.kind,
            "content": self.content,
            "created_at": self.created_at,
            "sig": self.sig,
        }
        if self.url is not None:
            data["url"] = self.url
        if self.expiration is not None:
            data["expiration"] = self.expiration
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StatusEvent:
        return cls(
            event_id=data["id"],
            author=data["pubkey"],
            kind=data["d"],
            content=data["content"],
            created_at=int(data["created_at"]),
            sig=data["sig"],
            url=data.get("url"),
            expiration=data.get("expiration"),
        )
