"""
NIP-01 profile metadata (kind 0 content).

The well-known fields are lifted into attributes; everything else a client
put in the JSON object is kept verbatim (and deep-frozen) in ``extra`` so a
round-trip through the cache is lossless.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, ClassVar

from ._validation import (
    deep_freeze,
    sanitize_data,
    thaw,
    validate_mapping,
    validate_pubkey,
    validate_str_no_null,
    validate_timestamp,
)


@dataclass(frozen=True, slots=True)
class ProfileMetadata:
    """Profile metadata of one identity, last-write-wins by ``created_at``.

    Attributes:
        pubkey: Hex public key of the profile owner.
        created_at: Timestamp of the kind 0 event.
        name: Display name.
        about: Free-form biography.
        picture: Avatar URL.
        nip05: NIP-05 internet identifier.
        lud16: Lightning address.
        emojis: NIP-30 custom emoji shortcodes mapped to image URLs.
        extra: Any other fields present in the event content.
    """

    pubkey: str
    created_at: int = 0
    name: str | None = None
    about: str | None = None
    picture: str | None = None
    nip05: str | None = None
    lud16: str | None = None
    emojis: Mapping[str, str] = field(default_factory=dict)
    extra: Mapping[str, Any] = field(default_factory=dict)

    KNOWN_FIELDS: ClassVar[tuple[str, ...]] = ("name", "about", "picture", "nip05", "lud16")

    def __post_init__(self) -> None:
        validate_pubkey(self.pubkey, "pubkey")
        validate_timestamp(self.created_at, "created_at")
        for name in self.KNOWN_FIELDS:
            value = getattr(self, name)
            if value is not None:
                validate_str_no_null(value, name)
        validate_mapping(self.emojis, "emojis")
        validate_mapping(self.extra, "extra")
        object.__setattr__(self, "emojis", MappingProxyType(dict(self.emojis)))
        object.__setattr__(self, "extra", deep_freeze(sanitize_data(self.extra, "extra") or {}))

    @property
    def display_name(self) -> str:
        """Best human-readable label: ``name``, else a shortened pubkey."""
        return self.name or f"{self.pubkey[:8]}…{self.pubkey[-4:]}"

    def supersedes(self, other: ProfileMetadata | None) -> bool:
        return other is None or self.created_at > other.created_at

    @classmethod
    def from_content(
        cls,
        pubkey: str,
        content: Mapping[str, Any],
        created_at: int = 0,
        emojis: Mapping[str, str] | None = None,
    ) -> ProfileMetadata:
        """Build from a parsed kind 0 JSON object.

        Non-string values of known fields are moved to ``extra`` instead of
        failing, since clients in the wild publish all sorts of shapes.
        """
        known: dict[str, str] = {}
        extra: dict[str, Any] = {}
        for key, value in content.items():
            if key in cls.KNOWN_FIELDS and isinstance(value, str):
                known[key] = value
            else:
                extra[key] = value
        return cls(pubkey=pubkey, created_at=created_at, emojis=emojis or {}, extra=extra, **known)

    def to_content(self) -> dict[str, Any]:
        """Return the kind 0 JSON object (known fields plus ``extra``)."""
        content: dict[str, Any] = thaw(self.extra)
        for name in self.KNOWN_FIELDS:
            value = getattr(self, name)
            if value is not None:
                content[name] = value
        return content

    def to_dict(self) -> dict[str, Any]:
        return {
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "content": self.to_content(),
            "emojis": dict(self.emojis),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProfileMetadata:
        return cls.from_content(
            data["pubkey"],
            data.get("content", {}),
            int(data.get("created_at", 0)),
            data.get("emojis"),
        )
