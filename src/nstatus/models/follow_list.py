"""NIP-02 follow list owned by the local user."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ._validation import validate_pubkey, validate_timestamp


@dataclass(frozen=True, slots=True)
class FollowList:
    """Set of identities followed by ``owner``, versioned by ``created_at``.

    Attributes:
        owner: Hex public key of the list owner.
        followed: Hex public keys of followed accounts.
        created_at: Timestamp of the kind 3 event the list came from.
    """

    owner: str
    followed: frozenset[str]
    created_at: int = 0

    def __post_init__(self) -> None:
        validate_pubkey(self.owner, "owner")
        validate_timestamp(self.created_at, "created_at")
        followed = frozenset(self.followed)
        for pubkey in followed:
            validate_pubkey(pubkey, "followed")
        object.__setattr__(self, "followed", followed)

    def __contains__(self, pubkey: object) -> bool:
        return pubkey in self.followed

    def __len__(self) -> int:
        return len(self.followed)

    def supersedes(self, other: FollowList | None) -> bool:
        """Whether this list should replace *other* under last-write-wins."""
        return other is None or self.created_at > other.created_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "created_at": self.created_at,
            "followed": sorted(self.followed),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FollowList:
        return cls(
            owner=data["owner"],
            followed=frozenset(data["followed"]),
            created_at=int(data["created_at"]),
        )
