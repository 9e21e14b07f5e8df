"""
Unit tests for models.profile and models.follow_list modules.

Tests:
- ProfileMetadata.from_content() field lifting and extras
- to_content() / to_dict() / from_dict()
- display_name fallback
- FollowList validation and supersedes()
"""

import pytest

from nstatus.models import FollowList, ProfileMetadata
from tests.conftest import ALICE, BOB, CAROL


class TestProfileMetadata:
    """Kind 0 content handling."""

    def test_known_fields_lifted(self):
        p = ProfileMetadata.from_content(
            ALICE, {"name": "alice", "about": "hi", "lud16": "a@b.c", "website": "x.y"}, 5
        )
        assert p.name == "alice"
        assert p.lud16 == "a@b.c"
        assert p.picture is None
        assert p.extra["website"] == "x.y"

    def test_non_string_known_field_kept_as_extra(self):
        p = ProfileMetadata.from_content(ALICE, {"name": 42})
        assert p.name is None
        assert p.extra["name"] == 42

    def test_to_content_merges_extra(self):
        p = ProfileMetadata.from_content(ALICE, {"name": "alice", "banner": "b.png"})
        assert p.to_content() == {"name": "alice", "banner": "b.png"}

    def test_dict_roundtrip_keeps_emojis(self):
        p = ProfileMetadata.from_content(
            ALICE, {"name": "alice"}, 7, {"wave": "https://x.y/wave.png"}
        )
        restored = ProfileMetadata.from_dict(p.to_dict())
        assert restored == p
        assert restored.emojis["wave"] == "https://x.y/wave.png"

    def test_display_name(self):
        assert ProfileMetadata(ALICE, name="alice").display_name == "alice"
        assert ProfileMetadata(ALICE).display_name.startswith("aaaaaaaa")

    def test_supersedes(self):
        assert ProfileMetadata(ALICE, created_at=2).supersedes(ProfileMetadata(ALICE, created_at=1))
        assert not ProfileMetadata(ALICE, created_at=1).supersedes(
            ProfileMetadata(ALICE, created_at=1)
        )

    def test_invalid_pubkey(self):
        with pytest.raises(ValueError):
            ProfileMetadata("nope")


class TestFollowList:
    """NIP-02 follow set."""

    def test_membership(self):
        fl = FollowList(ALICE, frozenset({BOB}), 3)
        assert BOB in fl
        assert CAROL not in fl
        assert len(fl) == 1

    def test_invalid_followed_rejected(self):
        with pytest.raises(ValueError):
            FollowList(ALICE, frozenset({"bad"}))

    def test_dict_sorted_and_roundtrip(self):
        fl = FollowList(ALICE, frozenset({CAROL, BOB}), 3)
        assert fl.to_dict()["followed"] == [BOB, CAROL]
        assert FollowList.from_dict(fl.to_dict()) == fl

    def test_supersedes(self):
        assert FollowList(ALICE, frozenset(), 2).supersedes(FollowList(ALICE, frozenset(), 1))
        assert FollowList(ALICE, frozenset(), 0).supersedes(None)
