"""
Unit tests for models.relay module.

Tests:
- URL parsing and normalization (wss/ws, ports, paths)
- Network detection and local address rejection
- RelayDescriptor permissions
- RelayList duplicate merging, read/write views, fallback, serialization
"""

import pytest

from nstatus.models import NetworkType, Relay, RelayDescriptor, RelayList
from nstatus.models.relay import classify_host
from tests.conftest import ALICE


class TestRelayParsing:
    """URL parsing and normalization."""

    def test_wss_clearnet(self):
        r = Relay("wss://relay.damus.io")
        assert r.url == "wss://relay.damus.io"
        assert r.scheme == "wss"
        assert r.network == NetworkType.CLEARNET
        assert r.port is None
        assert r.path is None

    def test_ws_clearnet_keeps_scheme(self):
        r = Relay("ws://yabu.me")
        assert r.url == "ws://yabu.me"
        assert r.scheme == "ws"
        assert r != Relay("wss://yabu.me")

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("ws://yabu.me:80", "ws://yabu.me"),
            ("ws://yabu.me:443", "ws://yabu.me:443"),
            ("wss://yabu.me:80", "wss://yabu.me:80"),
        ],
    )
    def test_default_port_follows_scheme(self, url, expected):
        assert Relay(url).url == expected

    def test_trailing_slash_and_case_normalized(self):
        assert Relay("WSS://Relay.Damus.io/") == Relay("wss://relay.damus.io")

    def test_default_port_omitted(self):
        assert Relay("wss://yabu.me:443").url == "wss://yabu.me"

    def test_explicit_port_kept(self):
        r = Relay("wss://yabu.me:7777")
        assert r.url == "wss://yabu.me:7777"
        assert r.port == 7777

    def test_path_preserved(self):
        assert Relay("wss://relay.example.com/nostr/").url == "wss://relay.example.com/nostr"

    def test_onion_uses_ws(self):
        r = Relay("wss://abcdefghijklmnop.onion")
        assert r.network == NetworkType.TOR
        assert r.scheme == "ws"

    def test_hashable(self):
        assert len({Relay("wss://yabu.me"), Relay("wss://yabu.me/")}) == 1


class TestRelayRejection:
    """Invalid and local URLs."""

    @pytest.mark.parametrize(
        "url",
        [
            "https://relay.damus.io",
            "wss://localhost",
            "wss://127.0.0.1",
            "wss://192.168.1.10",
            "wss://nodots",
            "wss://relay.damus.io/?x=1",
            "wss://relay.damus.io/#frag",
        ],
    )
    def test_rejected(self, url):
        with pytest.raises(ValueError):
            Relay(url)

    def test_null_bytes(self):
        with pytest.raises(ValueError, match="null"):
            Relay("wss://relay.damus.io\x00")

    def test_non_string(self):
        with pytest.raises(TypeError):
            Relay(123)  # type: ignore[arg-type]


class TestClassifyHost:
    """Host to network mapping."""

    @pytest.mark.parametrize(
        ("host", "network"),
        [
            ("relay.damus.io", NetworkType.CLEARNET),
            ("8.8.8.8", NetworkType.CLEARNET),
            ("abc.onion", NetworkType.TOR),
            ("abc.i2p", NetworkType.I2P),
            ("abc.loki", NetworkType.LOKI),
            ("localhost", NetworkType.LOCAL),
            ("10.0.0.1", NetworkType.LOCAL),
            ("100.64.0.1", NetworkType.LOCAL),
            ("224.0.0.1", NetworkType.LOCAL),
            ("[::1]", NetworkType.LOCAL),
            ("-bad.example.com", NetworkType.UNKNOWN),
            ("", NetworkType.UNKNOWN),
        ],
    )
    def test_classification(self, host, network):
        assert classify_host(host) == network


class TestRelayDescriptor:
    """Read/write permissions."""

    def test_defaults_read_write(self):
        d = RelayDescriptor.parse("wss://yabu.me")
        assert d.read and d.write
        assert d.url == "wss://yabu.me"

    def test_neither_read_nor_write_rejected(self):
        with pytest.raises(ValueError, match="read or write"):
            RelayDescriptor.parse("wss://yabu.me", read=False, write=False)

    def test_dict_roundtrip(self):
        d = RelayDescriptor.parse("wss://yabu.me", read=False)
        assert RelayDescriptor.from_dict(d.to_dict()) == d


class TestRelayList:
    """Per-identity relay sets."""

    def test_duplicates_merged_with_or(self):
        rl = RelayList(
            ALICE,
            frozenset(
                {
                    RelayDescriptor.parse("wss://yabu.me", read=True, write=False),
                    RelayDescriptor.parse("wss://yabu.me/", read=False, write=True),
                }
            ),
            10,
        )
        assert len(rl.descriptors) == 1
        (only,) = rl.descriptors
        assert only.read and only.write

    def test_read_and_write_views_sorted(self):
        rl = RelayList(
            ALICE,
            frozenset(
                {
                    RelayDescriptor.parse("wss://z.example.com", write=False),
                    RelayDescriptor.parse("wss://a.example.com", write=False),
                    RelayDescriptor.parse("wss://w.example.com", read=False),
                }
            ),
        )
        assert [r.url for r in rl.read_relays] == ["wss://a.example.com", "wss://z.example.com"]
        assert [r.url for r in rl.write_relays] == ["wss://w.example.com"]
        assert len(rl.relays) == 3

    def test_empty_list_allowed(self):
        rl = RelayList(ALICE, frozenset())
        assert rl.read_relays == ()
        assert rl.write_relays == ()

    def test_fallback_is_read_write_with_zero_timestamp(self):
        relays = [Relay("wss://relay.damus.io"), Relay("wss://yabu.me")]
        rl = RelayList.fallback(ALICE, relays)
        assert rl.created_at == 0
        assert all(d.read and d.write for d in rl.descriptors)
        assert set(rl.relays) == set(relays)

    def test_supersedes(self):
        old = RelayList(ALICE, frozenset(), 10)
        new = RelayList(ALICE, frozenset(), 11)
        assert new.supersedes(old)
        assert not old.supersedes(new)
        assert not old.supersedes(old)
        assert old.supersedes(None)

    def test_invalid_owner(self):
        with pytest.raises(ValueError):
            RelayList("not-a-key", frozenset())

    def test_dict_roundtrip(self):
        rl = RelayList(
            ALICE,
            frozenset(
                {
                    RelayDescriptor.parse("wss://yabu.me"),
                    RelayDescriptor.parse("wss://relay.damus.io", write=False),
                }
            ),
            1_700_000_000,
        )
        data = rl.to_dict()
        assert [d["url"] for d in data["relays"]] == ["wss://relay.damus.io", "wss://yabu.me"]
        assert RelayList.from_dict(data) == rl
