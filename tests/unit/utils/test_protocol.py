"""
Unit tests for utils.protocol module.

Tests:
- connect_relay() success, failure, and overlay rejection
- sign_event() with local keys
- verify_events() filtering
- fetch_relay() error capture and client shutdown
- fetch_many() ordering and concurrency cap
- publish_event() per-relay outcomes
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from nstatus.models import Relay
from nstatus.nips.event_builders import build_status_event
from nstatus.utils.protocol import (
    RelayFetch,
    connect_relay,
    fetch_many,
    fetch_relay,
    publish_event,
    sign_event,
    verify_events,
)
from tests.conftest import make_mock_event


def mock_client(events=None, send_output=None) -> MagicMock:
    client = MagicMock()
    client.fetch_events = AsyncMock(
        return_value=MagicMock(to_vec=MagicMock(return_value=list(events or [])))
    )
    client.send_event = AsyncMock(return_value=send_output)
    client.shutdown = AsyncMock()
    return client


def send_output(success: bool, reason: str = "blocked") -> MagicMock:
    output = MagicMock()
    output.success = ["relay"] if success else []
    output.failed = {} if success else {"relay": reason}
    return output


# ============================================================================
# connect_relay
# ============================================================================


class TestConnectRelay:
    """Dedicated per-relay connections."""

    async def test_success(self):
        client = MagicMock()
        client.add_relay = AsyncMock()
        url = MagicMock()
        client.try_connect = AsyncMock(return_value=MagicMock(success=[url], failed={}))
        with (
            patch("nstatus.utils.protocol.create_client", return_value=client),
            patch("nstatus.utils.protocol.RelayUrl") as relay_url,
        ):
            relay_url.parse.return_value = url
            assert await connect_relay(Relay("wss://yabu.me")) is client
        client.add_relay.assert_awaited_once_with(url)

    async def test_failure_shuts_down_and_raises(self):
        client = MagicMock()
        client.add_relay = AsyncMock()
        client.shutdown = AsyncMock()
        url = MagicMock()
        client.try_connect = AsyncMock(
            return_value=MagicMock(success=[], failed={url: "refused"})
        )
        with (
            patch("nstatus.utils.protocol.create_client", return_value=client),
            patch("nstatus.utils.protocol.RelayUrl") as relay_url,
        ):
            relay_url.parse.return_value = url
            with pytest.raises(OSError, match="refused"):
                await connect_relay(Relay("wss://yabu.me"))
        client.shutdown.assert_awaited_once()

    async def test_overlay_rejected(self):
        with pytest.raises(ValueError, match="proxy"):
            await connect_relay(Relay("wss://abcdefghijklmnop.onion"))


# ============================================================================
# verify_events
# ============================================================================


class TestSignEvent:
    """Signing with the unlocked keys."""

    async def test_signed_by_keys(self, keys, pubkey):
        event = await sign_event(build_status_event("coding"), keys)
        assert event.author().to_hex() == pubkey
        assert event.verify()

    async def test_content_and_tags_kept(self, keys):
        builder = build_status_event("coding", "music")
        first = await sign_event(builder, keys)
        assert first.content() == "coding"
        assert [tag.as_vec() for tag in first.tags().to_vec()] == [["d", "music"]]


class TestVerifyEvents:
    """Signature verification."""

    def test_splits_valid_and_invalid(self):
        good = make_mock_event()
        bad = make_mock_event()
        bad.verify.return_value = False
        broken = make_mock_event()
        broken.verify.side_effect = ValueError("bad sig")
        valid, invalid = verify_events([good, bad, broken])
        assert valid == [good]
        assert invalid == 2

    async def test_real_event(self, keys):
        event = await sign_event(build_status_event("hi"), keys)
        assert verify_events([event]) == ([event], 0)


# ============================================================================
# fetch_relay / fetch_many
# ============================================================================


class TestFetchRelay:
    """Single-relay queries never raise for relay failures."""

    async def test_success(self):
        good = make_mock_event()
        bad = make_mock_event()
        bad.verify.return_value = False
        client = mock_client([good, bad])
        with patch("nstatus.utils.protocol.connect_relay", AsyncMock(return_value=client)):
            result = await fetch_relay(Relay("wss://yabu.me"), MagicMock(), timeout=1)
        assert result.ok
        assert result.events == [good]
        assert result.invalid == 1
        client.shutdown.assert_awaited_once()

    async def test_connection_error_captured(self):
        with patch(
            "nstatus.utils.protocol.connect_relay",
            AsyncMock(side_effect=OSError("Connection failed: refused")),
        ):
            result = await fetch_relay(Relay("wss://yabu.me"), MagicMock(), timeout=1)
        assert not result.ok
        assert "refused" in result.error
        assert result.events == []

    async def test_timeout_captured(self):
        client = mock_client()

        async def hang(*_args):
            await asyncio.sleep(10)

        client.fetch_events = AsyncMock(side_effect=hang)
        with patch("nstatus.utils.protocol.connect_relay", AsyncMock(return_value=client)):
            result = await fetch_relay(Relay("wss://yabu.me"), MagicMock(), timeout=0.05)
        assert result.error == "timeout"
        client.shutdown.assert_awaited_once()

    async def test_shutdown_errors_suppressed(self):
        client = mock_client()
        client.shutdown = AsyncMock(side_effect=RuntimeError("ffi"))
        with patch("nstatus.utils.protocol.connect_relay", AsyncMock(return_value=client)):
            result = await fetch_relay(Relay("wss://yabu.me"), MagicMock(), timeout=1)
        assert result.ok


class TestFetchMany:
    """Concurrent fan-out."""

    async def test_empty(self):
        assert await fetch_many({}) == []

    async def test_sorted_by_url(self):
        async def fake_fetch(relay, _filter, **_kwargs):
            return RelayFetch(relay=relay)

        relays = [Relay("wss://z.example.com"), Relay("wss://a.example.com")]
        with patch("nstatus.utils.protocol.fetch_relay", side_effect=fake_fetch):
            results = await fetch_many({r: MagicMock() for r in relays})
        assert [r.relay.url for r in results] == ["wss://a.example.com", "wss://z.example.com"]

    async def test_concurrency_cap(self):
        active = 0
        peak = 0

        async def fake_fetch(relay, _filter, **_kwargs):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return RelayFetch(relay=relay)

        relays = [Relay(f"wss://r{i}.example.com") for i in range(10)]
        with patch("nstatus.utils.protocol.fetch_relay", side_effect=fake_fetch):
            results = await fetch_many({r: MagicMock() for r in relays}, max_parallel=3)
        assert len(results) == 10
        assert peak <= 3


# ============================================================================
# publish_event
# ============================================================================


class TestPublishEvent:
    """Signed event fan-out."""

    async def test_outcomes_per_relay(self):
        clients = {
            "wss://a.example.com": mock_client(send_output=send_output(True)),
            "wss://b.example.com": mock_client(send_output=send_output(False, "blocked")),
        }

        async def fake_connect(relay, **_kwargs):
            if relay.url == "wss://c.example.com":
                raise OSError("Connection failed: refused")
            return clients[relay.url]

        event = MagicMock()
        urls = ("wss://c.example.com", "wss://a.example.com", "wss://b.example.com")
        relays = [Relay(u) for u in urls]
        with patch("nstatus.utils.protocol.connect_relay", side_effect=fake_connect):
            outcomes = await publish_event(event, relays, timeout=1)

        assert list(outcomes) == sorted(urls)
        assert outcomes["wss://a.example.com"] is None
        assert outcomes["wss://b.example.com"] == "blocked"
        assert "refused" in outcomes["wss://c.example.com"]
        for client in clients.values():
            client.send_event.assert_awaited_once_with(event)
            client.shutdown.assert_awaited_once()

    async def test_duplicate_relays_sent_once(self):
        client = mock_client(send_output=send_output(True))
        with patch("nstatus.utils.protocol.connect_relay", AsyncMock(return_value=client)) as conn:
            outcomes = await publish_event(
                MagicMock(), [Relay("wss://yabu.me"), Relay("wss://yabu.me/")], timeout=1
            )
        assert outcomes == {"wss://yabu.me": None}
        assert conn.await_count == 1

    async def test_no_relays(self):
        assert await publish_event(MagicMock(), []) == {}
