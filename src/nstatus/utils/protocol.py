"""Nostr protocol client operations.

Provides the client factory, per-relay connection, bounded concurrent
fetching, and signed-event publishing used by the resolver and timeline
services. Every relay gets its own short-lived ``nostr_sdk.Client`` so that
one slow or broken relay cannot stall or poison requests to the others.

Fetch and publish helpers **never raise for relay-level failures**: a
timeout, refused connection, or malformed response is reported on the
returned [RelayFetch][nstatus.utils.protocol.RelayFetch] or in the publish
outcome map. ``asyncio.CancelledError`` always propagates.

Attributes:
    create_client: Client factory with an optional signer.
    sign_event: Sign an event builder once with local keys.
    connect_relay: Connect a single relay, raising on failure.
    fetch_relay: Fetch and verify events from one relay.
    fetch_many: Fan out per-relay filters under a concurrency cap.
    publish_event: Send one signed event to many relays.

Examples:
    ```python
    from nostr_sdk import Filter, Kind

    f = Filter().kinds([Kind(10002)]).authors([pk]).limit(1)
    results = await fetch_many({relay: f for relay in relays}, timeout=10, max_parallel=8)
    ok = [r for r in results if r.ok]
    ```
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Final

from nostr_sdk import Client, ClientBuilder, NostrSdkError, NostrSigner, RelayUrl

from nstatus.models.constants import NetworkType


if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from nostr_sdk import Event, EventBuilder, Filter, Keys

    from nstatus.models.relay import Relay


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT: Final[float] = 10.0

_RELAY_ERRORS = (OSError, TimeoutError, NostrSdkError, ValueError)


@dataclass(slots=True)
class RelayFetch:
    """Result of querying one relay.

    Attributes:
        relay: The relay that was queried.
        events: Signature-verified events, in relay order.
        invalid: Events dropped because verification failed or raised.
        error: Failure reason; ``None`` when the relay answered.
        elapsed: Wall-clock seconds spent on this relay.
    """

    relay: Relay
    events: list[Event] = field(default_factory=list)
    invalid: int = 0
    error: str | None = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


def create_client(keys: Keys | None = None) -> Client:
    """Create a Nostr client, optionally with a signer for NIP-42 auth.

    Returns:
        Configured ``Client`` instance (call ``add_relay()`` before use).
    """
    builder = ClientBuilder()
    if keys is not None:
        builder = builder.signer(NostrSigner.keys(keys))
    return builder.build()


async def sign_event(builder: EventBuilder, keys: Keys) -> Event:
    """Sign *builder* with *keys*, producing the one event sent to every relay."""
    return await builder.finalize(NostrSigner.keys(keys))


async def connect_relay(
    relay: Relay,
    keys: Keys | None = None,
    timeout: float = DEFAULT_TIMEOUT,  # noqa: ASYNC109
) -> Client:
    """Connect a dedicated client to *relay*.

    Raises:
        ValueError: If the relay is on an overlay network (no proxy support).
        OSError: If the connection is refused or fails.
    """
    if relay.network in (NetworkType.TOR, NetworkType.I2P, NetworkType.LOKI):
        raise ValueError(f"{relay.network} relays require a proxy: {relay.url}")

    relay_url = RelayUrl.parse(relay.url)
    client = create_client(keys)
    await client.add_relay(relay_url)
    output = await client.try_connect(timedelta(seconds=timeout))

    if relay_url in output.success:
        logger.debug("relay_connected relay=%s", relay.url)
        return client

    error_message = output.failed.get(relay_url, "Unknown error")
    with contextlib.suppress(Exception):
        await client.shutdown()
    raise OSError(f"Connection failed: {relay.url} ({error_message})")


async def _shutdown(client: Client | None) -> None:
    if client is not None:
        # nostr-sdk Rust FFI can raise arbitrary exception types during shutdown.
        with contextlib.suppress(Exception):
            await client.shutdown()


def verify_events(events: Iterable[Event]) -> tuple[list[Event], int]:
    """Split *events* into signature-verified events and an invalid count."""
    valid: list[Event] = []
    invalid = 0
    for evt in events:
        try:
            ok = evt.verify()
        except (ValueError, TypeError, OverflowError, NostrSdkError):
            ok = False
        if ok:
            valid.append(evt)
        else:
            invalid += 1
    return valid, invalid


async def fetch_relay(
    relay: Relay,
    event_filter: Filter,
    *,
    timeout: float = DEFAULT_TIMEOUT,  # noqa: ASYNC109
    keys: Keys | None = None,
) -> RelayFetch:
    """Connect to *relay*, run one query, and verify the results.

    The whole exchange (connect and fetch) runs inside one
    ``asyncio.timeout(timeout)``.
    """
    result = RelayFetch(relay=relay)
    start = time.monotonic()
    client: Client | None = None
    try:
        async with asyncio.timeout(timeout):
            client = await connect_relay(relay, keys=keys, timeout=timeout)
            events = await client.fetch_events(event_filter, timedelta(seconds=timeout))
            result.events, result.invalid = verify_events(events.to_vec())
    except TimeoutError:
        result.error = "timeout"
    except _RELAY_ERRORS as e:
        result.error = str(e) or type(e).__name__
    finally:
        await _shutdown(client)
        result.elapsed = time.monotonic() - start

    if result.ok:
        logger.debug(
            "relay_fetched relay=%s events=%s invalid=%s",
            relay.url,
            len(result.events),
            result.invalid,
        )
    else:
        logger.debug("relay_fetch_failed relay=%s error=%s", relay.url, result.error)
    return result


async def fetch_many(
    requests: Mapping[Relay, Filter],
    *,
    timeout: float = DEFAULT_TIMEOUT,  # noqa: ASYNC109
    max_parallel: int = 8,
    keys: Keys | None = None,
) -> list[RelayFetch]:
    """Run one query per relay concurrently, at most *max_parallel* at a time.

    Returns:
        One [RelayFetch][nstatus.utils.protocol.RelayFetch] per relay, sorted
        by relay URL.
    """
    if not requests:
        return []

    semaphore = asyncio.Semaphore(max_parallel)

    async def _bounded(relay: Relay, event_filter: Filter) -> RelayFetch:
        async with semaphore:
            return await fetch_relay(relay, event_filter, timeout=timeout, keys=keys)

    async with asyncio.TaskGroup() as tg:
        tasks = [tg.create_task(_bounded(relay, f)) for relay, f in requests.items()]

    return sorted((t.result() for t in tasks), key=lambda r: r.relay.url)


async def publish_event(
    event: Event,
    relays: Iterable[Relay],
    *,
    timeout: float = DEFAULT_TIMEOUT,  # noqa: ASYNC109
    max_parallel: int = 8,
    keys: Keys | None = None,
) -> dict[str, str | None]:
    """Send an already signed *event* to every relay.

    The event is signed once by the caller, so every relay receives the
    identical event id.

    Returns:
        Map of relay URL to ``None`` (accepted) or the failure reason.
    """
    semaphore = asyncio.Semaphore(max_parallel)

    async def _send(relay: Relay) -> tuple[str, str | None]:
        client: Client | None = None
        async with semaphore:
            try:
                async with asyncio.timeout(timeout):
                    client = await connect_relay(relay, keys=keys, timeout=timeout)
                    output = await client.send_event(event)
                if output.success:
                    return relay.url, None
                reasons = [str(reason) for reason in output.failed.values()]
                return relay.url, "; ".join(reasons) or "rejected"
            except TimeoutError:
                return relay.url, "timeout"
            except _RELAY_ERRORS as e:
                return relay.url, str(e) or type(e).__name__
            finally:
                await _shutdown(client)

    unique = {relay.url: relay for relay in relays}
    async with asyncio.TaskGroup() as tg:
        tasks = [tg.create_task(_send(relay)) for relay in unique.values()]

    outcomes = dict(sorted(t.result() for t in tasks))
    for url, reason in outcomes.items():
        if reason is not None:
            logger.warning("publish_rejected relay=%s reason=%s", url, reason)
    return outcomes
