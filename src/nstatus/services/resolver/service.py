"""Relay list resolution for nstatus.

Determines, for the local user and for every followed identity, which relays
to read from and publish to:

1. **Own list** ([resolve_own()][nstatus.services.resolver.RelayResolver.resolve_own])
   -- queries the cached list's relays, then the discovery relays, then the
   defaults, for the newest kind 10002 event of the user.
2. **Followed lists** ([resolve_many()][nstatus.services.resolver.RelayResolver.resolve_many])
   -- fresh cached lists are used as-is; the rest are fetched with one
   multi-author query per relay instead of one connection per identity.
3. **Fetch plan** ([build_fetch_plan()][nstatus.services.resolver.RelayResolver.build_fetch_plan])
   -- inverts the per-identity relay sets into a relay-centric plan for the
   [TimelineFetcher][nstatus.services.timeline.TimelineFetcher].

Each identity moves through an explicit
[ResolutionState][nstatus.services.resolver.ResolutionState]::

    UNRESOLVED -> RESOLVING -> RESOLVED(relay_list) | FALLBACK(defaults)

Fallback lists contain every default relay as read and write, carry
``created_at=0``, and are never written to the cache.

See Also:
    [ResolverConfig][nstatus.services.resolver.ResolverConfig]: Configuration
        model for relay sets, timeouts and batching.
    [CacheStore][nstatus.core.cache_store.CacheStore]: Last-write-wins store
        for resolved lists.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from nostr_sdk import Filter, Kind, NostrSdkError, PublicKey

from nstatus.core.exceptions import (
    CacheError,
    CorruptCacheEntry,
    NoConnectableRelays,
    PublishFailed,
)
from nstatus.core.logger import Logger
from nstatus.models import CacheKind, EventKind, Relay, RelayList, ServiceName
from nstatus.nips.event_builders import build_relay_list_event
from nstatus.nips.parsing import parse_relay_list_event
from nstatus.services.common.utils import chunked, observe_relay_requests
from nstatus.utils.protocol import connect_relay, fetch_many, publish_event, sign_event

from .configs import ResolverConfig


if TYPE_CHECKING:
    from nostr_sdk import Keys

    from nstatus.core.cache_store import CacheStore
    from nstatus.models import RelayDescriptor
    from nstatus.utils.protocol import RelayFetch


# =============================================================================
# Resolution State
# =============================================================================


class ResolutionPhase(StrEnum):
    """Lifecycle of one identity's relay list resolution."""

    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    FALLBACK = "fallback"


@dataclass(frozen=True, slots=True)
class ResolutionState:
    """Tagged resolution state for one identity.

    ``relay_list`` is set in the ``RESOLVED`` and ``FALLBACK`` phases;
    ``error`` records why the last attempt ended in ``UNRESOLVED`` or
    ``FALLBACK``.
    """

    phase: ResolutionPhase = ResolutionPhase.UNRESOLVED
    relay_list: RelayList | None = None
    error: str | None = None

    @property
    def is_settled(self) -> bool:
        return self.phase in (ResolutionPhase.RESOLVED, ResolutionPhase.FALLBACK)


_UNRESOLVED = ResolutionState()


def _relay_list_filter(authors: Iterable[str], limit: int) -> Filter:
    return (
        Filter()
        .kinds([Kind(EventKind.RELAY_LIST)])
        .authors([PublicKey.parse(pk) for pk in authors])
        .limit(limit)
    )


def _unique(relays: Iterable[Relay]) -> list[Relay]:
    seen: dict[str, Relay] = {}
    for relay in relays:
        seen.setdefault(relay.url, relay)
    return list(seen.values())


def plan_relays(relay_list: RelayList) -> tuple[Relay, ...]:
    """Relays to query for statuses of the list's owner.

    The read relays, or the write relays when the list has no read relay.
    """
    return relay_list.read_relays or relay_list.write_relays


# =============================================================================
# Resolver
# =============================================================================


class RelayResolver:
    """Resolves NIP-65 relay lists with cache, discovery and fallback.

    The resolver is not a loop service; the
    [Session][nstatus.services.session.Session] drives it.
    """

    COMPONENT_NAME = ServiceName.RESOLVER

    def __init__(
        self,
        store: CacheStore,
        config: ResolverConfig | None = None,
        *,
        keys: Keys | None = None,
    ) -> None:
        self._store = store
        self._config = config or ResolverConfig()
        self._keys = keys
        self._logger = Logger(self.COMPONENT_NAME)
        self._states: dict[str, ResolutionState] = {}

    @property
    def config(self) -> ResolverConfig:
        return self._config

    @property
    def default_relays(self) -> tuple[Relay, ...]:
        return self._config.relays.default_relays

    def state(self, pubkey: str) -> ResolutionState:
        """Current resolution state of *pubkey* (``UNRESOLVED`` if never seen)."""
        return self._states.get(pubkey, _UNRESOLVED)

    def fallback(self, pubkey: str) -> RelayList:
        return RelayList.fallback(pubkey, self.default_relays)

    def reset(self) -> None:
        """Forget every resolution state (used on logout)."""
        self._states.clear()

    def _set(self, pubkey: str, state: ResolutionState) -> None:
        self._states[pubkey] = state

    # -------------------------------------------------------------------------
    # Cache Access
    # -------------------------------------------------------------------------

    async def _cached(self, pubkey: str) -> RelayList | None:
        try:
            return await self._store.get_relay_list(pubkey)
        except CorruptCacheEntry as e:
            self._logger.warning("cached_relay_list_corrupt", pubkey=pubkey, error=str(e))
            return None

    async def _cached_fresh(self, pubkey: str) -> tuple[RelayList | None, bool]:
        """Return the cached list and whether it is within ``cache_ttl``."""
        try:
            entry = await self._store.get(CacheKind.RELAY_LIST, pubkey)
            if entry is None:
                return None, False
            relay_list = RelayList.from_dict(entry.plain_value())
        except (CorruptCacheEntry, KeyError, ValueError, TypeError) as e:
            self._logger.warning("cached_relay_list_corrupt", pubkey=pubkey, error=str(e))
            return None, False
        fresh = not entry.is_stale(self._config.cache_ttl)
        return relay_list, fresh

    # -------------------------------------------------------------------------
    # Event Selection
    # -------------------------------------------------------------------------

    def _newest_by_author(
        self, results: Iterable[RelayFetch], authors: Iterable[str]
    ) -> dict[str, tuple[RelayList, str]]:
        """Pick the newest valid relay list per author across all relay results."""
        wanted = set(authors)
        newest: dict[str, tuple[RelayList, str]] = {}
        for result in results:
            if not result.ok:
                continue
            for event in result.events:
                try:
                    relay_list = parse_relay_list_event(event)
                except (ValueError, TypeError) as e:
                    self._logger.debug("relay_list_invalid", relay=result.relay.url, error=str(e))
                    continue
                if relay_list.owner not in wanted:
                    continue
                event_id = event.id().to_hex()
                current = newest.get(relay_list.owner)
                if current is None or (relay_list.created_at, event_id) > (
                    current[0].created_at,
                    current[1],
                ):
                    newest[relay_list.owner] = (relay_list, event_id)
        return newest

    async def _store_newer(self, found: RelayList, cached: RelayList | None) -> RelayList:
        """Write *found* through to the cache and return the winning list."""
        await self._store.put_relay_list(found)
        if cached is not None and not found.supersedes(cached):
            return cached
        return found

    # -------------------------------------------------------------------------
    # Own Relay List
    # -------------------------------------------------------------------------

    async def resolve_own(self, pubkey: str) -> RelayList:
        """Resolve the local user's relay list.

        Returns:
            The newest known list, or the default set in the ``FALLBACK`` phase.

        Raises:
            NoConnectableRelays: If every queried relay was unreachable and no
                cached list exists.
        """
        self._set(pubkey, ResolutionState(ResolutionPhase.RESOLVING))
        cached = await self._cached(pubkey)

        query_set = _unique(
            [
                *(cached.relays if cached else ()),
                *self._config.relays.discovery_relays,
                *self.default_relays,
            ]
        )
        event_filter = _relay_list_filter([pubkey], limit=1)
        results = await fetch_many(
            dict.fromkeys(query_set, event_filter),
            timeout=self._config.fetch.timeout,
            max_parallel=self._config.fetch.max_parallel,
            keys=self._keys,
        )
        observe_relay_requests(self.COMPONENT_NAME, results)
        reachable = [r for r in results if r.ok]
        self._logger.info(
            "own_relay_list_queried",
            relays=len(results),
            reachable=len(reachable),
        )

        newest = self._newest_by_author(reachable, [pubkey]).get(pubkey)
        if newest is not None:
            relay_list = await self._store_newer(newest[0], cached)
            self._set(pubkey, ResolutionState(ResolutionPhase.RESOLVED, relay_list))
            return relay_list

        if cached is not None:
            self._set(pubkey, ResolutionState(ResolutionPhase.RESOLVED, cached))
            return cached

        if not reachable:
            error = "no relay reachable"
            self._set(pubkey, ResolutionState(ResolutionPhase.UNRESOLVED, error=error))
            raise NoConnectableRelays(
                error,
                attempted=[r.relay.url for r in results],
                operation="resolve_own",
            )

        self._logger.info("own_relay_list_fallback", pubkey=pubkey)
        return self._fall_back(pubkey, "no relay list event")

    async def connect_own(self, relay_list: RelayList) -> tuple[Relay, ...]:
        """Connect to the list's write relays, falling back to the defaults.

        Returns:
            The relays that accepted a connection.

        Raises:
            NoConnectableRelays: If neither the list nor the defaults connect.
        """
        candidates = relay_list.write_relays or relay_list.relays
        connected = await self._try_connect(candidates)
        if connected:
            return connected

        self._logger.warning("own_relays_unreachable", attempted=len(candidates))
        connected = await self._try_connect(self.default_relays)
        if connected:
            return connected

        raise NoConnectableRelays(
            "neither the relay list nor the default relays accepted a connection",
            attempted=[r.url for r in _unique([*candidates, *self.default_relays])],
            operation="connect_own",
        )

    async def _try_connect(self, relays: Iterable[Relay]) -> tuple[Relay, ...]:
        semaphore = asyncio.Semaphore(self._config.fetch.max_parallel)

        async def _try(relay: Relay) -> Relay | None:
            async with semaphore:
                try:
                    async with asyncio.timeout(self._config.fetch.timeout):
                        client = await connect_relay(
                            relay, keys=self._keys, timeout=self._config.fetch.timeout
                        )
                except (OSError, TimeoutError, ValueError, NostrSdkError) as e:
                    self._logger.debug("relay_connect_failed", relay=relay.url, error=str(e))
                    return None
                # nostr-sdk Rust FFI can raise arbitrary exception types during shutdown.
                with contextlib.suppress(Exception):
                    await client.shutdown()
                return relay

        async with asyncio.TaskGroup() as tg:
            tasks = [tg.create_task(_try(relay)) for relay in _unique(relays)]
        return tuple(r for t in tasks if (r := t.result()) is not None)

    # -------------------------------------------------------------------------
    # Followed Relay Lists
    # -------------------------------------------------------------------------

    async def resolve_many(self, pubkeys: Iterable[str]) -> dict[str, RelayList]:
        """Resolve relay lists for many identities.

        Cached lists within ``cache_ttl`` are used without a network query.
        The rest are fetched in author batches, one query per relay per
        batch, from the discovery relays, the defaults and any relay already
        known from cached lists. A failure for one identity never affects the
        others; unresolvable identities get the default set.
        """
        targets = sorted(set(pubkeys))
        if not targets:
            return {}

        semaphore = asyncio.Semaphore(self._config.fetch.max_parallel)
        unreadable: dict[str, str] = {}

        async def _lookup(pubkey: str) -> tuple[str, RelayList | None, bool]:
            async with semaphore:
                self._set(pubkey, ResolutionState(ResolutionPhase.RESOLVING))
                try:
                    cached, fresh = await self._cached_fresh(pubkey)
                except CacheError as e:
                    self._logger.warning(
                        "cached_relay_list_unreadable", pubkey=pubkey, error=str(e)
                    )
                    unreadable[pubkey] = str(e)
                    return pubkey, None, False
                return pubkey, cached, fresh

        async with asyncio.TaskGroup() as tg:
            lookups = [tg.create_task(_lookup(pk)) for pk in targets]

        resolved: dict[str, RelayList] = {}
        cached_lists: dict[str, RelayList] = {}
        pending: list[str] = []
        for task in lookups:
            pubkey, cached, fresh = task.result()
            if cached is not None:
                cached_lists[pubkey] = cached
            if cached is not None and fresh and self._config.use_cache_ttl:
                resolved[pubkey] = cached
                self._set(pubkey, ResolutionState(ResolutionPhase.RESOLVED, cached))
            else:
                pending.append(pubkey)

        if pending:
            found = await self._fetch_batched(pending, cached_lists)
            for pubkey in pending:
                try:
                    resolved[pubkey] = await self._settle(
                        pubkey, found.get(pubkey), cached_lists, unreadable.get(pubkey)
                    )
                except CacheError as e:
                    self._logger.warning("relay_list_not_stored", pubkey=pubkey, error=str(e))
                    resolved[pubkey] = self._fall_back(pubkey, str(e))

        self._logger.info(
            "relay_lists_resolved",
            total=len(targets),
            from_cache=len(targets) - len(pending),
            fetched=len(pending),
            fallback=sum(
                1 for pk in targets if self.state(pk).phase == ResolutionPhase.FALLBACK
            ),
        )
        return resolved

    async def _fetch_batched(
        self, pending: list[str], cached_lists: Mapping[str, RelayList]
    ) -> dict[str, RelayList]:
        hinted = [
            relay for pk in pending if pk in cached_lists for relay in cached_lists[pk].relays
        ]
        query_set = _unique(
            [*self._config.relays.discovery_relays, *self.default_relays, *hinted]
        )

        found: dict[str, tuple[RelayList, str]] = {}
        for batch in chunked(pending, self._config.batch_size):
            event_filter = _relay_list_filter(batch, limit=len(batch))
            results = await fetch_many(
                dict.fromkeys(query_set, event_filter),
                timeout=self._config.fetch.timeout,
                max_parallel=self._config.fetch.max_parallel,
                keys=self._keys,
            )
            observe_relay_requests(self.COMPONENT_NAME, results)
            failed = [r for r in results if not r.ok]
            if failed:
                self._logger.debug(
                    "relay_list_batch_partial", batch=len(batch), relays_failed=len(failed)
                )
            for owner, candidate in self._newest_by_author(results, batch).items():
                current = found.get(owner)
                if current is None or (candidate[0].created_at, candidate[1]) > (
                    current[0].created_at,
                    current[1],
                ):
                    found[owner] = candidate
        return {owner: pair[0] for owner, pair in found.items()}

    async def _settle(
        self,
        pubkey: str,
        found: RelayList | None,
        cached_lists: Mapping[str, RelayList],
        cache_error: str | None = None,
    ) -> RelayList:
        cached = cached_lists.get(pubkey)
        if found is not None:
            relay_list = await self._store_newer(found, cached)
            self._set(pubkey, ResolutionState(ResolutionPhase.RESOLVED, relay_list))
            return relay_list
        if cached is not None:
            self._set(pubkey, ResolutionState(ResolutionPhase.RESOLVED, cached))
            return cached
        return self._fall_back(pubkey, cache_error or "no relay list event")

    def _fall_back(self, pubkey: str, error: str) -> RelayList:
        fallback = self.fallback(pubkey)
        self._set(pubkey, ResolutionState(ResolutionPhase.FALLBACK, fallback, error=error))
        return fallback

    # -------------------------------------------------------------------------
    # Fetch Plan
    # -------------------------------------------------------------------------

    @staticmethod
    def build_fetch_plan(relay_lists: Mapping[str, RelayList]) -> dict[str, frozenset[str]]:
        """Invert per-identity relay sets into ``relay_url -> authors``.

        Each identity is assigned to its read relays; a list with no read
        relay contributes its write relays instead. Keys are sorted by URL.
        """
        plan: dict[str, set[str]] = {}
        for pubkey, relay_list in relay_lists.items():
            for relay in plan_relays(relay_list):
                plan.setdefault(relay.url, set()).add(pubkey)
        return {url: frozenset(plan[url]) for url in sorted(plan)}

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def publish_relay_list(
        self, keys: Keys, descriptors: Iterable[RelayDescriptor]
    ) -> RelayList:
        """Sign and publish a new relay list for the key owner.

        The event goes to the union of the previous and the new write relays;
        at least one must accept it. The accepted list is written to the
        cache and becomes the owner's ``RESOLVED`` state.

        Raises:
            ValueError: If *descriptors* is empty.
            PublishFailed: If no relay accepted the event.
        """
        owner = keys.public_key().to_hex()
        draft = RelayList(owner, frozenset(descriptors), int(time.time()))
        if not draft.descriptors:
            raise ValueError("a relay list must contain at least one relay")

        previous = self.state(owner).relay_list or await self._cached(owner)
        event = await sign_event(build_relay_list_event(draft), keys)
        relay_list = parse_relay_list_event(event)

        targets = _unique([*(previous.write_relays if previous else ()), *relay_list.write_relays])
        outcomes = await publish_event(
            event,
            targets,
            timeout=self._config.fetch.timeout,
            max_parallel=self._config.fetch.max_parallel,
            keys=keys,
        )
        if not any(reason is None for reason in outcomes.values()):
            raise PublishFailed(outcomes, operation="publish_relay_list")

        await self._store.put_relay_list(relay_list)
        self._set(owner, ResolutionState(ResolutionPhase.RESOLVED, relay_list))
        self._logger.info(
            "relay_list_published",
            relays=len(relay_list.descriptors),
            accepted=sum(1 for reason in outcomes.values() if reason is None),
            targets=len(targets),
        )
        return relay_list
