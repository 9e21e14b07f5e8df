"""Timeline fetching for nstatus.

Collects NIP-38 statuses of followed identities following a relay-centric
fetch plan produced by
[RelayResolver.build_fetch_plan()][nstatus.services.resolver.RelayResolver.build_fetch_plan]:

1. One kind 30315 query per relay, authored by the identities assigned to
   that relay (intersected with the follow list).
2. Queries fan out under a semaphore cap, each inside its own
   ``asyncio.timeout``; an unreachable or misbehaving relay is skipped.
3. Verified events are folded into a [Timeline][nstatus.models.timeline.Timeline]
   (newest per ``(author, kind)``) and written through to the cache.

Events failing signature verification, authored by someone not assigned to
the relay, of the wrong kind, or without a ``d`` tag are discarded and
counted in ``invalid_events``.

The same module publishes the user's own status, profile and follow list,
and fetches the profiles and the follow list that drive the timeline.

See Also:
    [TimelineConfig][nstatus.services.timeline.TimelineConfig]: Limits and
        per-relay timeout.
    [fetch_many][nstatus.utils.protocol.fetch_many]: Bounded concurrent
        per-relay queries with signature verification.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from nostr_sdk import Filter, Kind, PublicKey, Timestamp

from nstatus.core.exceptions import (
    CorruptCacheEntry,
    PartialRelayFailure,
    PublishFailed,
    TimelineFetchFailed,
)
from nstatus.core.logger import Logger
from nstatus.models import (
    EventKind,
    FollowList,
    ProfileMetadata,
    Relay,
    ServiceName,
    StatusKind,
    Timeline,
)
from nstatus.nips.event_builders import (
    build_contacts_event,
    build_profile_event,
    build_status_event,
)
from nstatus.nips.parsing import (
    parse_contacts_event,
    parse_metadata_event,
    parse_status_event,
)
from nstatus.services.common.utils import chunked, observe_relay_requests
from nstatus.utils.protocol import fetch_many, publish_event, sign_event

from .configs import TimelineConfig


if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from nostr_sdk import Event, EventBuilder, Keys

    from nstatus.core.cache_store import CacheStore
    from nstatus.models import StatusEvent
    from nstatus.utils.protocol import RelayFetch


@dataclass(slots=True)
class TimelineFetchResult:
    """Outcome of one timeline fetch.

    Attributes:
        timeline: Newest status per ``(author, kind)`` across all relays.
        relays_ok: Relays that answered (possibly with zero events).
        relays_skipped: Relays that timed out, refused, or failed.
        invalid_events: Events discarded by verification or assignment checks.
        skipped: Relay URL mapped to the reason it was skipped.
    """

    timeline: Timeline = field(default_factory=Timeline)
    relays_ok: int = 0
    relays_skipped: int = 0
    invalid_events: int = 0
    skipped: dict[str, str] = field(default_factory=dict)

    @property
    def partial_failure(self) -> PartialRelayFailure | None:
        """Informational record of skipped relays, ``None`` when all answered."""
        if not self.skipped:
            return None
        return PartialRelayFailure(self.skipped, operation="fetch_followed_statuses")


class TimelineFetcher:
    """Fetches and publishes statuses, profiles and follow lists.

    The fetcher is not a loop service; the
    [Session][nstatus.services.session.Session] drives it.
    """

    COMPONENT_NAME = ServiceName.TIMELINE

    def __init__(
        self,
        store: CacheStore,
        config: TimelineConfig | None = None,
        *,
        keys: Keys | None = None,
    ) -> None:
        self._store = store
        self._config = config or TimelineConfig()
        self._keys = keys
        self._logger = Logger(self.COMPONENT_NAME)

    @property
    def config(self) -> TimelineConfig:
        return self._config

    async def _fetch(self, requests: Mapping[Relay, Filter]) -> list[RelayFetch]:
        results = await fetch_many(
            requests,
            timeout=self._config.fetch.timeout,
            max_parallel=self._config.fetch.max_parallel,
            keys=self._keys,
        )
        observe_relay_requests(self.COMPONENT_NAME, results)
        return results

    # -------------------------------------------------------------------------
    # Statuses
    # -------------------------------------------------------------------------

    def _status_filter(self, authors: Iterable[str]) -> Filter:
        event_filter = (
            Filter()
            .kinds([Kind(EventKind.USER_STATUS)])
            .authors([PublicKey.parse(pk) for pk in sorted(authors)])
            .limit(self._config.limit)
        )
        if self._config.since is not None:
            event_filter = event_filter.since(Timestamp.from_secs(self._config.since))
        return event_filter

    def _accept(self, event: Event, assigned: frozenset[str]) -> StatusEvent | None:
        author = event.author().to_hex()
        if author not in assigned:
            self._logger.debug("status_author_unassigned", author=author)
            return None
        try:
            return parse_status_event(event)
        except (ValueError, TypeError) as e:
            self._logger.debug("status_event_invalid", author=author, error=str(e))
            return None

    async def fetch_followed_statuses(
        self,
        follow_list: FollowList,
        fetch_plan: Mapping[str, frozenset[str]],
    ) -> TimelineFetchResult:
        """Fetch the newest statuses of followed identities.

        The fetched statuses are merged into the cached statuses of the
        followed identities, so relays serving older data than the cache
        never move an entry backwards.

        Args:
            follow_list: Identities whose statuses belong on the timeline.
            fetch_plan: Relay URL mapped to the identities to query there.

        Returns:
            The merged timeline with per-relay counts. Relays that failed
            are listed in ``skipped``.

        Raises:
            TimelineFetchFailed: If the plan was non-empty and every relay
                failed.
        """
        assignments: dict[Relay, frozenset[str]] = {}
        for url, authors in fetch_plan.items():
            assigned = frozenset(authors) & follow_list.followed
            if assigned:
                assignments[Relay(url)] = assigned

        cached = Timeline().merge(await self._store.statuses(follow_list.followed))
        result = TimelineFetchResult(timeline=cached)
        if not assignments:
            return result

        results = await self._fetch(
            {relay: self._status_filter(authors) for relay, authors in assignments.items()}
        )

        timeline = cached
        for fetched in results:
            if not fetched.ok:
                result.relays_skipped += 1
                result.skipped[fetched.relay.url] = fetched.error or "failed"
                self._logger.warning(
                    "relay_skipped", relay=fetched.relay.url, error=fetched.error
                )
                continue

            result.relays_ok += 1
            result.invalid_events += fetched.invalid
            accepted: list[StatusEvent] = []
            for event in fetched.events:
                status = self._accept(event, assignments[fetched.relay])
                if status is None:
                    result.invalid_events += 1
                else:
                    accepted.append(status)
            timeline = timeline.merge(accepted)

        if result.relays_ok == 0:
            raise TimelineFetchFailed(result.skipped, operation="fetch_followed_statuses")

        for status in timeline.entries():
            if cached.get(status.author, status.kind) is not status:
                await self._store.put_status(status)

        result.timeline = timeline
        self._logger.info(
            "timeline_fetched",
            relays_ok=result.relays_ok,
            relays_skipped=result.relays_skipped,
            invalid_events=result.invalid_events,
            entries=len(timeline),
        )
        return result

    async def cached_timeline(self, follow_list: FollowList | None) -> Timeline:
        """Build the timeline from the cache alone.

        Without a follow list the view is empty; expired statuses are hidden
        when ``hide_expired`` is set.
        """
        if follow_list is None or not follow_list.followed:
            return Timeline()
        timeline = Timeline().merge(await self._store.statuses(follow_list.followed))
        if self._config.hide_expired:
            timeline = timeline.without_expired(int(time.time()))
        return timeline

    async def _publish(
        self, keys: Keys, builder: EventBuilder, relays: Iterable[Relay], operation: str
    ) -> Event:
        """Sign *builder* once and send it to *relays*; one acceptance suffices.

        Raises:
            PublishFailed: If no relay accepted the event.
        """
        event = await sign_event(builder, keys)
        outcomes = await publish_event(
            event,
            list(relays),
            timeout=self._config.fetch.timeout,
            max_parallel=self._config.fetch.max_parallel,
            keys=keys,
        )
        accepted = sum(1 for reason in outcomes.values() if reason is None)
        if not accepted:
            raise PublishFailed(outcomes, operation=operation)
        self._logger.info(
            "event_published",
            operation=operation,
            event_id=event.id().to_hex(),
            accepted=accepted,
            targets=len(outcomes),
        )
        return event

    async def publish_status(
        self,
        keys: Keys,
        write_relays: Iterable[Relay],
        content: str,
        kind: StatusKind | str = StatusKind.GENERAL,
        *,
        url: str | None = None,
        expiration: int | None = None,
    ) -> str:
        """Sign a kind 30315 status once and send it to every write relay.

        Returns:
            The hex id of the published event.

        Raises:
            ValueError: If the content is too long or the kind is empty.
            PublishFailed: If no write relay accepted the event.
        """
        builder = build_status_event(content, kind, url=url, expiration=expiration)
        event = await self._publish(keys, builder, write_relays, "publish_status")
        await self._store.put_status(parse_status_event(event))
        return event.id().to_hex()

    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------

    async def fetch_profiles(
        self, pubkeys: Iterable[str], relays: Iterable[Relay]
    ) -> dict[str, ProfileMetadata]:
        """Fetch kind 0 profiles for *pubkeys* and write them through.

        Per-relay failures are logged and tolerated; when every relay fails
        the result is simply empty.

        Returns:
            The newest fetched profile per author (authors without a fetched
            profile are absent).
        """
        authors = sorted(set(pubkeys))
        targets = list(dict.fromkeys(relays))
        if not authors or not targets:
            return {}

        newest: dict[str, ProfileMetadata] = {}
        skipped = 0
        for batch in chunked(authors, self._config.profile_batch_size):
            wanted = set(batch)
            event_filter = (
                Filter()
                .kinds([Kind(EventKind.METADATA)])
                .authors([PublicKey.parse(pk) for pk in batch])
                .limit(len(batch))
            )
            for fetched in await self._fetch(dict.fromkeys(targets, event_filter)):
                if not fetched.ok:
                    skipped += 1
                    continue
                for event in fetched.events:
                    try:
                        profile = parse_metadata_event(event)
                    except (ValueError, TypeError) as e:
                        self._logger.debug("profile_event_invalid", error=str(e))
                        continue
                    if profile.pubkey in wanted and profile.supersedes(newest.get(profile.pubkey)):
                        newest[profile.pubkey] = profile

        for profile in newest.values():
            await self._store.put_profile(profile)

        self._logger.info(
            "profiles_fetched", requested=len(authors), found=len(newest), relays_skipped=skipped
        )
        return newest

    async def publish_profile(
        self, keys: Keys, write_relays: Iterable[Relay], profile: ProfileMetadata
    ) -> ProfileMetadata:
        """Publish *profile* as the key owner's kind 0 event and cache it.

        The owner and timestamp of the result come from the signed event.

        Raises:
            PublishFailed: If no write relay accepted the event.
        """
        builder = build_profile_event(profile)
        event = await self._publish(keys, builder, write_relays, "publish_profile")
        published = parse_metadata_event(event)
        await self._store.put_profile(published)
        return published

    # -------------------------------------------------------------------------
    # Follow List
    # -------------------------------------------------------------------------

    async def fetch_follow_list(self, pubkey: str, relays: Iterable[Relay]) -> FollowList | None:
        """Fetch the newest kind 3 follow list of *pubkey*.

        The newest list found on any relay is written through under
        last-write-wins. When no relay has one, the cached list (if any) is
        returned.
        """
        event_filter = (
            Filter().kinds([Kind(EventKind.CONTACTS)]).authors([PublicKey.parse(pubkey)]).limit(1)
        )
        results = await self._fetch(dict.fromkeys(relays, event_filter))

        found: tuple[FollowList, str] | None = None
        for fetched in results:
            if not fetched.ok:
                continue
            for event in fetched.events:
                try:
                    follow_list = parse_contacts_event(event)
                except (ValueError, TypeError) as e:
                    self._logger.debug("contacts_event_invalid", error=str(e))
                    continue
                if follow_list.owner != pubkey:
                    continue
                candidate = (follow_list, event.id().to_hex())
                if found is None or (follow_list.created_at, candidate[1]) > (
                    found[0].created_at,
                    found[1],
                ):
                    found = candidate

        try:
            cached = await self._store.get_follow_list(pubkey)
        except CorruptCacheEntry as e:
            self._logger.warning("cached_follow_list_corrupt", pubkey=pubkey, error=str(e))
            cached = None

        if found is None:
            self._logger.info(
                "follow_list_not_found",
                relays=len(results),
                reachable=sum(1 for r in results if r.ok),
                cached=cached is not None,
            )
            return cached

        await self._store.put_follow_list(found[0])
        if cached is not None and not found[0].supersedes(cached):
            return cached
        self._logger.info("follow_list_fetched", followed=len(found[0]))
        return found[0]

    async def publish_follow_list(
        self, keys: Keys, write_relays: Iterable[Relay], followed: Iterable[str]
    ) -> FollowList:
        """Publish a kind 3 follow list replacing the key owner's current one.

        Raises:
            ValueError: If an entry is not a hex public key.
            PublishFailed: If no write relay accepted the event.
        """
        owner = keys.public_key().to_hex()
        draft = FollowList(owner, frozenset(followed))
        builder = build_contacts_event(draft.followed)
        event = await self._publish(keys, builder, write_relays, "publish_follow_list")
        follow_list = parse_contacts_event(event)
        await self._store.put_follow_list(follow_list)
        return follow_list
