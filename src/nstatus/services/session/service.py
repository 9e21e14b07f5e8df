"""Client session for nstatus.

The [Session][nstatus.services.session.Session] is the upward interface a UI
layer talks to. It owns the unlocked signing key and drives the
[RelayResolver][nstatus.services.resolver.RelayResolver] and
[TimelineFetcher][nstatus.services.timeline.TimelineFetcher] against a shared
[CacheStore][nstatus.core.cache_store.CacheStore].

Unlocking proceeds as follows:

1. Load the encrypted key record (inline text or record file), or import the
   previous client's key from its ``config.json`` when no record exists.
2. Decrypt it in a worker thread (scrypt is deliberately slow).
3. Import the previous client's cache once, if configured.
4. Resolve the user's own relay list and connect to its write relays,
   falling back to the defaults.

Every public method is ``async`` and either returns a value or raises an
[NstatusError][nstatus.core.exceptions.NstatusError]. Anything unexpected is
wrapped in [SessionError][nstatus.core.exceptions.SessionError] carrying the
operation name and the cause. ``ValueError`` from input validation (status
too long, empty relay list) propagates unchanged.

Every network operation runs as a task owned by the session.
[logout()][nstatus.services.session.Session.logout] cancels those tasks
before closing the store, and their callers get
[SessionLocked][nstatus.core.exceptions.SessionLocked].

Note:
    ``run()`` performs one timeline refresh, so
    [run_forever()][nstatus.core.base_service.BaseService.run_forever]
    refreshes periodically with failure limits and metrics.

Examples:
    ```python
    from nstatus.core import CacheStore
    from nstatus.services import Session

    store = CacheStore.from_yaml("config/cache.yaml")
    session = Session.from_yaml("config/session.yaml", store=store)

    async with session:
        await session.unlock_session(passphrase)
        timeline = await session.current_timeline()
        await session.refresh_timeline()
        await session.publish_status("reading NIP-38")
        await session.follow("npub1...")
        await session.update_profile({"about": "nostr status client"})
    ```
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

from nstatus.core.base_service import BaseService
from nstatus.core.exceptions import (
    ConfigurationError,
    CorruptCacheEntry,
    NstatusError,
    PublishFailed,
    SessionError,
    SessionLocked,
)
from nstatus.core.metrics import MetricsServer
from nstatus.core.vault import KeyVault
from nstatus.models import (
    FollowList,
    ProfileMetadata,
    Relay,
    RelayDescriptor,
    RelayList,
    ServiceName,
    StatusKind,
    Timeline,
)
from nstatus.services.resolver import RelayResolver
from nstatus.services.timeline import TimelineFetcher, TimelineFetchResult
from nstatus.utils.keys import load_legacy_config, parse_pubkey, save_record

from .configs import SessionConfig


if TYPE_CHECKING:
    from collections.abc import Coroutine, Iterator, Mapping, Sequence
    from types import TracebackType

    from nostr_sdk import Keys

    from nstatus.core.cache_store import CacheStore
    from nstatus.models import EncryptedKeyRecord


T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RelayEdit:
    """One change to the user's relay list.

    ``read=False, write=False`` removes the relay.
    """

    url: str
    read: bool = True
    write: bool = True

    @property
    def removes(self) -> bool:
        return not (self.read or self.write)


class Session(BaseService[SessionConfig]):
    """Unlocked client session: key, own relays, timeline and publishing.

    See Also:
        [SessionConfig][nstatus.services.session.SessionConfig]:
            Configuration model for this service.
    """

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.SESSION
    CONFIG_CLASS: ClassVar[type[SessionConfig]] = SessionConfig

    def __init__(self, store: CacheStore, config: SessionConfig | None = None) -> None:
        super().__init__(store=store, config=config)
        self._config: SessionConfig
        self._vault = KeyVault(self._config.vault)
        self._keys: Keys | None = None
        self._pubkey: str | None = None
        self._resolver: RelayResolver | None = None
        self._fetcher: TimelineFetcher | None = None
        self._own_relays: RelayList | None = None
        self._connected: tuple[Relay, ...] = ()
        self._metrics_server = MetricsServer(self._config.metrics)
        self._tasks: set[asyncio.Task[Any]] = set()
        self._logged_out = False

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def is_unlocked(self) -> bool:
        return self._keys is not None

    @property
    def pubkey(self) -> str | None:
        return self._pubkey

    @property
    def own_relay_list(self) -> RelayList | None:
        return self._own_relays

    @property
    def connected_relays(self) -> tuple[Relay, ...]:
        return self._connected

    @contextlib.contextmanager
    def _errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (NstatusError, ValueError):
            raise
        except Exception as e:  # upward error boundary
            self._logger.error("operation_failed", operation=operation, error=str(e))
            raise SessionError(
                f"unexpected {type(e).__name__}", operation=operation, cause=e
            ) from e

    def _require_unlocked(self, operation: str) -> tuple[Keys, str, RelayResolver, TimelineFetcher]:
        if (
            self._keys is None
            or self._pubkey is None
            or self._resolver is None
            or self._fetcher is None
        ):
            reason = "session was logged out" if self._logged_out else "session is locked"
            raise SessionLocked(reason, operation=operation)
        return self._keys, self._pubkey, self._resolver, self._fetcher

    # -------------------------------------------------------------------------
    # Key Management
    # -------------------------------------------------------------------------

    async def register(self, secret_key: str | bytes, passphrase: str) -> EncryptedKeyRecord:
        """Encrypt *secret_key* and save it to the configured record file.

        Nothing is written when the config carries an inline record.

        Raises:
            InvalidKeyFormat: If the key is malformed.
            InvalidPassphrase: If the passphrase is empty.
        """
        with self._errors("register"):
            record = await asyncio.to_thread(self._vault.register, secret_key, passphrase)
            await self._persist(record)
            return record

    async def _persist(self, record: EncryptedKeyRecord) -> None:
        key_config = self._config.key
        if key_config.record is None and key_config.path is not None:
            path = await asyncio.to_thread(save_record, key_config.path, record)
            self._logger.info("key_record_saved", path=str(path))

    async def _load_keys(self, passphrase: str) -> Keys:
        key_config = self._config.key
        text = await asyncio.to_thread(key_config.load_text)
        if text is not None:
            return await asyncio.to_thread(self._vault.unlock_keys, text, passphrase)

        if key_config.legacy_config is None:
            raise ConfigurationError("no key record found", operation="unlock_session")

        try:
            legacy = await asyncio.to_thread(load_legacy_config, key_config.legacy_config)
        except (OSError, ValueError) as e:
            raise ConfigurationError(
                "previous client config could not be read", operation="unlock_session", cause=e
            ) from e
        record = await asyncio.to_thread(
            self._vault.import_legacy, legacy.encrypted_secret_key, legacy.salt, passphrase
        )
        await self._persist(record)
        return await asyncio.to_thread(self._vault.unlock_keys, record, passphrase)

    async def unlock_session(self, passphrase: str) -> str:
        """Unlock the signing key and bring the session online.

        Returns:
            The hex public key of the unlocked identity.

        Raises:
            SessionLocked: If the session was logged out.
            ConfigurationError: If no key record (or legacy config) exists.
            IncorrectPassphrase: If the passphrase is wrong.
            NoConnectableRelays: If no relay could be reached at all.
        """
        if self._logged_out:
            raise SessionLocked("session was logged out", operation="unlock_session")
        if self._pubkey is not None:
            return self._pubkey
        return await self._tracked("unlock_session", self._unlock(passphrase))

    async def _unlock(self, passphrase: str) -> str:
        with self._errors("unlock_session"):
            keys = await self._load_keys(passphrase)
            pubkey = keys.public_key().to_hex()

            if not self._store.pool.is_connected:
                await self._store.connect()

            legacy_path = self._store.config.legacy_path
            if self._config.migrate_legacy_cache and legacy_path is not None:
                report = await self._store.migrate_from_legacy(legacy_path)
                if report.failures:
                    self._logger.warning("legacy_cache_partial", failed=report.failed)

            resolver = RelayResolver(self._store, self._config.resolver, keys=keys)
            own = await resolver.resolve_own(pubkey)
            connected = await resolver.connect_own(own)
            await self._metrics_server.start()

            self._keys = keys
            self._pubkey = pubkey
            self._resolver = resolver
            self._fetcher = TimelineFetcher(self._store, self._config.timeline, keys=keys)
            self._own_relays = own
            self._connected = connected

            self._logger.info(
                "session_unlocked",
                pubkey=pubkey,
                own_relays=len(own.descriptors),
                connected=len(connected),
            )
            return pubkey

    # -------------------------------------------------------------------------
    # Tracked Operations
    # -------------------------------------------------------------------------

    def _track(self, task: asyncio.Task[Any]) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _tracked(self, operation: str, coro: Coroutine[Any, Any, T]) -> T:
        """Run *coro* as a task that [logout()][nstatus.services.session.Session.logout] cancels.

        Raises:
            SessionLocked: If logout cancelled the operation.
        """
        task = asyncio.create_task(coro)
        self._track(task)
        try:
            return await task
        except asyncio.CancelledError:
            caller = asyncio.current_task()
            if self._logged_out and task.cancelled() and not (caller and caller.cancelling()):
                raise SessionLocked("session was logged out", operation=operation) from None
            raise

    def _read_relays(self) -> tuple[Relay, ...]:
        return self._own_relays.relays if self._own_relays else self._connected

    def _write_relays(self) -> tuple[Relay, ...]:
        return (self._own_relays.write_relays if self._own_relays else ()) or self._connected

    @staticmethod
    def _profile_relays(resolver: RelayResolver) -> tuple[Relay, ...]:
        return (*resolver.config.relays.discovery_relays, *resolver.default_relays)

    # -------------------------------------------------------------------------
    # Timeline
    # -------------------------------------------------------------------------

    async def _cached_follow_list(self, pubkey: str) -> FollowList | None:
        try:
            return await self._store.get_follow_list(pubkey)
        except CorruptCacheEntry as e:
            self._logger.warning("cached_follow_list_corrupt", error=str(e))
            return None

    async def current_timeline(self) -> Timeline:
        """The cached timeline of followed identities, without network access."""
        _, pubkey, _, fetcher = self._require_unlocked("current_timeline")
        with self._errors("current_timeline"):
            return await fetcher.cached_timeline(await self._cached_follow_list(pubkey))

    async def refresh_timeline(self) -> TimelineFetchResult:
        """Fetch follow list, relay lists, statuses and profiles from relays.

        Profiles are fetched alongside the statuses; a profile failure is
        logged and counted without failing the refresh.

        Raises:
            TimelineFetchFailed: If every relay in the fetch plan failed.
            SessionLocked: If the session was logged out meanwhile.
        """
        _, pubkey, resolver, fetcher = self._require_unlocked("refresh_timeline")

        async def _refresh() -> TimelineFetchResult:
            with self._errors("refresh_timeline"):
                follow_list = await fetcher.fetch_follow_list(pubkey, self._read_relays())
                if follow_list is None or not follow_list.followed:
                    self._logger.info("refresh_skipped", reason="empty follow list")
                    return TimelineFetchResult()

                relay_lists = await resolver.resolve_many(follow_list.followed)
                fetch_plan = resolver.build_fetch_plan(relay_lists)

                profiles: asyncio.Task[Any] | None = None
                if self._config.fetch_profiles:
                    profiles = asyncio.create_task(
                        fetcher.fetch_profiles(
                            follow_list.followed, self._profile_relays(resolver)
                        )
                    )
                    self._track(profiles)

                try:
                    result = await fetcher.fetch_followed_statuses(follow_list, fetch_plan)
                except BaseException:
                    if profiles is not None:
                        profiles.cancel()
                        await asyncio.gather(profiles, return_exceptions=True)
                    raise
                if profiles is not None:
                    try:
                        await profiles
                    except NstatusError as e:
                        self._logger.warning("profile_fetch_failed", error=str(e))
                        self.inc_counter("profile_fetch_failed")

                self.set_gauge("relays_skipped", result.relays_skipped)
                self.set_gauge("invalid_events", result.invalid_events)
                self.set_gauge("timeline_entries", len(result.timeline))
                return result

        return await self._tracked("refresh_timeline", _refresh())

    async def run(self) -> None:
        """One refresh cycle, repeated by ``run_forever()``."""
        await self.refresh_timeline()

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    @contextlib.contextmanager
    def _counting_publish_failures(self) -> Iterator[None]:
        try:
            yield
        except PublishFailed:
            self.inc_counter("publish_failed")
            raise

    async def publish_status(
        self,
        content: str,
        kind: StatusKind | str = StatusKind.GENERAL,
        *,
        url: str | None = None,
        expiration: int | None = None,
    ) -> str:
        """Publish a NIP-38 status to the user's write relays.

        Returns:
            The hex event id.

        Raises:
            ValueError: If the content is too long.
            PublishFailed: If no write relay accepted the event.
        """
        keys, _, _, fetcher = self._require_unlocked("publish_status")

        async def _publish() -> str:
            with self._errors("publish_status"), self._counting_publish_failures():
                return await fetcher.publish_status(
                    keys, self._write_relays(), content, kind, url=url, expiration=expiration
                )

        return await self._tracked("publish_status", _publish())

    async def edit_relay_list(self, edits: Sequence[RelayEdit]) -> RelayList:
        """Apply *edits* to the own relay list, then publish and cache it.

        Raises:
            ValueError: If a URL is invalid or no relay would remain.
            PublishFailed: If no relay accepted the new list.
        """
        keys, _, resolver, _ = self._require_unlocked("edit_relay_list")
        current = {d.url: d for d in (self._own_relays.descriptors if self._own_relays else ())}
        for edit in edits:
            relay = Relay(edit.url)
            if edit.removes:
                current.pop(relay.url, None)
            else:
                current[relay.url] = RelayDescriptor(relay, read=edit.read, write=edit.write)
        if not current:
            raise ValueError("a relay list must contain at least one relay")

        async def _publish() -> RelayList:
            with self._errors("edit_relay_list"), self._counting_publish_failures():
                relay_list = await resolver.publish_relay_list(keys, current.values())
            self._own_relays = relay_list
            return relay_list

        return await self._tracked("edit_relay_list", _publish())

    # -------------------------------------------------------------------------
    # Follows and Profile
    # -------------------------------------------------------------------------

    async def follow(self, pubkey: str) -> FollowList:
        """Add *pubkey* (hex or ``npub``) to the follow list and publish it.

        The newest list is fetched first so follows made from another client
        survive. Nothing is published when *pubkey* is already followed.

        Raises:
            ValueError: If *pubkey* is not a public key.
            PublishFailed: If no write relay accepted the new list.
        """
        return await self._change_follows("follow", pubkey, follow=True)

    async def unfollow(self, pubkey: str) -> FollowList:
        """Remove *pubkey* from the follow list and publish it."""
        return await self._change_follows("unfollow", pubkey, follow=False)

    async def _change_follows(self, operation: str, target: str, *, follow: bool) -> FollowList:
        keys, owner, _, fetcher = self._require_unlocked(operation)
        target = parse_pubkey(target)

        async def _update() -> FollowList:
            with self._errors(operation), self._counting_publish_failures():
                current = await fetcher.fetch_follow_list(owner, self._read_relays())
                followed = set(current.followed) if current is not None else set()
                if (target in followed) == follow:
                    self._logger.info("follow_list_unchanged", operation=operation)
                    return current if current is not None else FollowList(owner, frozenset())
                if follow:
                    followed.add(target)
                else:
                    followed.discard(target)
                return await fetcher.publish_follow_list(keys, self._write_relays(), followed)

        return await self._tracked(operation, _update())

    async def _cached_profile(self, pubkey: str) -> ProfileMetadata | None:
        try:
            return await self._store.get_profile(pubkey)
        except CorruptCacheEntry as e:
            self._logger.warning("cached_profile_corrupt", error=str(e))
            return None

    async def update_profile(self, changes: Mapping[str, str | None]) -> ProfileMetadata:
        """Edit profile fields and publish the result as a new kind 0 event.

        The newest profile is fetched first. Fields not named in *changes*
        keep their value, including fields this client does not interpret;
        ``None`` removes a field.

        Raises:
            ValueError: If *changes* names a field outside
                ``ProfileMetadata.KNOWN_FIELDS``.
            PublishFailed: If no write relay accepted the event.
        """
        keys, owner, resolver, fetcher = self._require_unlocked("update_profile")
        unknown = sorted(set(changes) - set(ProfileMetadata.KNOWN_FIELDS))
        if unknown:
            raise ValueError(f"unknown profile fields: {', '.join(unknown)}")

        async def _update() -> ProfileMetadata:
            with self._errors("update_profile"), self._counting_publish_failures():
                relays = (*self._read_relays(), *self._profile_relays(resolver))
                await fetcher.fetch_profiles([owner], relays)
                current = await self._cached_profile(owner) or ProfileMetadata(pubkey=owner)
                return await fetcher.publish_profile(
                    keys, self._write_relays(), dataclasses.replace(current, **changes)
                )

        return await self._tracked("update_profile", _update())

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    async def logout(self) -> None:
        """Cancel in-flight operations, drop the key, and close the store. Idempotent."""
        if self._logged_out:
            return
        self._logged_out = True
        self.request_shutdown()

        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        was_unlocked = self._keys is not None
        self._keys = None
        self._pubkey = None
        self._own_relays = None
        self._connected = ()
        if self._resolver is not None:
            self._resolver.reset()
        self._resolver = None
        self._fetcher = None

        await self._metrics_server.stop()
        await self._store.close()
        self._logger.info("session_logged_out", was_unlocked=was_unlocked)

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.logout()
        await super().__aexit__(exc_type, exc_val, exc_tb)
