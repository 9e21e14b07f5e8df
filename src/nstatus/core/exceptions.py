"""nstatus exception hierarchy.

Provides typed exceptions for every failure the engine surfaces upward.
Each exception carries the ``operation`` that failed and the underlying
``cause`` (also chained via ``raise ... from``) so the UI layer can render
an actionable message without parsing strings.

Exception hierarchy:

```text
NstatusError (base -- never raised directly)
├── ConfigurationError          -- config validation, missing key record
├── VaultError                  -- signing key protection
│   ├── InvalidKeyFormat        -- secret key is not a valid key
│   ├── InvalidPassphrase       -- passphrase rejected before use (empty)
│   ├── IncorrectPassphrase     -- authentication tag mismatch
│   └── CorruptRecord           -- structurally invalid record
│       └── UnsupportedRecordVersion
├── RelayError                  -- relay resolution, fetch and publish
│   ├── NoConnectableRelays     -- no relay in any candidate set reachable
│   ├── PartialRelayFailure     -- informational, attached to results
│   ├── TimelineFetchFailed     -- every relay in the fetch plan failed
│   └── PublishFailed           -- no write relay acknowledged
├── CacheError                  -- local store failures
│   ├── CorruptCacheEntry       -- stored value cannot be decoded
│   ├── UnsupportedSchema       -- entry written by a newer schema
│   └── MigrationEntryFailed    -- legacy entry could not be migrated
└── SessionError                -- upward interface failures
    └── SessionLocked           -- operation requires an unlocked session
```

See Also:
    [KeyVault][nstatus.core.vault.KeyVault]: Raises the vault errors.
    [CacheStore][nstatus.core.cache_store.CacheStore]: Raises the cache errors.
    [Session][nstatus.services.session.Session]: Wraps anything unexpected
        in [SessionError][nstatus.core.exceptions.SessionError].
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence


class NstatusError(Exception):
    """Base exception for all nstatus errors.

    Never raised directly -- always use a specific subclass.

    Attributes:
        operation: Name of the operation that failed (e.g. ``"unlock"``).
        cause: The underlying exception, if any.
    """

    def __init__(
        self,
        message: str = "",
        *,
        operation: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.cause = cause

    def __str__(self) -> str:
        message = super().__str__()
        if self.operation:
            message = f"{self.operation}: {message}" if message else self.operation
        if self.cause is not None:
            message = f"{message} ({type(self.cause).__name__}: {self.cause})"
        return message


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(NstatusError):
    """Invalid or missing configuration (YAML, key record location)."""


# ---------------------------------------------------------------------------
# Vault
# ---------------------------------------------------------------------------


class VaultError(NstatusError):
    """Base for all key vault errors."""


class InvalidKeyFormat(VaultError):
    """The secret key is not a well-formed Nostr secret key."""


class InvalidPassphrase(VaultError):
    """The passphrase was rejected before any derivation (e.g. empty)."""


class IncorrectPassphrase(VaultError):
    """Authenticated decryption failed: wrong passphrase or tampered ciphertext.

    No plaintext, partial or otherwise, is ever returned alongside this error.
    """


class CorruptRecord(VaultError):
    """The encrypted key record is structurally invalid."""


class UnsupportedRecordVersion(CorruptRecord):
    """The record declares a format version this build cannot read.

    Attributes:
        version: The version byte found in the record.
    """

    def __init__(self, version: int, *, operation: str | None = None) -> None:
        super().__init__(f"unsupported key record version {version}", operation=operation)
        self.version = version


# ---------------------------------------------------------------------------
# Relays
# ---------------------------------------------------------------------------


class RelayError(NstatusError):
    """Base for relay resolution, fetch, and publish errors."""


class NoConnectableRelays(RelayError):
    """Neither the resolved relay list nor the defaults yielded a connection.

    Attributes:
        attempted: Relay URLs that were tried.
    """

    def __init__(
        self,
        message: str = "no relay could be reached",
        *,
        attempted: Sequence[str] = (),
        operation: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, operation=operation, cause=cause)
        self.attempted = tuple(attempted)


class PartialRelayFailure(RelayError):
    """Some relays failed while others succeeded.

    Informational: attached to successful results for observability, never
    raised by the engine.

    Attributes:
        failures: Relay URL mapped to a short failure reason.
    """

    def __init__(
        self,
        failures: Mapping[str, str],
        *,
        operation: str | None = None,
    ) -> None:
        super().__init__(f"{len(failures)} relay(s) skipped", operation=operation)
        self.failures = dict(failures)


class TimelineFetchFailed(RelayError):
    """Every relay in the fetch plan failed.

    Attributes:
        failures: Relay URL mapped to a short failure reason.
    """

    def __init__(
        self,
        failures: Mapping[str, str],
        *,
        operation: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            f"all {len(failures)} relay(s) failed", operation=operation, cause=cause
        )
        self.failures = dict(failures)


class PublishFailed(RelayError):
    """No write relay acknowledged the event.

    Attributes:
        outcomes: Relay URL mapped to its outcome (error reason).
    """

    def __init__(
        self,
        outcomes: Mapping[str, str],
        *,
        message: str | None = None,
        operation: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            message or f"no relay accepted the event ({len(outcomes)} tried)",
            operation=operation,
            cause=cause,
        )
        self.outcomes = dict(outcomes)


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class CacheError(NstatusError):
    """Base for local cache store errors."""


class CorruptCacheEntry(CacheError):
    """A stored value could not be decoded into its model."""


class UnsupportedSchema(CacheError):
    """An entry (or the store) was written by a newer schema version.

    Attributes:
        found: Schema version found in storage.
        supported: Highest schema version this build understands.
    """

    def __init__(self, found: int, supported: int, *, operation: str | None = None) -> None:
        super().__init__(
            f"schema version {found} is newer than supported {supported}", operation=operation
        )
        self.found = found
        self.supported = supported


class MigrationEntryFailed(CacheError):
    """A legacy cache entry could not be migrated.

    Non-fatal per entry (collected in the migration report); fatal only when
    writing the migration marker itself fails.

    Attributes:
        source: Path or name of the legacy entry.
    """

    def __init__(
        self,
        source: str,
        message: str = "",
        *,
        operation: str | None = "migrate_from_legacy",
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message or source, operation=operation, cause=cause)
        self.source = source


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class SessionError(NstatusError):
    """An upward-interface operation failed for an unexpected reason."""


class SessionLocked(SessionError):
    """The operation needs an unlocked session."""
