"""
Pytest configuration and shared fixtures for nstatus tests.

Provides:
- Test signing keys (real nostr_sdk Keys)
- A CacheStore backed by a temporary SQLite file
- A mock nostr_sdk.Event factory
- RelayFetch helpers for patching the protocol layer
- Keys encrypted in the previous client's format
"""

import base64
import logging
import os
from collections.abc import AsyncIterator
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from nostr_sdk import Keys

from nstatus.core.cache_store import CacheConfig, CacheStore
from nstatus.core.pool import Pool, PoolConfig, PoolRetryConfig
from nstatus.core.vault import LEGACY_PBKDF2_ROUNDS, LEGACY_PREFIX
from nstatus.models import Relay
from nstatus.utils.protocol import RelayFetch


# Valid secp256k1 test key (DO NOT USE IN PRODUCTION)
VALID_HEX_KEY = (
    "67dea2ed018072d675f5415ecfaed7d2597555e202d85b3d65ea4e58d2d92ffa"  # pragma: allowlist secret
)
VALID_NSEC_KEY = (
    "nsec1vl029mgpspedva04g90vltkh6fvh240zqtv9k0t9af8935ke9laqsnlfe5"  # pragma: allowlist secret
)

ALICE = "a" * 64
BOB = "b" * 64
CAROL = "c" * 64
SIG = "e" * 128


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Keys
# ============================================================================


@pytest.fixture
def keys() -> Keys:
    """Real signing keys for VALID_HEX_KEY."""
    return Keys.parse(VALID_HEX_KEY)


@pytest.fixture
def pubkey(keys: Keys) -> str:
    return keys.public_key().to_hex()


def real_pubkey(n: int) -> str:
    """Public key of the secret scalar *n*, valid for nostr_sdk.PublicKey.parse."""
    return Keys.parse(f"{n:064x}").public_key().to_hex()


# ============================================================================
# Cache Store
# ============================================================================


def make_store(path: Path, **cache_kwargs: object) -> CacheStore:
    """Build a disconnected store on *path* with fast retries."""
    pool = Pool(
        PoolConfig(
            path=str(path),
            busy_timeout=0.5,
            retry=PoolRetryConfig(max_attempts=2, initial_delay=0.01, max_delay=0.02),
        )
    )
    return CacheStore(pool=pool, config=CacheConfig(**cache_kwargs))


@pytest.fixture
async def store(tmp_path: Path) -> AsyncIterator[CacheStore]:
    """A connected CacheStore in a temporary directory."""
    cache = make_store(tmp_path / "cache.sqlite3")
    await cache.connect()
    try:
        yield cache
    finally:
        await cache.close()


# ============================================================================
# Mock Events
# ============================================================================


def make_mock_event(
    *,
    kind: int = 30315,
    pubkey: str = ALICE,
    created_at: int = 1_700_000_000,
    tags: list[list[str]] | None = None,
    content: str = "",
    event_id: str = "1" * 64,
    sig: str = SIG,
) -> MagicMock:
    """Create a mock nostr_sdk.Event with the accessors the parsers use."""
    event = MagicMock()
    event.id.return_value.to_hex.return_value = event_id
    event.author.return_value.to_hex.return_value = pubkey
    event.created_at.return_value.as_secs.return_value = created_at
    event.kind.return_value.as_u16.return_value = kind
    event.content.return_value = content
    event.signature.return_value = sig
    event.verify.return_value = True

    mock_tags = []
    for tag in tags if tags is not None else []:
        mock_tag = MagicMock()
        mock_tag.as_vec.return_value = tag
        mock_tags.append(mock_tag)
    event.tags.return_value.to_vec.return_value = mock_tags
    return event


def make_status_event(
    author: str,
    d: str = "general",
    *,
    created_at: int = 1_700_000_000,
    content: str = "hello",
    event_id: str = "1" * 64,
    extra_tags: list[list[str]] | None = None,
) -> MagicMock:
    return make_mock_event(
        kind=30315,
        pubkey=author,
        created_at=created_at,
        tags=[["d", d], *(extra_tags or [])],
        content=content,
        event_id=event_id,
    )


def make_relay_list_event(
    author: str,
    relays: list[list[str]],
    *,
    created_at: int = 1_700_000_000,
    event_id: str = "2" * 64,
) -> MagicMock:
    return make_mock_event(
        kind=10002,
        pubkey=author,
        created_at=created_at,
        tags=[["r", *entry] for entry in relays],
        event_id=event_id,
    )


def relay_fetch(
    url: str, events: list[MagicMock] | None = None, error: str | None = None
) -> RelayFetch:
    """A RelayFetch result as returned by the protocol layer."""
    return RelayFetch(relay=Relay(url), events=list(events or []), error=error, elapsed=0.01)


# ============================================================================
# Legacy Key
# ============================================================================


def make_legacy_key(secret_hex: str, passphrase: str) -> tuple[str, str]:
    """Encrypt a key the way the previous client's config.json stored it."""
    salt = os.urandom(16)
    nonce = os.urandom(12)
    kek = PBKDF2HMAC(
        algorithm=hashes.SHA256(), length=32, salt=salt, iterations=LEGACY_PBKDF2_ROUNDS
    ).derive(passphrase.encode("utf-8"))
    sealed = ChaCha20Poly1305(kek).encrypt(nonce, bytes.fromhex(secret_hex), None)
    encrypted = LEGACY_PREFIX + base64.b64encode(sealed + nonce).decode("ascii")
    return encrypted, base64.b64encode(salt).decode("ascii")
