"""
Passphrase-protected storage of the Nostr signing key.

[KeyVault][nstatus.core.vault.KeyVault] turns a secret key plus passphrase
into an [EncryptedKeyRecord][nstatus.models.key_record.EncryptedKeyRecord]
and back. Derivation uses scrypt; encryption uses ChaCha20-Poly1305 with the
record header bound as associated data, so editing the salt or cost
parameters of a stored record is detected as tampering.

The vault never persists anything and never logs key material. Unlocked keys
are returned as ``bytearray`` so callers can
[zeroize()][nstatus.core.vault.zeroize] them once ``nostr_sdk.Keys`` has
been built.

Both derivations are deliberately slow; async callers run them through
``asyncio.to_thread``.

Examples:
    ```python
    vault = KeyVault()
    record = vault.register("nsec1...", "correct horse battery staple")
    keys = vault.unlock_keys(record, "correct horse battery staple")
    ```

See Also:
    [EncryptedKeyRecord][nstatus.models.key_record.EncryptedKeyRecord]: The
        versioned at-rest format.
    [Session.unlock_session()][nstatus.services.session.Session.unlock_session]:
        Async entry point that offloads derivation to a worker thread.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from nostr_sdk import Keys, NostrSdkError
from pydantic import BaseModel, Field

from nstatus.models.key_record import (
    NONCE_SIZE,
    TAG_SIZE,
    EncryptedKeyRecord,
    RecordVersionError,
    build_header,
)

from .exceptions import (
    CorruptRecord,
    IncorrectPassphrase,
    InvalidKeyFormat,
    InvalidPassphrase,
    UnsupportedRecordVersion,
)
from .logger import Logger


SECRET_KEY_SIZE = 32
KEK_SIZE = 32
RECORD_VERSION = 0
MAX_LOG_N = 22

LEGACY_PREFIX = "#nip49:"
LEGACY_PBKDF2_ROUNDS = 100_000


def zeroize(buf: bytearray) -> None:
    """Overwrite *buf* with zeros in place."""
    for i in range(len(buf)):
        buf[i] = 0


def _check_passphrase(passphrase: str, operation: str) -> bytes:
    if not isinstance(passphrase, str) or not passphrase:
        raise InvalidPassphrase("passphrase must be a non-empty string", operation=operation)
    return passphrase.encode("utf-8")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class VaultConfig(BaseModel):
    """Scrypt cost parameters for newly written records.

    Existing records always unlock with the parameters stored in their own
    header, so raising these only affects future ``register`` and
    ``change_passphrase`` calls.
    """

    log_n: int = Field(
        default=16, ge=10, le=MAX_LOG_N, description="Scrypt cost exponent (N = 2**log_n)"
    )
    r: int = Field(default=8, ge=1, le=255, description="Scrypt block size")
    p: int = Field(default=1, ge=1, le=255, description="Scrypt parallelization")
    salt_size: int = Field(default=16, ge=8, le=64, description="Random salt length in bytes")


# ---------------------------------------------------------------------------
# KeyVault
# ---------------------------------------------------------------------------


class KeyVault:
    """Encrypts and decrypts the signing key under a passphrase."""

    def __init__(self, config: VaultConfig | None = None) -> None:
        self._config = config or VaultConfig()
        self._logger = Logger("vault")

    @property
    def config(self) -> VaultConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Key Parsing
    # -------------------------------------------------------------------------

    @staticmethod
    def parse_secret_key(secret_key: str | bytes) -> bytearray:
        """Normalize a hex, ``nsec1`` or raw 32-byte secret key.

        Raises:
            InvalidKeyFormat: If the key is malformed or out of curve range.
        """
        if isinstance(secret_key, bytes | bytearray):
            if len(secret_key) != SECRET_KEY_SIZE:
                raise InvalidKeyFormat(
                    f"raw secret key must be {SECRET_KEY_SIZE} bytes", operation="parse_secret_key"
                )
            text = bytes(secret_key).hex()
        elif isinstance(secret_key, str):
            text = secret_key.strip()
        else:
            raise InvalidKeyFormat(
                f"unsupported secret key type {type(secret_key).__name__}",
                operation="parse_secret_key",
            )

        try:
            keys = Keys.parse(text)
        except NostrSdkError as e:
            raise InvalidKeyFormat("malformed secret key", operation="parse_secret_key") from e
        return bytearray.fromhex(keys.secret_key().to_hex())

    # -------------------------------------------------------------------------
    # Derivation
    # -------------------------------------------------------------------------

    @staticmethod
    def _derive(passphrase: bytes, salt: bytes, log_n: int, r: int, p: int) -> bytes:
        return Scrypt(salt=salt, length=KEK_SIZE, n=2**log_n, r=r, p=p).derive(passphrase)

    def _seal(self, secret: bytearray, passphrase: bytes) -> EncryptedKeyRecord:
        cfg = self._config
        salt = os.urandom(cfg.salt_size)
        nonce = os.urandom(NONCE_SIZE)
        header = build_header(RECORD_VERSION, salt, cfg.log_n, cfg.r, cfg.p, nonce)
        kek = self._derive(passphrase, salt, cfg.log_n, cfg.r, cfg.p)
        ciphertext = ChaCha20Poly1305(kek).encrypt(nonce, bytes(secret), header)
        return EncryptedKeyRecord(
            version=RECORD_VERSION,
            salt=salt,
            log_n=cfg.log_n,
            r=cfg.r,
            p=cfg.p,
            nonce=nonce,
            ciphertext=ciphertext,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def register(self, secret_key: str | bytes, passphrase: str) -> EncryptedKeyRecord:
        """Encrypt *secret_key* under *passphrase*.

        Args:
            secret_key: 64-char hex, ``nsec1`` bech32, or 32 raw bytes.
            passphrase: Non-empty passphrase.

        Returns:
            A fresh record with a random salt and nonce.

        Raises:
            InvalidKeyFormat: If the key is malformed.
            InvalidPassphrase: If the passphrase is empty.
        """
        secret = self.parse_secret_key(secret_key)
        try:
            encoded = _check_passphrase(passphrase, "register")
            record = self._seal(secret, encoded)
        finally:
            zeroize(secret)
        self._logger.info("key_registered", version=record.version, log_n=record.log_n)
        return record

    def load_record(self, record: EncryptedKeyRecord | bytes | str) -> EncryptedKeyRecord:
        """Accept a record object, its binary layout, or its text form.

        Raises:
            UnsupportedRecordVersion: If the record version is unknown.
            CorruptRecord: If the record is structurally invalid.
        """
        if isinstance(record, EncryptedKeyRecord):
            return record
        try:
            if isinstance(record, str):
                return EncryptedKeyRecord.from_text(record)
            return EncryptedKeyRecord.from_bytes(bytes(record))
        except RecordVersionError as e:
            raise UnsupportedRecordVersion(e.version, operation="unlock") from e
        except (ValueError, TypeError) as e:
            raise CorruptRecord(str(e), operation="unlock", cause=e) from e

    def unlock(self, record: EncryptedKeyRecord | bytes | str, passphrase: str) -> bytearray:
        """Decrypt the secret key.

        Structure is validated before any derivation work, so a corrupt record
        is never reported as a wrong passphrase.

        Returns:
            The 32-byte secret key. The caller owns the buffer and should
            zeroize it when done.

        Raises:
            InvalidPassphrase: If the passphrase is empty.
            UnsupportedRecordVersion: If the record version is unknown.
            CorruptRecord: If the record is structurally invalid or decrypts to
                something that is not a 32-byte key.
            IncorrectPassphrase: If authentication fails.
        """
        parsed = self.load_record(record)
        encoded = _check_passphrase(passphrase, "unlock")
        if parsed.log_n > MAX_LOG_N:
            raise CorruptRecord(
                f"scrypt cost log_n={parsed.log_n} exceeds limit", operation="unlock"
            )

        kek = self._derive(encoded, parsed.salt, parsed.log_n, parsed.r, parsed.p)
        try:
            plaintext = bytearray(
                ChaCha20Poly1305(kek).decrypt(parsed.nonce, parsed.ciphertext, parsed.header)
            )
        except InvalidTag as e:
            self._logger.warning("unlock_failed", reason="authentication")
            raise IncorrectPassphrase("incorrect passphrase", operation="unlock") from e

        if len(plaintext) != SECRET_KEY_SIZE:
            zeroize(plaintext)
            raise CorruptRecord("decrypted key has the wrong length", operation="unlock")
        return plaintext

    def unlock_keys(self, record: EncryptedKeyRecord | bytes | str, passphrase: str) -> Keys:
        """Unlock and build ``nostr_sdk.Keys``, zeroizing the raw buffer.

        Raises:
            CorruptRecord: If the decrypted bytes are not a valid secret key.
        """
        return self._to_keys(self.unlock(record, passphrase))

    def change_passphrase(
        self, record: EncryptedKeyRecord | bytes | str, old: str, new: str
    ) -> EncryptedKeyRecord:
        """Re-encrypt under *new*. The input record is left untouched."""
        encoded = _check_passphrase(new, "change_passphrase")
        secret = self.unlock(record, old)
        try:
            updated = self._seal(secret, encoded)
        finally:
            zeroize(secret)
        self._logger.info("passphrase_changed", version=updated.version)
        return updated

    # -------------------------------------------------------------------------
    # Legacy Format
    # -------------------------------------------------------------------------

    def unlock_legacy(self, encrypted: str, salt_b64: str, passphrase: str) -> bytearray:
        """Decrypt a key written by the previous client's ``config.json``.

        The legacy layout is ``#nip49:`` followed by standard base64 of
        ``ciphertext || tag || nonce``, keyed by PBKDF2-HMAC-SHA256 over a
        separately stored base64 salt.

        Raises:
            InvalidPassphrase: If the passphrase is empty.
            CorruptRecord: If the prefix, base64, or payload length is invalid.
            IncorrectPassphrase: If authentication fails.
        """
        encoded = _check_passphrase(passphrase, "unlock_legacy")
        if not encrypted.startswith(LEGACY_PREFIX):
            raise CorruptRecord(f"missing {LEGACY_PREFIX!r} prefix", operation="unlock_legacy")
        try:
            payload = base64.b64decode(encrypted[len(LEGACY_PREFIX) :], validate=True)
            salt = base64.b64decode(salt_b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CorruptRecord("invalid base64", operation="unlock_legacy", cause=e) from e
        if len(payload) <= NONCE_SIZE + TAG_SIZE:
            raise CorruptRecord("legacy payload too short", operation="unlock_legacy")

        ciphertext, nonce = payload[:-NONCE_SIZE], payload[-NONCE_SIZE:]
        kek = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEK_SIZE,
            salt=salt,
            iterations=LEGACY_PBKDF2_ROUNDS,
        ).derive(encoded)
        try:
            plaintext = bytearray(ChaCha20Poly1305(kek).decrypt(nonce, ciphertext, None))
        except InvalidTag as e:
            self._logger.warning("unlock_failed", reason="authentication", format="legacy")
            raise IncorrectPassphrase("incorrect passphrase", operation="unlock_legacy") from e

        if len(plaintext) != SECRET_KEY_SIZE:
            zeroize(plaintext)
            raise CorruptRecord("decrypted key has the wrong length", operation="unlock_legacy")
        return plaintext

    def import_legacy(self, encrypted: str, salt_b64: str, passphrase: str) -> EncryptedKeyRecord:
        """Re-encrypt a legacy key into a current record under the same passphrase."""
        secret = self.unlock_legacy(encrypted, salt_b64, passphrase)
        try:
            record = self._seal(secret, passphrase.encode("utf-8"))
        finally:
            zeroize(secret)
        self._logger.info("legacy_key_imported", version=record.version, log_n=record.log_n)
        return record

    @staticmethod
    def _to_keys(secret: bytearray) -> Keys:
        try:
            return Keys.parse(secret.hex())
        except NostrSdkError as e:
            raise CorruptRecord(
                "decrypted bytes are not a valid secret key", operation="unlock", cause=e
            ) from e
        finally:
            zeroize(secret)
