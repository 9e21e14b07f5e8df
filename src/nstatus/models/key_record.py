"""
Versioned at-rest format of the encrypted signing key.

Binary layout (version 0, all integers unsigned bytes):

```text
version | log_n | r | p | salt_len | salt[salt_len] | nonce[12] | ciphertext+tag
```

Everything before ``ciphertext+tag`` is the *header*; it is bound to the
ciphertext as associated data so tampering with the derivation parameters
fails authentication. The text form is the URL-safe base64 of the bytes
with an ``nsvault:`` prefix, suitable for YAML/JSON config files.

Parsing never guesses: an unknown version raises
[RecordVersionError][nstatus.models.key_record.RecordVersionError], any
other structural problem raises ``ValueError``.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import ClassVar


NONCE_SIZE = 12
TAG_SIZE = 16
MIN_SALT_SIZE = 8
MAX_SALT_SIZE = 64
TEXT_PREFIX = "nsvault:"


class RecordVersionError(ValueError):
    """The record declares a format version this reader does not understand."""

    def __init__(self, version: int) -> None:
        super().__init__(f"unsupported key record version {version}")
        self.version = version


def build_header(version: int, salt: bytes, log_n: int, r: int, p: int, nonce: bytes) -> bytes:
    """Serialize the record header that precedes the ciphertext."""
    return bytes([version, log_n, r, p, len(salt)]) + salt + nonce


@dataclass(frozen=True, slots=True)
class EncryptedKeyRecord:
    """Encrypted signing key with its key-derivation parameters.

    Attributes:
        version: Format version (only ``0`` is defined).
        salt: Random scrypt salt.
        log_n: Scrypt CPU/memory cost exponent (``N = 2**log_n``).
        r: Scrypt block size.
        p: Scrypt parallelization factor.
        nonce: 12-byte ChaCha20-Poly1305 nonce.
        ciphertext: AEAD output (encrypted key followed by the 16-byte tag).
    """

    version: int
    salt: bytes
    log_n: int
    r: int
    p: int
    nonce: bytes
    ciphertext: bytes

    SUPPORTED_VERSIONS: ClassVar[frozenset[int]] = frozenset({0})

    def __post_init__(self) -> None:
        if self.version not in self.SUPPORTED_VERSIONS:
            raise RecordVersionError(self.version)
        if not MIN_SALT_SIZE <= len(self.salt) <= MAX_SALT_SIZE:
            raise ValueError(f"salt length {len(self.salt)} out of range")
        if not 1 <= self.log_n <= 30:
            raise ValueError(f"log_n {self.log_n} out of range")
        if not 1 <= self.r <= 255 or not 1 <= self.p <= 255:
            raise ValueError("scrypt r and p must be in 1..255")
        if len(self.nonce) != NONCE_SIZE:
            raise ValueError(f"nonce must be {NONCE_SIZE} bytes")
        if len(self.ciphertext) <= TAG_SIZE:
            raise ValueError("ciphertext too short")

    @property
    def header(self) -> bytes:
        """Serialized header, used as AEAD associated data."""
        return build_header(self.version, self.salt, self.log_n, self.r, self.p, self.nonce)

    def to_bytes(self) -> bytes:
        return self.header + self.ciphertext

    @classmethod
    def from_bytes(cls, data: bytes) -> EncryptedKeyRecord:
        """Parse the binary layout.

        Raises:
            RecordVersionError: If the version byte is not supported.
            ValueError: If the data is truncated or a field is out of range.
        """
        if not data:
            raise ValueError("empty key record")
        version = data[0]
        if version not in cls.SUPPORTED_VERSIONS:
            raise RecordVersionError(version)
        if len(data) < 5:
            raise ValueError("truncated key record header")

        log_n, r, p, salt_len = data[1], data[2], data[3], data[4]
        salt_end = 5 + salt_len
        nonce_end = salt_end + NONCE_SIZE
        if len(data) <= nonce_end + TAG_SIZE:
            raise ValueError("truncated key record")

        return cls(
            version=version,
            salt=bytes(data[5:salt_end]),
            log_n=log_n,
            r=r,
            p=p,
            nonce=bytes(data[salt_end:nonce_end]),
            ciphertext=bytes(data[nonce_end:]),
        )

    def to_text(self) -> str:
        return TEXT_PREFIX + base64.urlsafe_b64encode(self.to_bytes()).decode("ascii")

    @classmethod
    def from_text(cls, text: str) -> EncryptedKeyRecord:
        """Parse the ``nsvault:`` text form.

        Raises:
            RecordVersionError: If the version byte is not supported.
            ValueError: If the prefix, base64, or binary layout is invalid.
        """
        text = text.strip()
        if not text.startswith(TEXT_PREFIX):
            raise ValueError(f"key record must start with {TEXT_PREFIX!r}")
        try:
            raw = base64.urlsafe_b64decode(text[len(TEXT_PREFIX) :].encode("ascii"))
        except (binascii.Error, UnicodeEncodeError) as e:
            raise ValueError(f"invalid key record encoding: {e}") from e
        return cls.from_bytes(raw)
