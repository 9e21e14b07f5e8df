"""Encrypted key record storage.

Loads and saves the ``nsvault:`` text form of an
[EncryptedKeyRecord][nstatus.models.key_record.EncryptedKeyRecord], either
inline in the session config or in a dedicated file, and reads the previous
client's ``config.json`` so its key can be imported. Public keys typed
by the user are normalized to hex here as well.

Warning:
    Plaintext secret keys are never written anywhere. Only the encrypted
    record touches disk, and the record file is created with ``0600``
    permissions.

See Also:
    [KeyVault][nstatus.core.vault.KeyVault]: Encrypts and decrypts the
        records handled here.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, NamedTuple

from nostr_sdk import NostrSdkError, PublicKey
from pydantic import BaseModel, Field, model_validator


if TYPE_CHECKING:
    from nstatus.models.key_record import EncryptedKeyRecord


DEFAULT_RECORD_PATH = "~/.config/nstatus/key.nsvault"


class LegacyKeyConfig(NamedTuple):
    """Key fields of the previous client's ``config.json``."""

    encrypted_secret_key: str
    salt: str


class KeyRecordConfig(BaseModel):
    """Where the encrypted signing key lives.

    ``record`` (inline text form) wins over ``path``. ``legacy_config`` points
    at the previous client's ``config.json`` and is only read when no record
    exists yet.
    """

    record: str | None = Field(default=None, description="Inline nsvault: record")
    path: str | None = Field(default=DEFAULT_RECORD_PATH, description="Record file path")
    legacy_config: str | None = Field(
        default=None, description="Previous client's config.json to import from"
    )

    @model_validator(mode="after")
    def _require_source(self) -> KeyRecordConfig:
        if self.record is None and self.path is None:
            raise ValueError("either record or path must be set")
        return self

    def load_text(self) -> str | None:
        """Return the record text, or ``None`` if no record has been saved yet."""
        if self.record is not None:
            return self.record
        assert self.path is not None  # noqa: S101  # guaranteed by _require_source
        return load_record_text(self.path)


def parse_pubkey(value: str) -> str:
    """Normalize a hex or ``npub`` public key to lowercase hex.

    Raises:
        ValueError: If *value* is not a valid public key.
    """
    try:
        return PublicKey.parse(value.strip()).to_hex()
    except NostrSdkError as e:
        raise ValueError(f"not a public key: {value!r}") from e


def load_record_text(path: str | Path) -> str | None:
    """Read a record file. Returns ``None`` when the file does not exist."""
    file = Path(path).expanduser()
    if not file.exists():
        return None
    return file.read_text(encoding="ascii").strip()


def save_record(path: str | Path, record: EncryptedKeyRecord) -> Path:
    """Write *record* atomically with owner-only permissions.

    Returns:
        The resolved path written.
    """
    file = Path(path).expanduser()
    file.parent.mkdir(parents=True, exist_ok=True)
    tmp = file.with_suffix(file.suffix + ".tmp")
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="ascii") as f:
        f.write(record.to_text() + "\n")
    tmp.replace(file)
    return file


def load_legacy_config(path: str | Path) -> LegacyKeyConfig:
    """Read the encrypted key fields from the previous client's ``config.json``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the JSON is invalid or a field is missing.
    """
    file = Path(path).expanduser()
    with file.open(encoding="utf-8") as f:
        try:
            data: Any = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"{file} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"{file} must hold a JSON object")
    try:
        return LegacyKeyConfig(str(data["encrypted_secret_key"]), str(data["salt"]))
    except KeyError as e:
        raise ValueError(f"{file} is missing {e.args[0]!r}") from e
