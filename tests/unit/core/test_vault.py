"""
Unit tests for core.vault module.

Tests:
- Secret key parsing (hex, nsec, raw bytes, malformed)
- register / unlock roundtrip through bytes and text forms
- Wrong passphrase, tampered header and ciphertext
- Corrupt and unsupported records detected before derivation
- change_passphrase
- Legacy ``#nip49:`` format unlock and import
- No secret material in logs
"""

import base64
import dataclasses
import logging

import pytest

from nstatus.core.exceptions import (
    CorruptRecord,
    IncorrectPassphrase,
    InvalidKeyFormat,
    InvalidPassphrase,
    UnsupportedRecordVersion,
)
from nstatus.core.vault import (
    LEGACY_PREFIX,
    MAX_LOG_N,
    KeyVault,
    VaultConfig,
    zeroize,
)
from nstatus.models import EncryptedKeyRecord
from tests.conftest import VALID_HEX_KEY, VALID_NSEC_KEY, make_legacy_key


PASSPHRASE = "correct horse battery staple"  # pragma: allowlist secret


@pytest.fixture
def vault() -> KeyVault:
    return KeyVault(VaultConfig(log_n=10))


@pytest.fixture
def record(vault) -> EncryptedKeyRecord:
    return vault.register(VALID_HEX_KEY, PASSPHRASE)


# ============================================================================
# Configuration and Helpers
# ============================================================================


class TestVaultConfig:
    """Scrypt parameter bounds."""

    def test_defaults(self):
        config = VaultConfig()
        assert (config.log_n, config.r, config.p, config.salt_size) == (16, 8, 1, 16)

    @pytest.mark.parametrize("log_n", [9, MAX_LOG_N + 1])
    def test_log_n_bounds(self, log_n):
        with pytest.raises(ValueError):
            VaultConfig(log_n=log_n)


class TestZeroize:
    def test_overwrites_in_place(self):
        buf = bytearray(b"\x01\x02\x03")
        zeroize(buf)
        assert buf == bytearray(3)


class TestParseSecretKey:
    """Accepted secret key encodings."""

    def test_hex(self):
        assert KeyVault.parse_secret_key(VALID_HEX_KEY).hex() == VALID_HEX_KEY

    def test_nsec(self):
        assert KeyVault.parse_secret_key(VALID_NSEC_KEY).hex() == VALID_HEX_KEY

    def test_raw_bytes(self):
        raw = bytes.fromhex(VALID_HEX_KEY)
        assert KeyVault.parse_secret_key(raw) == bytearray(raw)

    def test_surrounding_whitespace(self):
        assert KeyVault.parse_secret_key(f"  {VALID_HEX_KEY}\n").hex() == VALID_HEX_KEY

    @pytest.mark.parametrize("bad", ["nothex", "ab" * 31, "nsec1qqqq"])
    def test_malformed(self, bad):
        with pytest.raises(InvalidKeyFormat):
            KeyVault.parse_secret_key(bad)

    def test_wrong_raw_length(self):
        with pytest.raises(InvalidKeyFormat, match="32 bytes"):
            KeyVault.parse_secret_key(b"\x01" * 31)

    def test_unsupported_type(self):
        with pytest.raises(InvalidKeyFormat, match="unsupported"):
            KeyVault.parse_secret_key(12345)  # type: ignore[arg-type]


# ============================================================================
# Register / Unlock
# ============================================================================


class TestRegisterUnlock:
    """Roundtrip and failure modes."""

    def test_unlock_returns_secret(self, vault, record):
        assert vault.unlock(record, PASSPHRASE).hex() == VALID_HEX_KEY

    def test_unlock_keys(self, vault, record, pubkey):
        keys = vault.unlock_keys(record, PASSPHRASE)
        assert keys.public_key().to_hex() == pubkey

    def test_record_uses_config(self, record):
        assert record.version == 0
        assert record.log_n == 10
        assert len(record.salt) == 16

    def test_fresh_salt_and_nonce(self, vault, record):
        other = vault.register(VALID_HEX_KEY, PASSPHRASE)
        assert other.salt != record.salt
        assert other.nonce != record.nonce

    def test_unlock_from_bytes_and_text(self, vault, record):
        assert vault.unlock(record.to_bytes(), PASSPHRASE).hex() == VALID_HEX_KEY
        assert vault.unlock(record.to_text(), PASSPHRASE).hex() == VALID_HEX_KEY

    def test_nsec_registration(self, vault):
        record = vault.register(VALID_NSEC_KEY, PASSPHRASE)
        assert vault.unlock(record, PASSPHRASE).hex() == VALID_HEX_KEY

    def test_wrong_passphrase(self, vault, record):
        with pytest.raises(IncorrectPassphrase):
            vault.unlock(record, "wrong")

    @pytest.mark.parametrize("passphrase", ["", None])
    def test_empty_passphrase(self, vault, record, passphrase):
        with pytest.raises(InvalidPassphrase):
            vault.unlock(record, passphrase)
        with pytest.raises(InvalidPassphrase):
            vault.register(VALID_HEX_KEY, passphrase)

    def test_register_rejects_bad_key(self, vault):
        with pytest.raises(InvalidKeyFormat):
            vault.register("nothex", PASSPHRASE)


class TestTampering:
    """The header is bound as associated data."""

    def test_modified_salt(self, vault, record):
        tampered = dataclasses.replace(record, salt=bytes(16))
        with pytest.raises(IncorrectPassphrase):
            vault.unlock(tampered, PASSPHRASE)

    def test_modified_cost_parameter(self, vault, record):
        tampered = dataclasses.replace(record, r=record.r + 1)
        with pytest.raises(IncorrectPassphrase):
            vault.unlock(tampered, PASSPHRASE)

    def test_modified_ciphertext(self, vault, record):
        flipped = bytes([record.ciphertext[0] ^ 0x01]) + record.ciphertext[1:]
        with pytest.raises(IncorrectPassphrase):
            vault.unlock(dataclasses.replace(record, ciphertext=flipped), PASSPHRASE)

    def test_modified_tag(self, vault, record):
        flipped = record.ciphertext[:-1] + bytes([record.ciphertext[-1] ^ 0x80])
        with pytest.raises(IncorrectPassphrase):
            vault.unlock(dataclasses.replace(record, ciphertext=flipped), PASSPHRASE)

    def test_modified_nonce(self, vault, record):
        nonce = bytes([record.nonce[0] ^ 0x01]) + record.nonce[1:]
        with pytest.raises(IncorrectPassphrase):
            vault.unlock(dataclasses.replace(record, nonce=nonce), PASSPHRASE)


class TestCorruptRecords:
    """Structural problems are reported as corruption, not as a wrong passphrase."""

    def test_truncated_bytes(self, vault, record):
        with pytest.raises(CorruptRecord):
            vault.unlock(record.to_bytes()[:20], PASSPHRASE)

    def test_bad_text(self, vault):
        with pytest.raises(CorruptRecord):
            vault.unlock("not a record", PASSPHRASE)

    def test_unknown_version(self, vault, record):
        data = bytes([7]) + record.to_bytes()[1:]
        with pytest.raises(UnsupportedRecordVersion) as exc_info:
            vault.unlock(data, PASSPHRASE)
        assert exc_info.value.version == 7

    def test_excessive_cost_rejected_before_derivation(self, vault, record):
        expensive = dataclasses.replace(record, log_n=MAX_LOG_N + 1)
        with pytest.raises(CorruptRecord, match="exceeds limit"):
            vault.unlock(expensive, PASSPHRASE)

    def test_wrong_plaintext_length(self, vault):
        short = vault._seal(bytearray(16), PASSPHRASE.encode())
        with pytest.raises(CorruptRecord, match="wrong length"):
            vault.unlock(short, PASSPHRASE)

    def test_invalid_secret_scalar(self, vault):
        zero = vault._seal(bytearray(32), PASSPHRASE.encode())
        with pytest.raises(CorruptRecord, match="not a valid secret key") as exc_info:
            vault.unlock_keys(zero, PASSPHRASE)
        assert exc_info.value.operation == "unlock"


class TestChangePassphrase:
    """Re-encryption under a new passphrase."""

    def test_new_passphrase_unlocks(self, vault, record):
        updated = vault.change_passphrase(record, PASSPHRASE, "new secret words")
        assert vault.unlock(updated, "new secret words").hex() == VALID_HEX_KEY
        with pytest.raises(IncorrectPassphrase):
            vault.unlock(updated, PASSPHRASE)

    def test_original_record_still_valid(self, vault, record):
        vault.change_passphrase(record, PASSPHRASE, "new secret words")
        assert vault.unlock(record, PASSPHRASE).hex() == VALID_HEX_KEY

    def test_wrong_old_passphrase(self, vault, record):
        with pytest.raises(IncorrectPassphrase):
            vault.change_passphrase(record, "wrong", "new secret words")

    def test_empty_new_passphrase(self, vault, record):
        with pytest.raises(InvalidPassphrase):
            vault.change_passphrase(record, PASSPHRASE, "")


# ============================================================================
# Legacy Format
# ============================================================================


class TestLegacy:
    """Keys stored by the previous client."""

    def test_unlock_legacy(self, vault):
        encrypted, salt = make_legacy_key(VALID_HEX_KEY, PASSPHRASE)
        assert vault.unlock_legacy(encrypted, salt, PASSPHRASE).hex() == VALID_HEX_KEY

    def test_wrong_passphrase(self, vault):
        encrypted, salt = make_legacy_key(VALID_HEX_KEY, PASSPHRASE)
        with pytest.raises(IncorrectPassphrase):
            vault.unlock_legacy(encrypted, salt, "wrong")

    def test_missing_prefix(self, vault):
        encrypted, salt = make_legacy_key(VALID_HEX_KEY, PASSPHRASE)
        with pytest.raises(CorruptRecord, match="prefix"):
            vault.unlock_legacy(encrypted[len(LEGACY_PREFIX) :], salt, PASSPHRASE)

    def test_invalid_base64(self, vault):
        _, salt = make_legacy_key(VALID_HEX_KEY, PASSPHRASE)
        with pytest.raises(CorruptRecord, match="base64"):
            vault.unlock_legacy(LEGACY_PREFIX + "!!!", salt, PASSPHRASE)

    def test_short_payload(self, vault):
        _, salt = make_legacy_key(VALID_HEX_KEY, PASSPHRASE)
        short = LEGACY_PREFIX + base64.b64encode(b"\x00" * 28).decode()
        with pytest.raises(CorruptRecord, match="too short"):
            vault.unlock_legacy(short, salt, PASSPHRASE)

    def test_import_legacy_produces_current_record(self, vault):
        encrypted, salt = make_legacy_key(VALID_HEX_KEY, PASSPHRASE)
        record = vault.import_legacy(encrypted, salt, PASSPHRASE)
        assert record.version == 0
        assert vault.unlock(record, PASSPHRASE).hex() == VALID_HEX_KEY


class TestLogging:
    """Secret material never reaches the log."""

    def test_no_secrets_logged(self, vault, caplog):
        caplog.set_level(logging.DEBUG)
        record = vault.register(VALID_HEX_KEY, PASSPHRASE)
        vault.unlock_keys(record, PASSPHRASE)
        with pytest.raises(IncorrectPassphrase):
            vault.unlock(record, "wrong")
        text = caplog.text + " ".join(str(getattr(r, "structured_kv", "")) for r in caplog.records)
        assert VALID_HEX_KEY not in text
        assert PASSPHRASE not in text
