"""
Unit tests for core.logger module.

Tests:
- Logger initialization and JSON mode
- key=value formatting, escaping and truncation
- Secret field redaction
- StructuredFormatter output
"""

import json
import logging

import pytest

from nstatus.core.logger import (
    REDACTED,
    Logger,
    StructuredFormatter,
    format_kv_pairs,
    redact,
)


class TestInit:
    """Logger initialization."""

    def test_name(self):
        assert Logger("resolver").name == "resolver"

    def test_default_not_json(self):
        assert Logger("test")._json_output is False


class TestFormatKvPairs:
    """Key-value pairs formatting and escaping."""

    def test_simple(self):
        assert format_kv_pairs({"key": "hello"}) == " key=hello"
        assert format_kv_pairs({"key": 123}) == " key=123"

    def test_with_spaces(self):
        assert format_kv_pairs({"key": "hello world"}) == ' key="hello world"'

    def test_with_double_quotes(self):
        assert format_kv_pairs({"key": 'say "hi"'}) == ' key="say \\"hi\\""'

    def test_empty_value(self):
        assert format_kv_pairs({"key": ""}) == ' key=""'

    def test_empty_kwargs(self):
        assert format_kv_pairs({}) == ""

    def test_truncation(self):
        out = format_kv_pairs({"key": "x" * 20}, max_value_length=5)
        assert out == ' key="xxxxx...<truncated 15 chars>"'

    def test_custom_prefix(self):
        assert format_kv_pairs({"a": 1, "b": 2}, prefix="") == "a=1 b=2"


class TestRedact:
    """Secret material never reaches a sink."""

    @pytest.mark.parametrize("field", ["passphrase", "secret_key", "nsec", "KEK", "password"])
    def test_secret_fields(self, field):
        assert redact({field: "hunter2"}) == {field: REDACTED}

    def test_other_fields_untouched(self):
        assert redact({"pubkey": "ab"}) == {"pubkey": "ab"}

    def test_logger_redacts(self, caplog):
        caplog.set_level(logging.INFO, logger="vault_test")
        Logger("vault_test").info("unlocked", passphrase="hunter2", version=1)
        record = caplog.records[-1]
        assert record.structured_kv == {"passphrase": REDACTED, "version": 1}
        assert "hunter2" not in caplog.text


class TestLogging:
    """Emission through the stdlib logger."""

    def test_structured_extra(self, caplog):
        caplog.set_level(logging.DEBUG, logger="timeline_test")
        Logger("timeline_test").warning("relay_skipped", url="wss://a.example.com", ok=False)
        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.getMessage() == "relay_skipped"
        assert record.structured_kv == {"url": "wss://a.example.com", "ok": False}

    def test_disabled_level_skipped(self, caplog):
        caplog.set_level(logging.WARNING, logger="quiet_test")
        Logger("quiet_test").debug("noise", x=1)
        assert not [r for r in caplog.records if r.name == "quiet_test"]

    def test_json_output(self, caplog):
        caplog.set_level(logging.INFO, logger="json_test")
        Logger("json_test", json_output=True).info("started", relays=3)
        payload = json.loads(caplog.records[-1].getMessage())
        assert payload["message"] == "started"
        assert payload["component"] == "json_test"
        assert payload["relays"] == 3
        assert payload["level"] == "info"

    def test_long_values_truncated(self, caplog):
        caplog.set_level(logging.INFO, logger="trunc_test")
        Logger("trunc_test", max_value_length=4).info("x", content="abcdefgh")
        assert caplog.records[-1].structured_kv["content"].startswith("abcd...")

    def test_exception_includes_traceback(self, caplog):
        caplog.set_level(logging.ERROR, logger="exc_test")
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            Logger("exc_test").exception("failed")
        assert caplog.records[-1].exc_info is not None


class TestStructuredFormatter:
    """Root handler formatting."""

    def test_format(self):
        record = logging.LogRecord("timeline", logging.INFO, __file__, 1, "fetched", None, None)
        record.structured_kv = {"relays_ok": 2}
        assert StructuredFormatter().format(record) == "info timeline fetched relays_ok=2"

    def test_plain_record(self):
        record = logging.LogRecord("nips", logging.WARNING, __file__, 1, "bad %s", ("tag",), None)
        assert StructuredFormatter().format(record) == "warning nips bad tag"
