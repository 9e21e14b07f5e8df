"""
Structured logging for nstatus components.

Components log an event name plus keyword fields instead of prose:

```python
logger = Logger("timeline")
logger.info("fetch_completed", relays_ok=4, relays_skipped=1)
```

The fields travel on the ``LogRecord`` as ``structured_kv`` and are rendered
by [StructuredFormatter][nstatus.core.logger.StructuredFormatter] as
``key=value`` pairs, or the whole record is emitted as one JSON line when the
logger is built with ``json_output=True``.

Two rules apply to every field before it leaves the process:

* string-like values longer than ``max_value_length`` are cut, with the
  number of dropped characters appended;
* fields named like key material (``passphrase``, ``secret_key``, ``nsec``,
  ...) are replaced by ``***`` regardless of value.

The models, nips and utils layers log through plain
``logging.getLogger(__name__)``; installing ``StructuredFormatter`` on the
root handler gives both kinds of record the same shape.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any


REDACTED = "***"

DEFAULT_MAX_VALUE_LENGTH = 1000

_SECRET_FIELDS = frozenset({"passphrase", "password", "secret", "secret_key", "nsec", "kek"})

_NEEDS_QUOTES = frozenset(" =\"'")


def _truncate(value: str, limit: int | None) -> str:
    if not limit or len(value) <= limit:
        return value
    return f"{value[:limit]}...<truncated {len(value) - limit} chars>"


def _render_value(value: Any, limit: int | None) -> str:
    text = _truncate(str(value), limit)
    if text and _NEEDS_QUOTES.isdisjoint(text):
        return text
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def format_kv_pairs(
    kwargs: dict[str, Any],
    max_value_length: int | None = DEFAULT_MAX_VALUE_LENGTH,
    prefix: str = " ",
) -> str:
    """Render *kwargs* as ``key=value`` pairs joined by spaces.

    Empty values and values containing spaces, ``=`` or quotes are
    double-quoted with backslash escaping. An empty mapping renders as ``""``
    (no prefix).
    """
    if not kwargs:
        return ""
    return prefix + " ".join(
        f"{key}={_render_value(value, max_value_length)}" for key, value in kwargs.items()
    )


def redact(kwargs: dict[str, Any]) -> dict[str, Any]:
    """Copy of *kwargs* with secret-named fields replaced by ``***``."""
    return {
        key: REDACTED if key.lower() in _SECRET_FIELDS else value
        for key, value in kwargs.items()
    }


class StructuredFormatter(logging.Formatter):
    """``level logger message key=value ...`` for every record, structured or not."""

    def format(self, record: logging.LogRecord) -> str:
        line = " ".join((record.levelname.lower(), record.name, record.getMessage()))
        line += format_kv_pairs(getattr(record, "structured_kv", None) or {})
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class Logger:
    """Event-name-plus-fields wrapper around ``logging.getLogger(name)``.

    Args:
        name: Component name; also the stdlib logger name.
        json_output: Emit each record as a single JSON object.
        max_value_length: Truncation limit for string-like field values.
    """

    def __init__(
        self,
        name: str,
        *,
        json_output: bool = False,
        max_value_length: int | None = None,
    ) -> None:
        self._logger = logging.getLogger(name)
        self._json_output = json_output
        self._max_value_length = (
            DEFAULT_MAX_VALUE_LENGTH if max_value_length is None else max_value_length
        )

    @property
    def name(self) -> str:
        return self._logger.name

    def _shorten(self, value: Any) -> Any:
        # Numbers and booleans keep their type.
        if isinstance(value, bool | int | float):
            return value
        return _truncate(str(value), self._max_value_length)

    def _emit(self, level: int, event: str, fields: dict[str, Any], *, exc_info: bool) -> None:
        if not self._logger.isEnabledFor(level):
            return
        fields = {key: self._shorten(value) for key, value in redact(fields).items()}

        if self._json_output:
            payload = {
                "timestamp": datetime.now(UTC).isoformat(),
                "level": logging.getLevelName(level).lower(),
                "component": self.name,
                "message": event,
                **fields,
            }
            self._logger.log(level, json.dumps(payload, default=str), exc_info=exc_info)
            return

        extra = {"structured_kv": fields} if fields else None
        self._logger.log(level, event, extra=extra, exc_info=exc_info)

    def debug(self, event: str, **fields: Any) -> None:
        self._emit(logging.DEBUG, event, fields, exc_info=False)

    def info(self, event: str, **fields: Any) -> None:
        self._emit(logging.INFO, event, fields, exc_info=False)

    def warning(self, event: str, **fields: Any) -> None:
        self._emit(logging.WARNING, event, fields, exc_info=False)

    def error(self, event: str, **fields: Any) -> None:
        self._emit(logging.ERROR, event, fields, exc_info=False)

    def critical(self, event: str, **fields: Any) -> None:
        self._emit(logging.CRITICAL, event, fields, exc_info=False)

    def exception(self, event: str, **fields: Any) -> None:
        """ERROR with the active exception's traceback attached."""
        self._emit(logging.ERROR, event, fields, exc_info=True)
