"""Field checks for the frozen model dataclasses.

Private module. Model ``__post_init__`` methods call these so that a value
read from a relay or from the cache is rejected at construction time rather
than when it is rendered or signed.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any


_HEX_DIGITS = frozenset("0123456789abcdef")

# Profile metadata is attacker-controlled JSON; nesting beyond this is dropped.
_MAX_NESTING = 16


def _type_name(value: Any) -> str:
    return type(value).__name__


def validate_instance(value: Any, expected: type, name: str) -> None:
    if not isinstance(value, expected):
        raise TypeError(f"{name}: expected {expected.__name__}, got {_type_name(value)}")


def validate_mapping(value: Any, name: str) -> None:
    if not isinstance(value, Mapping):
        raise TypeError(f"{name}: expected a mapping, got {_type_name(value)}")


def validate_timestamp(value: Any, name: str) -> None:
    """Unix seconds: a non-negative ``int``. ``bool`` is refused."""
    if type(value) is bool or not isinstance(value, int):
        raise TypeError(f"{name}: expected int seconds, got {_type_name(value)}")
    if value < 0:
        raise ValueError(f"{name} is negative ({value})")


def validate_str_no_null(value: Any, name: str) -> None:
    if not isinstance(value, str):
        raise TypeError(f"{name}: expected str, got {_type_name(value)}")
    if "\x00" in value:
        raise ValueError(f"{name} contains a NUL character")


def validate_str_not_empty(value: Any, name: str) -> None:
    validate_str_no_null(value, name)
    if value == "":
        raise ValueError(f"{name} is empty")


def _validate_hex(value: Any, name: str, length: int) -> None:
    validate_str_no_null(value, name)
    if len(value) != length or not _HEX_DIGITS.issuperset(value):
        raise ValueError(f"{name} must be {length} lowercase hex characters")


def validate_pubkey(value: Any, name: str) -> None:
    _validate_hex(value, name, 64)


def validate_event_id(value: Any, name: str) -> None:
    _validate_hex(value, name, 64)


def validate_signature(value: Any, name: str) -> None:
    _validate_hex(value, name, 128)


# ---------------------------------------------------------------------------
# Free-form JSON
# ---------------------------------------------------------------------------


def sanitize_data(obj: Any, name: str, *, _level: int = 0) -> Any:
    """Reduce arbitrary decoded JSON to plain, stable, NUL-free data.

    Mappings keep only string keys, in sorted order. ``None`` values, empty
    containers, non-finite floats, unknown types and anything nested deeper
    than the limit are dropped (returned as ``None``).

    Raises:
        ValueError: If a string or key contains a NUL character.
    """
    if _level > _MAX_NESTING:
        return None
    if isinstance(obj, str):
        validate_str_no_null(obj, name)
        return obj
    if isinstance(obj, bool | int):
        return obj
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None

    if isinstance(obj, Mapping):
        cleaned: dict[str, Any] = {}
        for key in sorted(k for k in obj if isinstance(k, str)):
            validate_str_no_null(key, f"{name} key")
            value = sanitize_data(obj[key], name, _level=_level + 1)
            if value not in (None, {}, []):
                cleaned[key] = value
        return cleaned

    if isinstance(obj, list | tuple):
        items = (sanitize_data(item, name, _level=_level + 1) for item in obj)
        return [item for item in items if item not in (None, {}, [])]

    return None


def deep_freeze(obj: Any) -> Any:
    """Read-only view of nested JSON: mappings become proxies, lists tuples."""
    if isinstance(obj, Mapping):
        return MappingProxyType({key: deep_freeze(value) for key, value in obj.items()})
    if isinstance(obj, list | tuple):
        return tuple(map(deep_freeze, obj))
    return obj


def thaw(obj: Any) -> Any:
    """Plain ``dict`` / ``list`` copy of a ``deep_freeze()`` result."""
    if isinstance(obj, Mapping):
        return {key: thaw(value) for key, value in obj.items()}
    if isinstance(obj, list | tuple):
        return list(map(thaw, obj))
    return obj
