"""
Relay URLs and NIP-65 relay lists.

[Relay][nstatus.models.relay.Relay] is the normalized form of a WebSocket
relay URL. Two spellings of the same relay (case, trailing slash, default
port) compare equal, which is what lets relay lists and fetch plans be keyed
by URL. Clearnet relays keep the scheme they were given; Tor, I2P and
Lokinet relays are always ``ws://``. Loopback, private and other non-global addresses are
refused.

[RelayDescriptor][nstatus.models.relay.RelayDescriptor] attaches read/write
permissions to a relay, and [RelayList][nstatus.models.relay.RelayList] is
the per-identity set of descriptors, versioned by the ``created_at`` of the
kind 10002 event it came from.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from ipaddress import ip_address
from typing import Any, NamedTuple

from rfc3986 import uri_reference
from rfc3986.exceptions import UnpermittedComponentError, ValidationError
from rfc3986.validators import Validator

from ._validation import validate_instance, validate_pubkey, validate_timestamp
from .constants import NetworkType


_OVERLAY_SUFFIXES = {
    ".onion": NetworkType.TOR,
    ".i2p": NetworkType.I2P,
    ".loki": NetworkType.LOKI,
}
_LOCAL_NAMES = frozenset({"localhost", "localhost.localdomain"})
_DEFAULT_PORTS = {"wss": 443, "ws": 80}

_URI_RULES = (
    Validator()
    .require_presence_of("scheme", "host")
    .allow_schemes("ws", "wss")
    .check_validity_of("scheme", "host", "port", "path")
)


def classify_host(host: str) -> NetworkType:
    """Network a relay host lives on.

    ``LOCAL`` and ``UNKNOWN`` hosts are not usable as relays.
    """
    name = host.lower().strip("[]")
    if not name:
        return NetworkType.UNKNOWN
    for suffix, network in _OVERLAY_SUFFIXES.items():
        if name.endswith(suffix):
            return network
    if name in _LOCAL_NAMES:
        return NetworkType.LOCAL

    try:
        address = ip_address(name)
    except ValueError:
        labels = name.split(".")
        if len(labels) < 2 or any(
            not label or label.startswith("-") or label.endswith("-") for label in labels
        ):
            return NetworkType.UNKNOWN
        return NetworkType.CLEARNET

    if address.is_global and not address.is_multicast:
        return NetworkType.CLEARNET
    return NetworkType.LOCAL


class _UrlParts(NamedTuple):
    network: NetworkType
    scheme: str
    host: str
    port: int | None
    path: str | None

    def render(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        port = "" if self.port is None else f":{self.port}"
        return f"{self.scheme}://{host}{port}{self.path or ''}"


def _split_url(raw: str) -> _UrlParts:
    uri = uri_reference(raw.strip()).normalize()
    try:
        _URI_RULES.validate(uri)
    except UnpermittedComponentError:
        raise ValueError(f"relay URL must use ws:// or wss://: {raw!r}") from None
    except ValidationError as e:
        raise ValueError(f"invalid relay URL {raw!r}: {e}") from None
    if uri.query:
        raise ValueError(f"relay URL must not carry a query: {raw!r}")
    if uri.fragment:
        raise ValueError(f"relay URL must not carry a fragment: {raw!r}")

    host = uri.host.strip("[]")
    network = classify_host(host)
    scheme = uri.scheme if network == NetworkType.CLEARNET else "ws"

    port = int(uri.port) if uri.port else None
    if port == _DEFAULT_PORTS[scheme]:
        port = None

    path = uri.path or ""
    while "//" in path:
        path = path.replace("//", "/")
    return _UrlParts(network, scheme, host, port, path.rstrip("/") or None)


@dataclass(frozen=True, slots=True)
class Relay:
    """A normalized relay URL.

    Only ``url`` takes part in equality and hashing.

    Attributes:
        url: Normalized URL including scheme.
        network: [NetworkType][nstatus.models.constants.NetworkType] of the host.
        scheme: ``ws`` or ``wss`` as given for clearnet, ``ws`` for overlay
            networks.
        host: Hostname or IP address, without IPv6 brackets.
        port: Non-default port, or ``None``.
        path: Path without trailing slash, or ``None``.

    Raises:
        TypeError: If the URL is not a string.
        ValueError: If the URL is malformed, not ``ws``/``wss``, carries a
            query or fragment, contains null bytes, or points at a local or
            unrecognizable host.

    Examples:
        ```python
        Relay("WSS://Relay.Damus.io/").url      # 'wss://relay.damus.io'
        Relay("ws://yabu.me:80").url             # 'ws://yabu.me'
        Relay("wss://abc.onion").scheme          # 'ws'
        ```
    """

    raw_url: str = field(repr=False, compare=False)

    url: str = field(init=False)
    network: NetworkType = field(init=False, compare=False)
    scheme: str = field(init=False, compare=False)
    host: str = field(init=False, compare=False)
    port: int | None = field(init=False, compare=False)
    path: str | None = field(init=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.raw_url, str):
            raise TypeError(f"relay URL must be a str, got {type(self.raw_url).__name__}")
        if "\x00" in self.raw_url:
            raise ValueError("relay URL contains null bytes")

        parts = _split_url(self.raw_url)
        if parts.network == NetworkType.LOCAL:
            raise ValueError(f"relay host {parts.host!r} is a local address")
        if parts.network == NetworkType.UNKNOWN:
            raise ValueError(f"relay host {parts.host!r} is not a valid hostname")

        object.__setattr__(self, "url", parts.render())
        object.__setattr__(self, "network", parts.network)
        object.__setattr__(self, "scheme", parts.scheme)
        object.__setattr__(self, "host", parts.host)
        object.__setattr__(self, "port", parts.port)
        object.__setattr__(self, "path", parts.path)

    def __str__(self) -> str:
        return self.url


@dataclass(frozen=True, slots=True)
class RelayDescriptor:
    """A relay with NIP-65 read/write permissions.

    Attributes:
        relay: The validated [Relay][nstatus.models.relay.Relay].
        read: Whether the owner reads (receives mentions) from this relay.
        write: Whether the owner publishes to this relay.

    Raises:
        ValueError: If neither ``read`` nor ``write`` is set.
    """

    relay: Relay
    read: bool = True
    write: bool = True

    def __post_init__(self) -> None:
        validate_instance(self.relay, Relay, "relay")
        if not (self.read or self.write):
            raise ValueError(f"relay {self.relay.url} must allow read or write")

    @property
    def url(self) -> str:
        """Normalized relay URL."""
        return self.relay.url

    @classmethod
    def parse(cls, url: str, *, read: bool = True, write: bool = True) -> RelayDescriptor:
        """Build a descriptor from a raw URL string."""
        return cls(Relay(url), read=read, write=write)

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.relay.url, "read": self.read, "write": self.write}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RelayDescriptor:
        return cls.parse(data["url"], read=bool(data["read"]), write=bool(data["write"]))


@dataclass(frozen=True, slots=True)
class RelayList:
    """The NIP-65 relay list owned by one identity.

    Descriptors are an unordered set; duplicate URLs are collapsed by OR-ing
    their permissions. Lists are versioned by ``created_at`` and a newer list
    replaces an older one for the same owner.

    Attributes:
        owner: Hex public key that published the list.
        descriptors: Set of [RelayDescriptor][nstatus.models.relay.RelayDescriptor].
        created_at: Timestamp of the source event (``0`` for fallback lists).
    """

    owner: str
    descriptors: frozenset[RelayDescriptor]
    created_at: int = 0

    def __post_init__(self) -> None:
        validate_pubkey(self.owner, "owner")
        validate_timestamp(self.created_at, "created_at")

        merged: dict[Relay, tuple[bool, bool]] = {}
        for descriptor in self.descriptors:
            validate_instance(descriptor, RelayDescriptor, "descriptor")
            read, write = merged.get(descriptor.relay, (False, False))
            merged[descriptor.relay] = (read or descriptor.read, write or descriptor.write)

        object.__setattr__(
            self,
            "descriptors",
            frozenset(RelayDescriptor(relay, read=r, write=w) for relay, (r, w) in merged.items()),
        )

    @classmethod
    def fallback(cls, owner: str, relays: Iterable[Relay]) -> RelayList:
        """Build a read/write list from default relays, with ``created_at=0``."""
        return cls(owner, frozenset(RelayDescriptor(relay) for relay in relays), 0)

    @property
    def read_relays(self) -> tuple[Relay, ...]:
        """Relays the owner reads from, sorted by URL."""
        return tuple(sorted((d.relay for d in self.descriptors if d.read), key=str))

    @property
    def write_relays(self) -> tuple[Relay, ...]:
        """Relays the owner publishes to, sorted by URL."""
        return tuple(sorted((d.relay for d in self.descriptors if d.write), key=str))

    @property
    def relays(self) -> tuple[Relay, ...]:
        """All relays in the list, sorted by URL."""
        return tuple(sorted((d.relay for d in self.descriptors), key=str))

    def supersedes(self, other: RelayList | None) -> bool:
        """Whether this list should replace *other* under last-write-wins."""
        return other is None or self.created_at > other.created_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "created_at": self.created_at,
            "relays": [d.to_dict() for d in sorted(self.descriptors, key=lambda d: d.url)],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RelayList:
        return cls(
            owner=data["owner"],
            descriptors=frozenset(RelayDescriptor.from_dict(d) for d in data["relays"]),
            created_at=int(data["created_at"]),
        )
