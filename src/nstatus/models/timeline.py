"""
Derived timeline view over replaceable status events.

A [Timeline][nstatus.models.timeline.Timeline] maps each ``(author, kind)``
address to the newest known [StatusEvent][nstatus.models.status.StatusEvent].
Merging is monotonic and idempotent: an event replaces the current one only
if its ``created_at`` is greater, or equal with a greater ``event_id``, so
replaying the same or older data never changes the result.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from .status import StatusEvent


@dataclass(frozen=True, slots=True, eq=False)
class Timeline:
    """Immutable mapping of ``(author, kind)`` to the newest status.

    Examples:
        ```python
        timeline = Timeline().merge(events_from_relay_a).merge(events_from_relay_b)
        for status in timeline.entries():
            print(status.author, status.content)
        ```
    """

    _events: Mapping[tuple[str, str], StatusEvent] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_events", MappingProxyType(dict(self._events)))

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[StatusEvent]:
        return iter(self.entries())

    def __contains__(self, address: object) -> bool:
        return address in self._events

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Timeline):
            return NotImplemented
        return dict(self._events) == dict(other._events)

    def __hash__(self) -> int:
        return hash(frozenset(self._events.items()))

    def get(self, author: str, kind: str) -> StatusEvent | None:
        return self._events.get((author, kind))

    def merge(self, events: Iterable[StatusEvent]) -> Timeline:
        """Return a new timeline with *events* folded in.

        Returns ``self`` when nothing changed, so callers can cheaply test
        ``merged is timeline``.
        """
        updated: dict[tuple[str, str], StatusEvent] | None = None
        for event in events:
            current = (updated if updated is not None else self._events).get(event.address)
            if event.is_newer_than(current):
                if updated is None:
                    updated = dict(self._events)
                updated[event.address] = event
        return self if updated is None else Timeline(updated)

    def entries(self) -> list[StatusEvent]:
        """Statuses ordered newest first (ties by descending event id)."""
        return sorted(
            self._events.values(),
            key=lambda e: (e.created_at, e.event_id),
            reverse=True,
        )

    def without_expired(self, now: int) -> Timeline:
        return Timeline({a: e for a, e in self._events.items() if not e.is_expired(now)})
