"""Helpers shared by the resolver and timeline components."""

from __future__ import annotations

from typing import TYPE_CHECKING

from nstatus.core.metrics import RELAY_REQUEST_SECONDS


if TYPE_CHECKING:
    from collections.abc import Iterable

    from nstatus.utils.protocol import RelayFetch


def observe_relay_requests(component: str, results: Iterable[RelayFetch]) -> None:
    """Record the duration of each relay request, labelled ``ok`` or ``failed``."""
    for result in results:
        outcome = "ok" if result.ok else "failed"
        RELAY_REQUEST_SECONDS.labels(component=component, outcome=outcome).observe(
            result.elapsed
        )


def chunked(items: list[str], size: int) -> list[list[str]]:
    """Split *items* into consecutive chunks of at most *size* elements."""
    return [items[start : start + size] for start in range(0, len(items), size)]
