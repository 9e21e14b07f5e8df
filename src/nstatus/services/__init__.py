"""Client components and the session that drives them.

Services are the top layer of the diamond DAG, depending on
[nstatus.core][nstatus.core], [nstatus.nips][nstatus.nips],
[nstatus.utils][nstatus.utils], and [nstatus.models][nstatus.models].

```text
Session -> RelayResolver -> TimelineFetcher
```

Attributes:
    Session: Upward interface. Unlocks the key, resolves own relays, and
        refreshes, publishes and edits on behalf of the user. Extends
        [BaseService][nstatus.core.base_service.BaseService] so that
        ``run_forever()`` refreshes the timeline periodically.
    RelayResolver: NIP-65 relay list resolution with cache, discovery relays
        and default fallback, plus the relay-centric fetch plan.
    TimelineFetcher: NIP-38 status fetching and publishing, profile and
        follow list fetching, with write-through to the cache.

See Also:
    [CacheStore][nstatus.core.cache_store.CacheStore]: Shared last-write-wins
        store passed to every component.
    [common][nstatus.services.common]: Shared relay defaults and fetch configs.
"""

from .resolver import (
    RelayResolver,
    ResolutionPhase,
    ResolutionState,
    ResolverConfig,
)
from .session import (
    RelayEdit,
    Session,
    SessionConfig,
)
from .timeline import (
    TimelineConfig,
    TimelineFetcher,
    TimelineFetchResult,
)


__all__ = [
    "RelayEdit",
    "RelayResolver",
    "ResolutionPhase",
    "ResolutionState",
    "ResolverConfig",
    "Session",
    "SessionConfig",
    "TimelineConfig",
    "TimelineFetchResult",
    "TimelineFetcher",
]
