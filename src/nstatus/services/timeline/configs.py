"""Timeline fetcher configuration models.

See Also:
    [TimelineFetcher][nstatus.services.timeline.TimelineFetcher]: The
        component that consumes these configurations.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from nstatus.services.common.configs import FetchConfig


class TimelineConfig(BaseModel):
    """Configuration for status, profile and follow list fetching.

    Attributes:
        fetch: Per-relay timeout and concurrency cap.
        limit: Maximum status events requested from each relay.
        since: Only request statuses created at or after this Unix timestamp.
        profile_batch_size: Maximum authors per profile query.
        hide_expired: Drop NIP-40 expired statuses from the cached view.

    Examples:
        ```yaml
        timeline:
          fetch:
            timeout: 10.0
            max_parallel: 8
          limit: 500
        ```
    """

    fetch: FetchConfig = Field(default_factory=FetchConfig)
    limit: int = Field(default=500, ge=1, le=5000, description="Events per relay query")
    since: int | None = Field(default=None, ge=0, description="Lower created_at bound")
    profile_batch_size: int = Field(
        default=250, ge=1, le=1000, description="Authors per profile query"
    )
    hide_expired: bool = Field(default=True, description="Hide expired statuses")
