"""Timeline service package.

Re-exports all public symbols from the timeline service and configuration
modules.
"""

from .configs import TimelineConfig
from .service import TimelineFetcher, TimelineFetchResult


__all__ = [
    "TimelineConfig",
    "TimelineFetchResult",
    "TimelineFetcher",
]
