"""Session service package.

Re-exports all public symbols from the session service and configuration
modules.
"""

from .configs import SessionConfig
from .service import RelayEdit, Session


__all__ = [
    "RelayEdit",
    "Session",
    "SessionConfig",
]
