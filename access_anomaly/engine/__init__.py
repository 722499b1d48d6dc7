"""Engine: per-user pattern store and the AccessGuard orchestrator."""

from .guard import AccessGuard
from .store import AccessPatternStore

__all__ = [
    "AccessGuard",
    "AccessPatternStore",
]
