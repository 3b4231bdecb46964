"""Session state models.

Contains the lifecycle state enum, the read-only session snapshot handed to
callers, and the cache entry record.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class SessionState(str, Enum):
    """Lifecycle states of an authenticated session."""

    UNAUTHENTICATED = "unauthenticated"
    ACQUIRING = "acquiring"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    EXPIRING = "expiring"


# User interaction events that count as activity for the inactivity monitor.
ACTIVITY_EVENTS: frozenset[str] = frozenset(
    {"pointerdown", "pointermove", "keypress", "scroll", "touchstart", "click"}
)


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of the session at a point in time."""

    state: SessionState
    generation: int
    has_token: bool
    last_activity: float
    teardown_in_progress: bool = False
    last_teardown_reason: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.state in (SessionState.AUTHENTICATED, SessionState.REFRESHING)


@dataclass
class CacheEntry:
    """Cached value with its insertion timestamp."""

    value: Any
    inserted_at: float

    def is_expired(self, now: float, ttl: float) -> bool:
        """Check whether the entry is older than the TTL."""
        return now - self.inserted_at > ttl
