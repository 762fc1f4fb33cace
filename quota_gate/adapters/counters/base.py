"""Counter strategy interfaces.

The admission controller depends on this abstraction, never on a concrete
storage backend, so the counting mode is chosen once at startup.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

DEFAULT_KEY_PREFIX = "routeCounts"


class Decision(str, Enum):
    """Outcome of one admission check."""

    ALLOW = "allow"
    REJECT_UNKNOWN_ROUTE = "reject_unknown_route"
    REJECT_QUOTA_EXCEEDED = "reject_quota_exceeded"


def counter_key(route_path: str, prefix: str = DEFAULT_KEY_PREFIX) -> str:
    """Build the namespaced store key for a route, e.g. ``routeCounts:/poi``."""
    return f"{prefix}:{route_path}"


class AbstractCounterStrategy(ABC):
    """Interface for per-route counting strategies."""

    mode: str

    @abstractmethod
    async def admit(self, route_path: str) -> Decision:
        """Check the route's count against its quota and count the request if allowed.

        On ``Decision.ALLOW`` the route's counter has been incremented by
        exactly one. Rejections leave the counter untouched.

        Args:
            route_path: Path of the requested route.

        Returns:
            Decision for this request.
        """
        raise NotImplementedError

    @abstractmethod
    async def count(self, route_path: str) -> int | None:
        """Return the current count for a route, or None if it is not tracked."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release resources held by the strategy."""
        return None
