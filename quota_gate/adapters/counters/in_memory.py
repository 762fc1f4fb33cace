"""In-process route counter strategy.

Notes:
- Per-process only: running multiple workers multiplies the effective quota.
- Counts live for the lifetime of the process and start at zero on restart.
- Thread-safe: the check-then-increment sequence runs under one lock, so
  concurrent requests can never push a route past its quota.
"""

from __future__ import annotations

import threading
from types import MappingProxyType
from typing import Mapping

from quota_gate.adapters.counters.base import AbstractCounterStrategy, Decision


class LocalCounterStrategy(AbstractCounterStrategy):
    """Counts admitted requests per route in process memory.

    The counter map is created with one zero entry per configured route and
    never gains or loses keys afterwards, so route membership in the map is
    the same as membership in the quota table.
    """

    mode = "local"

    def __init__(self, quotas: Mapping[str, int]) -> None:
        self._quotas = MappingProxyType(dict(quotas))
        self._lock = threading.Lock()
        self._counts: dict[str, int] = {route: 0 for route in self._quotas}

    def consume(self, route_path: str) -> Decision:
        """Synchronously check and count one request for ``route_path``.

        Args:
            route_path: Path of the requested route.

        Returns:
            Decision for this request.
        """
        with self._lock:
            count = self._counts.get(route_path)
            if count is None:
                return Decision.REJECT_UNKNOWN_ROUTE
            if count < self._quotas[route_path]:
                self._counts[route_path] = count + 1
                return Decision.ALLOW
            return Decision.REJECT_QUOTA_EXCEEDED

    async def admit(self, route_path: str) -> Decision:
        return self.consume(route_path)

    async def count(self, route_path: str) -> int | None:
        with self._lock:
            return self._counts.get(route_path)

    def snapshot(self) -> dict[str, int]:
        """Return a consistent copy of all route counts."""
        with self._lock:
            return dict(self._counts)
