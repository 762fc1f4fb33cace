"""Redis-backed route counter strategy shared by every service instance.

Each configured route owns one integer key, ``<prefix>:<path>``, created
with ``SET NX`` at startup so counts accumulated by earlier runs survive a
restart. Counts are only ever reset by deleting or overwriting the keys
outside the service.

Two admission sequences are supported:

``check_then_increment`` (default)
    ``EXISTS`` → ``GET`` → compare → ``INCR``. The increment itself is the
    store's atomic primitive, so no update is ever lost, but the read and the
    increment are separate round trips. Instances racing on the last slots of
    a route can each read ``quota - 1`` and each increment, so a route may be
    over-admitted by up to (racing instances - 1) requests.

``increment_then_compare``
    ``EXISTS`` → ``INCR`` → compare the returned value; when it lands past
    the quota the increment is undone with ``DECR`` and the request is
    rejected. No over-admission across instances, at the cost of the counter
    briefly reading one above the true admitted total while a rejection is
    being rolled back.

Every store call can fail on its own. Transport failures and timeouts are
raised as ``StoreTransportAppError`` and never turned into an admission.
A counter key holding something other than an integer is reported the same
way, with code ``store_corrupt``.
"""

from __future__ import annotations

import asyncio
import logging
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping

from redis.asyncio import Redis
from redis.exceptions import RedisError

from quota_gate.adapters.counters.base import (
    DEFAULT_KEY_PREFIX,
    AbstractCounterStrategy,
    Decision,
    counter_key,
)
from quota_gate.core.errors import StoreTransportAppError

logger = logging.getLogger(__name__)

CHECK_THEN_INCREMENT = "check_then_increment"
INCREMENT_THEN_COMPARE = "increment_then_compare"


class RedisCounterStrategy(AbstractCounterStrategy):
    """Counts admitted requests per route in a shared Redis instance.

    The client handle is passed in and held for the strategy's lifetime.
    Timeouts are bounded by the client's socket timeouts.
    """

    mode = "shared"

    def __init__(
        self,
        client: Redis,
        quotas: Mapping[str, int],
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        sequence: str = CHECK_THEN_INCREMENT,
        owns_client: bool = False,
    ) -> None:
        """Initialize the shared counter strategy.

        Args:
            client: Connected ``redis.asyncio.Redis`` client.
            quotas: Route path to quota mapping.
            key_prefix: Namespace for counter keys.
            sequence: ``check_then_increment`` or ``increment_then_compare``.
            owns_client: Close the client when the strategy is closed.

        Raises:
            ValueError: If ``sequence`` is not a supported admission sequence.
        """
        if sequence not in (CHECK_THEN_INCREMENT, INCREMENT_THEN_COMPARE):
            raise ValueError(f"unsupported admission sequence: {sequence}")

        self._client = client
        self._quotas = MappingProxyType(dict(quotas))
        self._key_prefix = key_prefix
        self._sequence = sequence
        self._owns_client = owns_client

    def key_for(self, route_path: str) -> str:
        return counter_key(route_path, self._key_prefix)

    async def _call(
        self,
        operation: str,
        route_path: str,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Run one store command, translating transport failures."""
        try:
            return await func(*args, **kwargs)
        except RedisError as exc:
            logger.error(
                "admission.store_error",
                extra={
                    "operation": operation,
                    "route": route_path,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            target = f" while checking route {route_path}" if route_path else ""
            raise StoreTransportAppError(
                code="store_unavailable",
                message=f"Counter store unavailable{target}. Try again later.",
                details={
                    "route": route_path,
                    "operation": operation,
                    "error_type": type(exc).__name__,
                },
            ) from exc

    def _parse_count(self, route_path: str, raw: Any) -> int:
        """Read a counter value, treating anything but an integer as a store fault."""
        try:
            return int(raw)
        except (TypeError, ValueError) as exc:
            logger.error(
                "admission.store_corrupt",
                extra={
                    "route": route_path,
                    "key": self.key_for(route_path),
                    "error_type": type(exc).__name__,
                },
            )
            raise StoreTransportAppError(
                code="store_corrupt",
                message=f"Counter for route {route_path} holds a non-integer value.",
                details={"route": route_path, "operation": "parse", "error_type": type(exc).__name__},
            ) from exc

    async def ping(self) -> None:
        await self._call("ping", "", self._client.ping)

    async def seed(self) -> int:
        """Create a zero counter for every configured route that has none.

        Existing counters are left untouched. Routes are seeded concurrently
        and every write settles before this returns, even when one of them
        fails, so the client is never closed under a pending call.

        Returns:
            Number of counters created by this call.
        """
        routes = list(self._quotas)
        results = await asyncio.gather(
            *(
                self._call("seed", route, self._client.set, self.key_for(route), 0, nx=True)
                for route in routes
            ),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        created = sum(1 for result in results if result)
        logger.info(
            "admission.store_seeded",
            extra={
                "routes": len(routes),
                "seeded": created,
                "already_present": len(routes) - created,
                "key_prefix": self._key_prefix,
            },
        )
        return created

    async def admit(self, route_path: str) -> Decision:
        limit = self._quotas.get(route_path)
        if limit is None:
            return Decision.REJECT_UNKNOWN_ROUTE

        key = self.key_for(route_path)
        exists = await self._call("exists", route_path, self._client.exists, key)
        if not exists:
            return Decision.REJECT_UNKNOWN_ROUTE

        if self._sequence == INCREMENT_THEN_COMPARE:
            return await self._increment_then_compare(route_path, key, limit)

        raw = await self._call("get", route_path, self._client.get, key)
        if raw is None:
            # Removed between EXISTS and GET.
            return Decision.REJECT_UNKNOWN_ROUTE
        if self._parse_count(route_path, raw) >= limit:
            return Decision.REJECT_QUOTA_EXCEEDED

        await self._call("incr", route_path, self._client.incr, key)
        return Decision.ALLOW

    async def _increment_then_compare(self, route_path: str, key: str, limit: int) -> Decision:
        count = await self._call("incr", route_path, self._client.incr, key)
        if count <= limit:
            return Decision.ALLOW
        await self._call("decr", route_path, self._client.decr, key)
        return Decision.REJECT_QUOTA_EXCEEDED

    async def count(self, route_path: str) -> int | None:
        if route_path not in self._quotas:
            return None
        raw = await self._call("get", route_path, self._client.get, self.key_for(route_path))
        return None if raw is None else self._parse_count(route_path, raw)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
