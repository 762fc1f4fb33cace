"""Admission controller orchestrating quota configuration and counting strategy.

The controller owns the immutable quota table and exactly one counting
strategy, selected at construction and never changed. The HTTP layer only
ever calls ``admit`` with the path of the current request.

Building a controller validates configuration and, in shared mode, connects
to the counter store and seeds it before returning. Any failure in that
phase raises ``ConfigurationAppError``: a controller is either fully ready
or never handed out.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Mapping

from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff

from quota_gate.adapters.counters.base import AbstractCounterStrategy, Decision
from quota_gate.adapters.counters.in_memory import LocalCounterStrategy
from quota_gate.adapters.counters.redis_store import RedisCounterStrategy
from quota_gate.core.config import AdmissionSettings
from quota_gate.core.errors import ConfigurationAppError, StoreTransportAppError
from quota_gate.core.logging import mask_url_credentials

logger = logging.getLogger(__name__)


def validate_quotas(quotas: Mapping[str, int]) -> dict[str, int]:
    """Validate a quota table and return a plain copy of it.

    A quota of 0 is accepted and rejects every request for that route.

    Args:
        quotas: Route path to quota mapping.

    Returns:
        Copy of the validated mapping.

    Raises:
        ConfigurationAppError: If the table is empty or a quota is not a
            non-negative integer.
    """
    if not quotas:
        raise ConfigurationAppError(
            code="empty_quota_table",
            message="At least one route quota must be configured.",
        )

    for route, limit in quotas.items():
        if not route:
            raise ConfigurationAppError(
                code="invalid_quota",
                message="Route paths in the quota table must be non-empty strings.",
            )
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            raise ConfigurationAppError(
                code="invalid_quota",
                message=f"Quota for route path {route} must be a non-negative integer.",
                details={"route": route},
            )

    return dict(quotas)


class AdmissionController:
    """Decides whether a request may proceed to its route handler."""

    def __init__(self, quotas: Mapping[str, int], strategy: AbstractCounterStrategy) -> None:
        self._quotas = MappingProxyType(validate_quotas(quotas))
        self._strategy = strategy

    @property
    def mode(self) -> str:
        return self._strategy.mode

    @property
    def strategy(self) -> AbstractCounterStrategy:
        return self._strategy

    @property
    def routes(self) -> tuple[str, ...]:
        return tuple(self._quotas)

    def quota_for(self, route_path: str) -> int | None:
        return self._quotas.get(route_path)

    async def admit(self, route_path: str) -> Decision:
        """Run one admission check for ``route_path``.

        Must be called exactly once per request, before any downstream work.
        On ``ALLOW`` the route's counter has already been incremented.

        Raises:
            StoreTransportAppError: In shared mode, when the store fails.
        """
        if route_path not in self._quotas:
            decision = Decision.REJECT_UNKNOWN_ROUTE
        else:
            decision = await self._strategy.admit(route_path)

        extra = {
            "route": route_path,
            "mode": self.mode,
            "limit": self._quotas.get(route_path),
            "decision": decision.value,
        }
        if decision is Decision.ALLOW:
            logger.info("admission.allowed", extra=extra)
        elif decision is Decision.REJECT_UNKNOWN_ROUTE:
            logger.warning("admission.unknown_route", extra=extra)
        else:
            logger.warning("admission.quota_exceeded", extra=extra)
        return decision

    async def snapshot(self) -> dict[str, int | None]:
        """Current count per configured route, in quota table order."""
        return {route: await self._strategy.count(route) for route in self._quotas}

    async def close(self) -> None:
        await self._strategy.close()


def _create_store_client(cfg: AdmissionSettings) -> Redis:
    """Create an asyncio Redis client with bounded timeouts and no retries.

    A failed store call fails the admission check it belongs to; retrying is
    left to callers of the HTTP API.
    """
    return Redis.from_url(
        cfg.store_url,
        decode_responses=True,
        retry=Retry(NoBackoff(), 0),
        retry_on_timeout=False,
        socket_timeout=cfg.store_timeout_seconds,
        socket_connect_timeout=cfg.store_timeout_seconds,
    )


async def build_admission_controller(
    cfg: AdmissionSettings,
    *,
    store_client: Redis | None = None,
) -> AdmissionController:
    """Validate configuration and build a ready-to-serve controller.

    Args:
        cfg: Admission settings (mode, quotas, store connection).
        store_client: Optional pre-built Redis client for shared mode. When
            omitted the client is created from ``cfg.store_url`` and closed
            with the controller.

    Returns:
        AdmissionController whose counters are initialised for every route.

    Raises:
        ConfigurationAppError: On invalid configuration or when the shared
            store cannot be reached or seeded.
    """
    quotas = validate_quotas(cfg.quotas)

    if cfg.mode == "local":
        controller = AdmissionController(quotas, LocalCounterStrategy(quotas))
    elif cfg.mode == "shared":
        controller = await _build_shared_controller(cfg, quotas, store_client)
    else:
        raise ConfigurationAppError(
            code="invalid_mode",
            message=f"Unsupported admission mode: {cfg.mode}.",
            details={"mode": str(cfg.mode)},
        )

    logger.info(
        "admission.controller_ready",
        extra={"mode": controller.mode, "routes": len(quotas)},
    )
    return controller


async def _build_shared_controller(
    cfg: AdmissionSettings,
    quotas: dict[str, int],
    store_client: Redis | None,
) -> AdmissionController:
    owns_client = store_client is None
    if store_client is None:
        if not cfg.store_url:
            raise ConfigurationAppError(
                code="missing_store_url",
                message="Shared admission mode requires ADMISSION_STORE_URL.",
                details={"mode": "shared"},
            )
        store_client = _create_store_client(cfg)

    strategy = RedisCounterStrategy(
        store_client,
        quotas,
        key_prefix=cfg.key_prefix,
        sequence=cfg.shared_strategy,
        owns_client=owns_client,
    )

    try:
        await strategy.ping()
        await strategy.seed()
    except StoreTransportAppError as exc:
        logger.error(
            "admission.store_unreachable",
            extra={
                "target": mask_url_credentials(cfg.store_url),
                "error_code": exc.code,
            },
        )
        await strategy.close()
        raise ConfigurationAppError(
            code="store_unreachable",
            message="Counter store could not be reached during startup.",
            details={"mode": "shared", "operation": (exc.details or {}).get("operation", "")},
        ) from exc

    return AdmissionController(quotas, strategy)
