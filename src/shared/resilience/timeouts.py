"""
Per-stage deadlines with optional fallbacks.

Every external call in the retrieval pipeline goes through
``execute_with_timeout`` or ``execute_with_fallback``. On expiry the pending
task is cancelled, not merely abandoned, and a typed ``StageTimeout`` is
raised.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from src.shared.config import TenantTimeoutConfig, TimeoutConfig
from src.shared.config_store import DEFAULT_TENANT, TenantConfigStore
from src.shared.errors import StageTimeout
from src.shared.observability import get_logger
from src.shared.observability.metrics import (
    retrieval_stage_degraded_total,
    retrieval_stage_duration_ms,
    retrieval_stage_timeouts_total,
)

logger = get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]


@dataclass(frozen=True)
class FallbackResult(Generic[T]):
    result: T
    used_fallback: bool


async def execute_with_timeout(
    operation: Operation[T], timeout_ms: float, label: str
) -> T:
    """
    Await ``operation()`` under a deadline.

    Args:
        operation: Zero-argument callable returning an awaitable
        timeout_ms: Deadline in milliseconds
        label: Stage name used in errors, logs and metrics

    Returns:
        The operation's result

    Raises:
        StageTimeout: If the deadline expires. The operation is cancelled.
    """
    started = time.perf_counter()
    try:
        return await asyncio.wait_for(operation(), timeout=timeout_ms / 1000.0)
    except asyncio.TimeoutError:
        retrieval_stage_timeouts_total.labels(stage=label).inc()
        logger.warning("stage_timeout", stage=label, timeout_ms=timeout_ms)
        raise StageTimeout(label, timeout_ms) from None
    finally:
        retrieval_stage_duration_ms.labels(stage=label).observe(
            (time.perf_counter() - started) * 1000
        )


async def execute_with_fallback(
    primary: Operation[T],
    fallback: Operation[T],
    timeout_ms: float,
    label: str,
) -> FallbackResult[T]:
    """
    Run ``primary`` under a deadline and substitute ``fallback`` on timeout.

    Only a ``StageTimeout`` triggers the fallback. Any other exception raised
    by ``primary`` propagates unchanged.
    """
    try:
        result = await execute_with_timeout(primary, timeout_ms, label)
        return FallbackResult(result=result, used_fallback=False)
    except StageTimeout:
        retrieval_stage_degraded_total.labels(stage=label, reason="timeout").inc()
        logger.warning("stage_fallback_used", stage=label, timeout_ms=timeout_ms)
        return FallbackResult(result=await fallback(), used_fallback=True)


class TimeoutManager:
    """Per-tenant timeout configuration with deadline helpers."""

    def __init__(
        self,
        defaults: Optional[TimeoutConfig] = None,
        store: Optional[TenantConfigStore[TenantTimeoutConfig]] = None,
    ) -> None:
        self._store = store or TenantConfigStore(
            default=TenantTimeoutConfig(
                tenant_id=DEFAULT_TENANT, timeouts=defaults or TimeoutConfig()
            ),
            name="timeouts",
        )

    def get_timeout_config(self, tenant_id: Optional[str] = None) -> TimeoutConfig:
        return self._store.get(tenant_id).timeouts

    def get_tenant_config(self, tenant_id: Optional[str] = None) -> TenantTimeoutConfig:
        return self._store.get(tenant_id)

    def update_tenant_config(self, config: TenantTimeoutConfig) -> None:
        self._store.put(config.tenant_id, config)
        logger.info(
            "tenant_timeouts_updated",
            tenant_id=config.tenant_id,
            timeouts=config.timeouts.model_dump(),
        )

    def fallback_enabled(self, tenant_id: Optional[str] = None) -> bool:
        return self._store.get(tenant_id).fallback_enabled

    async def execute_with_timeout(
        self, operation: Operation[T], timeout_ms: float, label: str
    ) -> T:
        return await execute_with_timeout(operation, timeout_ms, label)

    async def execute_with_fallback(
        self,
        primary: Operation[T],
        fallback: Operation[T],
        timeout_ms: float,
        label: str,
    ) -> FallbackResult[T]:
        return await execute_with_fallback(primary, fallback, timeout_ms, label)
