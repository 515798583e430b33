"""Rate-limited dispatch for high-volume sampling calls.

Sampling traffic does not use the executor's retry loop. Each call instead
waits for the tenant's backoff window, then holds layered limits while in
flight:

1. a global concurrency semaphore (400 calls)
2. a throttled semaphore (10 calls) while a backoff was seen recently
3. a byte budget (5 MiB of request payload; 20x cost while throttled)

A 429 pushes the tenant's shared backoff forward and marks the dispatcher as
recently throttled for the next 10 seconds. Use one dispatcher per tenant.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from typing import Any, AsyncIterator, Callable, Dict, Hashable, Optional

from tinker_runtime.config import Config, PoolType
from tinker_runtime.exceptions import StatusError
from tinker_runtime.http.executor import RequestExecutor, get_default_executor
from tinker_runtime.resilience.constants import (
    DEFAULT_BACKOFF_BYTE_PENALTY,
    DEFAULT_BYTE_BUDGET,
    DEFAULT_DISPATCH_CONCURRENCY,
    DEFAULT_RATE_LIMIT_RETRY_MS,
    DEFAULT_THROTTLE_WINDOW_SECONDS,
    DEFAULT_THROTTLED_CONCURRENCY,
)
from tinker_runtime.resilience.rate_limiter import TenantRateLimiter

logger = logging.getLogger(__name__)

__all__ = ["ByteBudget", "SamplingDispatch"]


class ByteBudget:
    """Async semaphore counted in bytes.

    A request may start whenever the remaining budget is not negative, so a
    single request larger than the whole budget still runs (alone).
    """

    def __init__(self, max_bytes: int = DEFAULT_BYTE_BUDGET) -> None:
        if max_bytes <= 0:
            raise ValueError("max_bytes must be > 0")
        self.max_bytes = max_bytes
        self._available = max_bytes
        self._condition = asyncio.Condition()

    @property
    def available(self) -> int:
        return self._available

    async def acquire(self, size: int) -> None:
        async with self._condition:
            await self._condition.wait_for(lambda: self._available >= 0)
            self._available -= size

    async def release(self, size: int) -> None:
        async with self._condition:
            self._available += size
            self._condition.notify_all()

    @contextlib.asynccontextmanager
    async def hold(self, size: int) -> AsyncIterator[None]:
        await self.acquire(size)
        try:
            yield
        finally:
            await self.release(size)


class SamplingDispatch:
    """Layered limits plus shared backoff for one tenant's sampling calls.

    Args:
        executor: Sends the requests (its retry loop is disabled here)
        rate_limiter: Tenant backoff registry; defaults to the executor's
        concurrency: Maximum in-flight calls
        throttled_concurrency: Maximum in-flight calls while throttled
        byte_budget: In-flight payload budget in bytes
        clock: Monotonic clock in seconds
    """

    def __init__(
        self,
        executor: Optional[RequestExecutor] = None,
        rate_limiter: Optional[TenantRateLimiter] = None,
        *,
        concurrency: int = DEFAULT_DISPATCH_CONCURRENCY,
        throttled_concurrency: int = DEFAULT_THROTTLED_CONCURRENCY,
        byte_budget: int = DEFAULT_BYTE_BUDGET,
        byte_penalty: int = DEFAULT_BACKOFF_BYTE_PENALTY,
        throttle_window: float = DEFAULT_THROTTLE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.executor = executor or get_default_executor()
        self.rate_limiter = rate_limiter or self.executor.rate_limiter
        self.concurrency = concurrency
        self.throttled_concurrency = throttled_concurrency
        self.byte_penalty = byte_penalty
        self.throttle_window = throttle_window
        self._clock = clock
        self._concurrency = asyncio.Semaphore(concurrency)
        self._throttled = asyncio.Semaphore(throttled_concurrency)
        self.bytes = ByteBudget(byte_budget)
        self._last_backoff_until: Optional[float] = None

    @property
    def recently_throttled(self) -> bool:
        if self._last_backoff_until is None:
            return False
        now = self._clock()
        return now < self._last_backoff_until or now - self._last_backoff_until < self.throttle_window

    def record_backoff(self, tenant: Hashable, retry_after_ms: int) -> None:
        """Extend the tenant's shared backoff and start the throttle window."""
        self.rate_limiter.record_backoff(tenant, retry_after_ms)
        self._last_backoff_until = self._clock() + retry_after_ms / 1000.0

    @contextlib.asynccontextmanager
    async def _limits(self, estimated_bytes: int) -> AsyncIterator[None]:
        throttled = self.recently_throttled
        cost = estimated_bytes * self.byte_penalty if throttled else estimated_bytes
        async with contextlib.AsyncExitStack() as stack:
            await stack.enter_async_context(self._concurrency)
            if throttled:
                await stack.enter_async_context(self._throttled)
            await stack.enter_async_context(self.bytes.hold(cost))
            yield

    async def rate_limited_call(
        self,
        method: str,
        path: str,
        body: Any,
        config: Config,
        *,
        estimated_bytes: Optional[int] = None,
        timeout: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Send one sampling request under the tenant's limits.

        Raises:
            ClassifiedError: Any failure, unretried; a 429 also records backoff
        """
        tenant = config.tenant_key
        await self.rate_limiter.await_ready(tenant)
        if estimated_bytes is None:
            estimated_bytes = len(json.dumps(body)) if body is not None else 0

        async with self._limits(max(0, estimated_bytes)):
            try:
                return await self.executor.execute(
                    method,
                    path,
                    body,
                    config,
                    pool_type=PoolType.SAMPLING,
                    max_retries=0,
                    timeout=timeout,
                    headers=headers,
                )
            except StatusError as exc:
                if exc.http_status == 429:
                    retry_after_ms = exc.retry_after_ms or DEFAULT_RATE_LIMIT_RETRY_MS
                    logger.info(
                        "metric=rate_limit component=sampling tenant=%r retry_after_ms=%d",
                        tenant,
                        retry_after_ms,
                    )
                    self.record_backoff(tenant, retry_after_ms)
                raise
