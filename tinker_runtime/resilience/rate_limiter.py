"""Per-tenant backoff shared by every request issued for that tenant.

When the server answers 429 with a retry-after hint, the tenant's
``backoff_until`` is pushed forward. Every outbound attempt for the same
tenant waits until that instant has passed. Tenants never observe each
other's backoff.

Example:
    limiter = get_rate_limiter()
    await limiter.await_ready(config.tenant_key)
    ...
    limiter.record_backoff(config.tenant_key, error.retry_after_ms)
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Awaitable, Callable, Dict, Hashable, Optional

from tinker_runtime import telemetry

logger = logging.getLogger(__name__)

__all__ = ["TenantRateLimiter", "get_rate_limiter", "reset_rate_limiter"]


class _BackoffEntry:
    """Mutable backoff deadline with an atomic compare-and-advance."""

    __slots__ = ("_lock", "backoff_until")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.backoff_until = 0.0

    def advance(self, until: float) -> float:
        with self._lock:
            if until > self.backoff_until:
                self.backoff_until = until
            return self.backoff_until


class TenantRateLimiter:
    """Registry of backoff entries keyed by tenant.

    Entries are created on first use (first writer wins) and never removed.

    Args:
        clock: Monotonic clock in seconds
        sleep: Async sleep used while waiting out a backoff
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._entries: Dict[Hashable, _BackoffEntry] = {}

    def _entry(self, tenant: Hashable) -> _BackoffEntry:
        entry = self._entries.get(tenant)
        if entry is None:
            # setdefault is atomic: concurrent creators all get the same entry
            entry = self._entries.setdefault(tenant, _BackoffEntry())
        return entry

    def backoff_remaining(self, tenant: Hashable) -> float:
        """Seconds until ``tenant`` may send again (0.0 when ready)."""
        return max(0.0, self._entry(tenant).backoff_until - self._clock())

    def should_backoff(self, tenant: Hashable) -> bool:
        return self.backoff_remaining(tenant) > 0.0

    def backoff_until(self, tenant: Hashable) -> float:
        return self._entry(tenant).backoff_until

    async def await_ready(self, tenant: Hashable) -> None:
        """Suspend until the tenant's backoff window has passed.

        Re-checks after every sleep since another request may have extended
        the window meanwhile.
        """
        while True:
            remaining = self.backoff_remaining(tenant)
            if remaining <= 0.0:
                return
            logger.debug("Tenant %r backing off for %.3fs", tenant, remaining)
            await self._sleep(remaining)

    def record_backoff(self, tenant: Hashable, retry_after_ms: Optional[int]) -> float:
        """Push the tenant's backoff to at least now + ``retry_after_ms``.

        Returns the resulting deadline; an earlier deadline never replaces a
        later one.
        """
        if retry_after_ms is None or retry_after_ms <= 0:
            return self._entry(tenant).backoff_until
        until = self._entry(tenant).advance(self._clock() + retry_after_ms / 1000.0)
        logger.info(
            "metric=rate_limit tenant=%r event=backoff retry_after_ms=%d", tenant, retry_after_ms
        )
        telemetry.emit(
            telemetry.RATE_LIMIT_BACKOFF,
            {"retry_after_ms": float(retry_after_ms)},
            {"tenant": tenant},
        )
        return until

    def __len__(self) -> int:
        return len(self._entries)


_default_limiter: Optional[TenantRateLimiter] = None
_default_lock = threading.Lock()


def get_rate_limiter() -> TenantRateLimiter:
    """Return the process-wide limiter shared by all clients."""
    global _default_limiter
    if _default_limiter is None:
        with _default_lock:
            if _default_limiter is None:
                _default_limiter = TenantRateLimiter()
    return _default_limiter


def reset_rate_limiter() -> None:
    """Drop the process-wide limiter (tests only)."""
    global _default_limiter
    with _default_lock:
        _default_limiter = None
