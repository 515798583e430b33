"""Retry-aware request executor.

One logical call is a sequence of attempts driven by tenacity. Each attempt
waits for the tenant's rate-limit window, sends through the transport and
classifies the response. ``RetryPolicy.decide`` picks whether and how long
to wait before the next attempt. Attempts are bounded by ``max_retries`` and
the elapsed-time budget, whichever runs out first.

Example:
    async with HttpxTransport() as transport:
        executor = RequestExecutor(transport)
        result = await executor.execute("POST", "/api/v1/forward", body, config)
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    stop_before_delay,
)

from tinker_runtime import telemetry
from tinker_runtime.config import Config, PoolType
from tinker_runtime.exceptions import (
    ClassifiedError,
    ConnectionFailure,
    ErrorCategory,
    TransportError,
)
from tinker_runtime.http.responses import classify_response, connection_failure
from tinker_runtime.http.transport import HttpRequest, HttpxTransport, RawResponse, Transport
from tinker_runtime.resilience.circuit_breaker import CircuitBreaker
from tinker_runtime.resilience.rate_limiter import TenantRateLimiter, get_rate_limiter
from tinker_runtime.resilience.retry import NO_RETRY, RetryDirective, RetryPolicy

logger = logging.getLogger(__name__)

__all__ = [
    "RequestExecutor",
    "execute_with_retry",
    "get_default_executor",
    "close_default_executor",
]

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class _Attempt:
    """Outcome of one attempt; the retry loop never sees exceptions for these."""

    response: Optional[Dict[str, Any]] = None
    error: Optional[ClassifiedError] = None
    directive: RetryDirective = NO_RETRY
    status: Optional[int] = None


class _CallState:
    __slots__ = ("attempts",)

    def __init__(self) -> None:
        self.attempts = 0

    @property
    def retries(self) -> int:
        return max(0, self.attempts - 1)


class RequestExecutor:
    """Sends requests with retry, rate-limit awareness and telemetry.

    Args:
        transport: Where attempts are sent
        rate_limiter: Consulted before every attempt
        sleep: Async sleep used between attempts
        policy: Template policy; ``max_retries``/``budget`` come from Config
    """

    def __init__(
        self,
        transport: Transport,
        rate_limiter: Optional[TenantRateLimiter] = None,
        sleep: Sleep = asyncio.sleep,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.transport = transport
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self._sleep = sleep
        self._policy = policy or RetryPolicy()

    def _policy_for(self, config: Config, max_retries: Optional[int]) -> RetryPolicy:
        return RetryPolicy(
            max_retries=config.max_retries if max_retries is None else max(0, max_retries),
            base_delay=self._policy.base_delay,
            max_delay=self._policy.max_delay,
            budget=config.retry_budget,
            rate_limit_delay_ms=self._policy.rate_limit_delay_ms,
            rng=self._policy.rng,
            rules=self._policy.rules,
        )

    def _build_request(
        self,
        method: str,
        path: str,
        body: Any,
        config: Config,
        pool_type: PoolType,
        timeout: Optional[float],
        headers: Optional[Mapping[str, str]],
    ) -> HttpRequest:
        merged = config.default_headers()
        if headers:
            merged.update(headers)
        payload = None if body is None else json.dumps(body).encode("utf-8")
        tenant = config.tenant_key
        return HttpRequest(
            method=method.upper(),
            url=config.url_for(path),
            headers=merged,
            body=payload,
            timeout=config.timeout if timeout is None else timeout,
            pool_key=(tenant.base_url, tenant.api_key, pool_type.value),
        )

    async def _attempt(
        self,
        call: _CallState,
        request: HttpRequest,
        config: Config,
        policy: RetryPolicy,
        breaker: Optional[CircuitBreaker],
    ) -> _Attempt:
        attempt = call.attempts
        call.attempts += 1

        await self.rate_limiter.await_ready(config.tenant_key)

        if breaker is not None and not breaker.allow():
            error = ConnectionFailure(
                f"Circuit '{breaker.name}' is open; request not sent",
                category=ErrorCategory.UNKNOWN,
                raw_data={"circuit": breaker.name},
            )
            return _Attempt(error=error)

        try:
            response: RawResponse = await self.transport.send(request)
        except TransportError as exc:
            error = connection_failure(exc)
            return _Attempt(error=error, directive=policy.decide(attempt, error=error))

        result = classify_response(response)
        if isinstance(result, ClassifiedError):
            directive = policy.decide(
                attempt, status=response.status, headers=response.headers, error=result
            )
            return _Attempt(error=result, directive=directive, status=response.status)
        return _Attempt(response=result, status=response.status)

    def _retrying(self, request: HttpRequest, policy: RetryPolicy) -> AsyncRetrying:
        def wait(retry_state: RetryCallState) -> float:
            return retry_state.outcome.result().directive.delay

        def before_sleep(retry_state: RetryCallState) -> None:
            last: _Attempt = retry_state.outcome.result()
            logger.debug(
                "Retrying %s %s in %.3fs (attempt %d, %s): %s",
                request.method,
                request.url,
                retry_state.upcoming_sleep,
                retry_state.attempt_number,
                last.directive.reason,
                last.error,
            )

        def exhausted(retry_state: RetryCallState) -> _Attempt:
            last: _Attempt = retry_state.outcome.result()
            if retry_state.attempt_number <= policy.max_retries:
                logger.warning(
                    "Retry budget of %.1fs exhausted for %s %s after %d attempt(s)",
                    policy.budget,
                    request.method,
                    request.url,
                    retry_state.attempt_number,
                )
                return _Attempt(
                    error=ConnectionFailure(
                        "Retry timeout exceeded",
                        category=ErrorCategory.UNKNOWN,
                        raw_data={
                            "attempts": retry_state.attempt_number,
                            "budget_seconds": policy.budget,
                            "last_error": last.error.to_dict() if last.error else None,
                        },
                    ),
                    status=last.status,
                )
            logger.warning(
                "Giving up on %s %s after %d attempt(s): %s",
                request.method,
                request.url,
                retry_state.attempt_number,
                last.error,
            )
            return last

        return AsyncRetrying(
            stop=stop_after_attempt(policy.max_retries + 1) | stop_before_delay(policy.budget),
            wait=wait,
            retry=retry_if_result(lambda attempt: attempt.directive.should_retry),
            sleep=self._sleep,
            before_sleep=before_sleep,
            retry_error_callback=exhausted,
        )

    async def execute(
        self,
        method: str,
        path: str,
        body: Any,
        config: Config,
        *,
        pool_type: Any = PoolType.DEFAULT,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
        headers: Optional[Mapping[str, str]] = None,
        breaker: Optional[CircuitBreaker] = None,
    ) -> Dict[str, Any]:
        """Send one logical request and return the decoded JSON object.

        Raises:
            ClassifiedError: The final failure after retries (or immediately
                for non-retryable failures)
        """
        pool = PoolType.normalize(pool_type)
        policy = self._policy_for(config, max_retries)
        request = self._build_request(method, path, body, config, pool, timeout, headers)
        metadata = {
            "method": request.method,
            "path": path,
            "pool_type": pool.value,
            "base_url": config.normalized_base_url,
        }
        call = _CallState()
        started = time.monotonic()
        telemetry.emit(telemetry.HTTP_REQUEST_START, {"system_time": time.time()}, metadata)

        try:
            outcome: _Attempt = await self._retrying(request, policy)(
                self._attempt, call, request, config, policy, breaker
            )
        except BaseException as exc:  # noqa: BLE001
            telemetry.emit(
                telemetry.HTTP_REQUEST_EXCEPTION,
                {"duration": time.monotonic() - started},
                {**metadata, "retry_count": call.retries, "error_type": type(exc).__name__},
            )
            raise

        duration = time.monotonic() - started
        if outcome.error is None:
            if breaker is not None:
                breaker.record_success()
            telemetry.emit(
                telemetry.HTTP_REQUEST_STOP,
                {"duration": duration},
                {**metadata, "result": "ok", "retry_count": call.retries, "status": outcome.status},
            )
            return outcome.response if outcome.response is not None else {}

        error = outcome.error
        if breaker is not None and error.is_retryable and "circuit" not in (error.raw_data or {}):
            breaker.record_failure()
        telemetry.emit(
            telemetry.HTTP_REQUEST_STOP,
            {"duration": duration},
            {
                **metadata,
                "result": "error",
                "retry_count": call.retries,
                "status": error.http_status,
                "error_kind": error.kind.value,
                "error_category": error.category.value,
            },
        )
        raise error


_default_executor: Optional[RequestExecutor] = None


def get_default_executor() -> RequestExecutor:
    """Process-wide executor over a pooled httpx transport."""
    global _default_executor
    if _default_executor is None:
        _default_executor = RequestExecutor(HttpxTransport(), get_rate_limiter())
    return _default_executor


async def close_default_executor() -> None:
    global _default_executor
    executor, _default_executor = _default_executor, None
    if executor is not None and isinstance(executor.transport, HttpxTransport):
        await executor.transport.aclose()


async def execute_with_retry(
    method: str,
    path: str,
    body: Any,
    config: Config,
    **kwargs: Any,
) -> Dict[str, Any]:
    """Module-level entry point over ``get_default_executor()``."""
    return await get_default_executor().execute(method, path, body, config, **kwargs)
