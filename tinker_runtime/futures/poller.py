"""Polling submitted operations until they settle.

Each handle is polled by its own asyncio task. Pending answers and
server-side failures back off exponentially (1s, 2s, 4s ... capped at 30s);
backpressure answers wait the server's retry_after_ms. User-category
failures end the poll immediately; so do executor errors, which have already
been through the executor's own retry loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from tinker_runtime import telemetry
from tinker_runtime.config import Config, PoolType
from tinker_runtime.exceptions import ClassifiedError, ErrorCategory, RequestTimeout
from tinker_runtime.futures.types import (
    Backpressure,
    Completed,
    Failed,
    FutureHandle,
    Pending,
    QueueState,
    parse_poll_outcome,
)
from tinker_runtime.http.executor import RequestExecutor, get_default_executor
from tinker_runtime.resilience.constants import (
    DEFAULT_BACKPRESSURE_RETRY_MS,
    DEFAULT_POLL_BASE_DELAY,
    DEFAULT_POLL_MAX_DELAY,
    FUTURE_RETRIEVE_PATH,
)

logger = logging.getLogger(__name__)

__all__ = ["FuturePoller", "QueueStateObserver", "await_result", "await_many"]

QueueStateObserver = Callable[[QueueState, Dict[str, Any]], Any]
Sleep = Callable[[float], Awaitable[None]]


class FuturePoller:
    """Turns future handles into results.

    Args:
        executor: Used for every retrieve call (futures pool)
        clock: Monotonic clock in seconds, used for poll deadlines
        sleep: Async sleep between polls
        base_delay: First backoff in seconds
        max_delay: Backoff cap in seconds
    """

    def __init__(
        self,
        executor: Optional[RequestExecutor] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        base_delay: float = DEFAULT_POLL_BASE_DELAY,
        max_delay: float = DEFAULT_POLL_MAX_DELAY,
    ) -> None:
        self.executor = executor or get_default_executor()
        self._clock = clock
        self._sleep = sleep
        self.base_delay = base_delay
        self.max_delay = max_delay

    def compute_backoff(self, iteration: int) -> float:
        return min(self.base_delay * (2 ** iteration), self.max_delay)

    def poll(
        self,
        handle: Any,
        config: Config,
        *,
        timeout: Optional[float] = None,
        http_timeout: Optional[float] = None,
        observer: Optional[QueueStateObserver] = None,
        metadata: Optional[Dict[str, Any]] = None,
        initial_queue_state: Optional[QueueState] = None,
    ) -> "asyncio.Task[Any]":
        """Start polling ``handle`` in a new task and return the task.

        ``timeout`` bounds the whole poll (None polls forever);
        ``http_timeout`` applies to each retrieve call.
        """
        handle = FutureHandle.from_payload(handle)
        return asyncio.ensure_future(
            self.poll_until_complete(
                handle,
                config,
                timeout=timeout,
                http_timeout=http_timeout,
                observer=observer,
                metadata=metadata,
                initial_queue_state=initial_queue_state,
            )
        )

    async def poll_until_complete(
        self,
        handle: Any,
        config: Config,
        *,
        timeout: Optional[float] = None,
        http_timeout: Optional[float] = None,
        observer: Optional[QueueStateObserver] = None,
        metadata: Optional[Dict[str, Any]] = None,
        initial_queue_state: Optional[QueueState] = None,
    ) -> Any:
        """Poll in the current task; returns the completed result.

        Raises:
            ClassifiedError: User-category failure, executor error, or
                ``RequestTimeout`` when ``timeout`` elapses
        """
        handle = FutureHandle.from_payload(handle)
        deadline = None if timeout is None else self._clock() + timeout
        last_state = initial_queue_state
        last_failure: Optional[ClassifiedError] = None
        iteration = 0

        while True:
            self._check_deadline(deadline, timeout, handle, last_failure)

            call_timeout = http_timeout
            if deadline is not None:
                remaining = deadline - self._clock()
                call_timeout = min(config.timeout if http_timeout is None else http_timeout, remaining)

            payload = await self.executor.execute(
                "POST",
                FUTURE_RETRIEVE_PATH,
                handle.to_dict(),
                config,
                pool_type=PoolType.FUTURES,
                timeout=call_timeout,
            )
            outcome = parse_poll_outcome(payload)

            if isinstance(outcome, Completed):
                if iteration or last_failure is not None:
                    logger.debug("Request %s completed after %d poll(s)", handle.request_id, iteration + 1)
                return outcome.result

            if isinstance(outcome, Failed):
                error = outcome.error
                if error.category is ErrorCategory.USER:
                    raise error
                last_failure = error
                delay = self.compute_backoff(iteration)
                iteration += 1
                logger.warning(
                    "Request %s reported failure (%s); polling again in %.1fs",
                    handle.request_id,
                    error.message,
                    delay,
                )
            elif isinstance(outcome, Pending):
                delay = self.compute_backoff(iteration)
                iteration += 1
            elif isinstance(outcome, Backpressure):
                if outcome.queue_state != last_state:
                    self._notify_queue_state(handle, outcome, last_state, observer, metadata)
                    last_state = outcome.queue_state
                retry_ms = outcome.retry_after_ms
                delay = (DEFAULT_BACKPRESSURE_RETRY_MS if retry_ms is None else retry_ms) / 1000.0
            else:  # pragma: no cover
                raise TypeError(f"Unhandled poll outcome {outcome!r}")

            await self._sleep_within(delay, deadline)

    def _check_deadline(
        self,
        deadline: Optional[float],
        timeout: Optional[float],
        handle: FutureHandle,
        last_failure: Optional[ClassifiedError],
    ) -> None:
        if deadline is None or self._clock() < deadline:
            return
        error = RequestTimeout(
            f"Polling request {handle.request_id} timed out after {timeout}s",
            category=ErrorCategory.UNKNOWN,
            raw_data={
                "request_id": handle.request_id,
                "last_error": last_failure.to_dict() if last_failure else None,
            },
        )
        if last_failure is not None:
            raise error from last_failure
        raise error

    async def _sleep_within(self, delay: float, deadline: Optional[float]) -> None:
        if deadline is not None:
            delay = min(delay, max(0.0, deadline - self._clock()))
        if delay > 0:
            await self._sleep(delay)

    def _notify_queue_state(
        self,
        handle: FutureHandle,
        outcome: Backpressure,
        previous: Optional[QueueState],
        observer: Optional[QueueStateObserver],
        metadata: Optional[Dict[str, Any]],
    ) -> None:
        event_metadata: Dict[str, Any] = dict(metadata or {})
        event_metadata.update(
            {
                "request_id": handle.request_id,
                "queue_state": outcome.queue_state.value,
                "previous_state": previous.value if previous is not None else None,
                "queue_state_reason": outcome.queue_state_reason,
            }
        )
        logger.info(
            "Request %s queue state %s -> %s%s",
            handle.request_id,
            event_metadata["previous_state"],
            outcome.queue_state.value,
            f" ({outcome.queue_state_reason})" if outcome.queue_state_reason else "",
        )
        telemetry.emit(telemetry.QUEUE_STATE_CHANGE, {}, event_metadata)

        if observer is None:
            return
        try:
            observer(outcome.queue_state, event_metadata)
        except Exception:
            logger.warning(
                "Queue state observer failed for request %s", handle.request_id, exc_info=True
            )


def _settle(task: "asyncio.Future[Any]") -> Any:
    """Result of a finished task, or raise it as a ``ClassifiedError``."""
    if task.cancelled():
        raise RequestTimeout("Task was cancelled before completing", category=ErrorCategory.UNKNOWN)
    exc = task.exception()
    if exc is None:
        return task.result()
    if isinstance(exc, ClassifiedError):
        raise exc
    raise RequestTimeout(
        f"Task exited unexpectedly: {exc!r}",
        category=ErrorCategory.UNKNOWN,
        raw_data={"error_type": type(exc).__name__},
    ) from exc


async def _cancel_all(tasks: Iterable["asyncio.Future[Any]"]) -> None:
    pending = [task for task in tasks if not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


async def await_result(task: Union["asyncio.Future[Any]", Awaitable[Any]], timeout: Optional[float] = None) -> Any:
    """Wait for a poll task; every failure surfaces as a ``ClassifiedError``.

    On timeout the task is cancelled and ``RequestTimeout`` is raised.
    """
    task = asyncio.ensure_future(task)
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        task.cancel()
        raise
    if not done:
        await _cancel_all([task])
        raise RequestTimeout(
            f"Timed out after {timeout}s waiting for result", category=ErrorCategory.UNKNOWN
        )
    return _settle(task)


async def await_many(
    tasks: Iterable[Union["asyncio.Future[Any]", Awaitable[Any]]],
    timeout: Optional[float] = None,
) -> List[Any]:
    """Wait for several tasks under one shared deadline.

    Never raises: each slot of the returned list (in input order) holds the
    task's result or its ``ClassifiedError``. Tasks still running at the
    deadline are cancelled and reported as ``RequestTimeout``.
    """
    futures = [asyncio.ensure_future(task) for task in tasks]
    if not futures:
        return []
    try:
        _, pending = await asyncio.wait(futures, timeout=timeout)
    except asyncio.CancelledError:
        for future in futures:
            future.cancel()
        raise
    await _cancel_all(pending)

    results: List[Any] = []
    for future in futures:
        if future in pending:
            results.append(
                RequestTimeout(
                    f"Timed out after {timeout}s waiting for result",
                    category=ErrorCategory.UNKNOWN,
                )
            )
            continue
        try:
            results.append(_settle(future))
        except ClassifiedError as exc:
            results.append(exc)
    return results
