"""Future handles, poll outcomes and the poller with its await helpers."""

from tinker_runtime.futures.poller import (
    FuturePoller,
    QueueStateObserver,
    await_many,
    await_result,
)
from tinker_runtime.futures.types import (
    Backpressure,
    Completed,
    Failed,
    FutureHandle,
    Pending,
    PollOutcome,
    QueueState,
    parse_poll_outcome,
)

__all__ = [
    "FuturePoller",
    "QueueStateObserver",
    "await_many",
    "await_result",
    "Backpressure",
    "Completed",
    "Failed",
    "FutureHandle",
    "Pending",
    "PollOutcome",
    "QueueState",
    "parse_poll_outcome",
]
