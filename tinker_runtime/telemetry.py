"""In-process observability events.

Components emit named events with numeric measurements and descriptive
metadata; handlers attached by id receive them synchronously. Every event is
also logged at DEBUG in ``metric=`` form so it shows up without a handler;
the record carries the event fields as attributes for ``JSONFormatter``.

Example:
    with EventRecorder([HTTP_REQUEST_STOP]) as recorder:
        await executor.execute("POST", "/api/v1/forward", body, config)
    assert recorder.named(HTTP_REQUEST_STOP)[0].metadata["result"] == "ok"
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from tinker_runtime.logging import event_extra

logger = logging.getLogger(__name__)

__all__ = [
    "HTTP_REQUEST_START",
    "HTTP_REQUEST_STOP",
    "HTTP_REQUEST_EXCEPTION",
    "QUEUE_STATE_CHANGE",
    "RATE_LIMIT_BACKOFF",
    "TelemetryEvent",
    "EventRecorder",
    "attach",
    "detach",
    "emit",
]

HTTP_REQUEST_START = "http.request.start"
HTTP_REQUEST_STOP = "http.request.stop"
HTTP_REQUEST_EXCEPTION = "http.request.exception"
QUEUE_STATE_CHANGE = "queue.state_change"
RATE_LIMIT_BACKOFF = "rate_limit.backoff"


@dataclass
class TelemetryEvent:
    name: str
    measurements: Dict[str, float] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


Handler = Callable[[TelemetryEvent], None]

_handlers: Dict[str, Tuple[FrozenSet[str], Handler]] = {}
_lock = threading.Lock()


def attach(handler_id: str, event_names: Iterable[str], handler: Handler) -> None:
    """Register ``handler`` for ``event_names`` under a unique id."""
    with _lock:
        if handler_id in _handlers:
            raise ValueError(f"Telemetry handler '{handler_id}' is already attached")
        _handlers[handler_id] = (frozenset(event_names), handler)


def detach(handler_id: str) -> bool:
    with _lock:
        return _handlers.pop(handler_id, None) is not None


def emit(
    name: str,
    measurements: Optional[Dict[str, float]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> TelemetryEvent:
    """Deliver an event to every handler subscribed to ``name``.

    A handler that raises is logged and stays attached; delivery to the
    remaining handlers continues.
    """
    event = TelemetryEvent(name, dict(measurements or {}), dict(metadata or {}))
    if logger.isEnabledFor(logging.DEBUG):
        fields = " ".join(
            f"{k}={v}" for k, v in itertools.chain(event.measurements.items(), event.metadata.items())
        )
        logger.debug(
            "metric=%s %s", name, fields, extra=event_extra(name, event.measurements, event.metadata)
        )

    with _lock:
        targets = [h for names, h in _handlers.values() if name in names]
    for handler in targets:
        try:
            handler(event)
        except Exception:
            logger.warning("Telemetry handler failed for event %s", name, exc_info=True)
    return event


class EventRecorder:
    """Collects events in memory; attach with ``with`` or ``start()``/``stop()``."""

    _ids = itertools.count()

    def __init__(self, event_names: Iterable[str]):
        self.event_names = list(event_names)
        self.events: List[TelemetryEvent] = []
        self._handler_id = f"event-recorder-{next(self._ids)}"

    def start(self) -> "EventRecorder":
        attach(self._handler_id, self.event_names, self.events.append)
        return self

    def stop(self) -> None:
        detach(self._handler_id)

    def named(self, name: str) -> List[TelemetryEvent]:
        return [event for event in self.events if event.name == name]

    def __enter__(self) -> "EventRecorder":
        return self.start()

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()
