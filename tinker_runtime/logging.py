"""Logging utilities for applications embedding the runtime.

The library itself only creates module loggers; applications call
``setup_logging`` to get console/file output, optionally as JSON lines.
Telemetry events are logged with ``extra=event_extra(...)`` so the JSON
output carries ``event`` plus each measurement and metadata field.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

__all__ = ["setup_logging", "JSONFormatter", "event_extra", "RESERVED_ATTRS"]

RUNTIME_LOGGER = "tinker_runtime"

# Attribute names LogRecord owns; makeRecord rejects them in extra=
RESERVED_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message",
    "asctime",
}

EVENT_FIELD = "event"

SECRET_FIELDS = frozenset({"api_key", "x-api-key", "authorization"})


def event_extra(
    name: str,
    measurements: Optional[Mapping[str, Any]] = None,
    metadata: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Build an ``extra=`` mapping for a telemetry event.

    Keys that collide with LogRecord attributes (or with ``event``) are
    prefixed with ``event_`` instead of being dropped.
    """
    extra: Dict[str, Any] = {}
    for source in (measurements or {}, metadata or {}):
        for key, value in source.items():
            if key in RESERVED_ATTRS or key == EVENT_FIELD:
                key = f"event_{key}"
            extra[key] = value
    extra[EVENT_FIELD] = name
    return extra


def _mask(value: Any) -> str:
    text = str(value)
    return f"{text[:4]}***" if text else ""


class JSONFormatter(logging.Formatter):
    """Formatter that outputs log records as JSON.

    ``event`` is written at the top level; other ``extra=`` attributes are
    grouped under ``extra`` with credential fields masked.

    Example output:
        {"timestamp": "2026-01-15T10:30:00.123Z", "level": "DEBUG",
         "logger": "tinker_runtime.telemetry", "event": "http.request.stop",
         "message": "metric=http.request.stop duration=0.2 retry_count=1",
         "extra": {"duration": 0.2, "retry_count": 1, "path": "/api/v1/forward"}}
    """

    def __init__(
        self,
        include_fields: Optional[List[str]] = None,
        exclude_fields: Optional[List[str]] = None,
    ):
        super().__init__()
        self.include_fields = include_fields or []
        self.exclude_fields = set(exclude_fields or [])

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
        }
        event = getattr(record, EVENT_FIELD, None)
        if event is not None:
            log_data[EVENT_FIELD] = event
        log_data["message"] = record.getMessage()

        if record.pathname:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for name in self.include_fields:
            if hasattr(record, name):
                log_data[name] = self._field_value(name, getattr(record, name))

        extra_attrs = {
            key: self._field_value(key, value)
            for key, value in record.__dict__.items()
            if key not in RESERVED_ATTRS and key != EVENT_FIELD and key not in self.exclude_fields
        }
        if extra_attrs:
            log_data["extra"] = extra_attrs

        return json.dumps(log_data, default=str)

    @staticmethod
    def _field_value(key: str, value: Any) -> Any:
        if key.lower() in SECRET_FIELDS and value is not None:
            return _mask(value)
        return value


def setup_logging(
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Attach console (and optional file) handlers to the root logger.

    The root logger stays at INFO; ``verbose`` lowers only the
    ``tinker_runtime`` logger to DEBUG so ``metric=`` event lines appear
    without turning on DEBUG for every other library.

    Args:
        verbose: Log the runtime's DEBUG lines, telemetry events included
        json_format: Use JSON output format (for log aggregation)
        log_file: Optional file path to write logs to
    """
    if json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    logging.getLogger(RUNTIME_LOGGER).setLevel(logging.DEBUG if verbose else logging.NOTSET)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
