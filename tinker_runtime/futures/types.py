"""Request handles and the outcomes a retrieve call can report."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from tinker_runtime.exceptions import ErrorCategory, OperationFailed, ResponseValidationError

__all__ = [
    "QueueState",
    "FutureHandle",
    "Pending",
    "Completed",
    "Failed",
    "Backpressure",
    "PollOutcome",
    "parse_poll_outcome",
]


class QueueState(str, Enum):
    """Server-reported queue condition for a submitted request."""

    ACTIVE = "active"
    PAUSED_RATE_LIMIT = "paused_rate_limit"
    PAUSED_CAPACITY = "paused_capacity"
    UNKNOWN = "unknown"

    @classmethod
    def choices(cls) -> List[str]:
        return [member.value for member in cls]

    @classmethod
    def parse(cls, raw: Any) -> "QueueState":
        """Parse case-insensitively; unrecognized or missing values are UNKNOWN."""
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, str):
            return cls.UNKNOWN
        candidate = raw.strip().lower()
        for member in cls:
            if member.value == candidate:
                return member
        return cls.UNKNOWN

    @property
    def is_paused(self) -> bool:
        return self in (QueueState.PAUSED_RATE_LIMIT, QueueState.PAUSED_CAPACITY)


@dataclass(frozen=True)
class FutureHandle:
    """Server-assigned id of a submitted operation."""

    request_id: str

    @classmethod
    def from_payload(cls, payload: Union["FutureHandle", str, Mapping[str, Any]]) -> "FutureHandle":
        """Accept a handle, a bare id, or a submission response with ``request_id``."""
        if isinstance(payload, cls):
            return payload
        if isinstance(payload, str) and payload:
            return cls(payload)
        if isinstance(payload, Mapping):
            request_id = payload.get("request_id")
            if isinstance(request_id, str) and request_id:
                return cls(request_id)
        raise ValueError(f"Cannot build a future handle from {payload!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {"request_id": self.request_id}


@dataclass(frozen=True)
class Pending:
    pass


@dataclass(frozen=True)
class Completed:
    result: Any


@dataclass(frozen=True)
class Failed:
    error: OperationFailed


@dataclass(frozen=True)
class Backpressure:
    """The request is queued behind rate limits or capacity."""

    queue_state: QueueState = QueueState.UNKNOWN
    retry_after_ms: Optional[int] = None
    queue_state_reason: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


PollOutcome = Union[Pending, Completed, Failed, Backpressure]


def _failed_error(payload: Mapping[str, Any]) -> OperationFailed:
    error = payload.get("error")
    if isinstance(error, Mapping):
        message = error.get("message") or error.get("error") or "Operation failed"
        category = ErrorCategory.parse(error.get("category"))
        raw = dict(error)
    else:
        message = str(error) if error else "Operation failed"
        category = ErrorCategory.UNKNOWN
        raw = {"error": error}
    return OperationFailed(str(message), category=category, raw_data=raw)


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_poll_outcome(payload: Any) -> PollOutcome:
    """Interpret a retrieve response body.

    Raises:
        ResponseValidationError: If the body matches none of the known shapes
    """
    if not isinstance(payload, Mapping):
        raise ResponseValidationError(
            f"Unexpected retrieve response: {type(payload).__name__}", raw_data=payload
        )

    if payload.get("type") == "try_again":
        reason = payload.get("queue_state_reason")
        return Backpressure(
            queue_state=QueueState.parse(payload.get("queue_state")),
            retry_after_ms=_optional_int(payload.get("retry_after_ms")),
            queue_state_reason=reason if isinstance(reason, str) else None,
            raw=dict(payload),
        )

    status = payload.get("status")
    if status == "pending":
        return Pending()
    if status == "completed":
        return Completed(payload.get("result"))
    if status == "failed":
        return Failed(_failed_error(payload))

    # Some operations answer with the result object itself.
    if "loss_fn_output_type" in payload or "type" in payload:
        return Completed(dict(payload))

    raise ResponseValidationError("Unrecognized retrieve response", raw_data=dict(payload))
