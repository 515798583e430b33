"""Exception classes for tinker-runtime.

Every failure that crosses the public API is a ``ClassifiedError``: it carries
a kind (what went wrong), an optional HTTP status, a category (whose fault it
is) and optionally a server-issued retry-after hint.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

__all__ = [
    "ErrorCategory",
    "ErrorKind",
    "TinkerError",
    "ConfigurationError",
    "TransportError",
    "ClassifiedError",
    "ConnectionFailure",
    "RequestTimeout",
    "StatusError",
    "OperationFailed",
    "ResponseValidationError",
]


class ErrorCategory(str, Enum):
    """Whose fault a failure is; decides whether retrying can help."""

    USER = "user"
    SERVER = "server"
    UNKNOWN = "unknown"

    @classmethod
    def choices(cls) -> List[str]:
        return [member.value for member in cls]

    @classmethod
    def parse(cls, raw: Any) -> "ErrorCategory":
        """Parse a category string case-insensitively; anything else is UNKNOWN."""
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
    def retryable(self) -> bool:
        return self is not ErrorCategory.USER


class ErrorKind(str, Enum):
    CONNECTION_FAILURE = "connection_failure"
    TIMEOUT = "timeout"
    STATUS_ERROR = "status_error"
    OPERATION_FAILED = "operation_failed"
    VALIDATION_ERROR = "validation_error"


class TinkerError(Exception):
    """Base exception for all tinker-runtime errors."""

    error_code: str = "TNK000"  # Override in subclasses

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def __str__(self) -> str:
        parts = [f"[{self.error_code}] {self.message}"]
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)


class ConfigurationError(TinkerError):
    """Raised when client configuration is missing or invalid.

    Examples:
        - Base URL without a scheme or host
        - Missing API key
        - Negative retry counts or timeouts
    """

    error_code = "CFG001"

    def __init__(self, message: str, key: Optional[str] = None):
        details = {}
        if key:
            details["config_key"] = key
        super().__init__(message, details)


class TransportError(TinkerError):
    """Raised by a transport when no HTTP response could be obtained.

    The executor converts it into a ``ConnectionFailure``; it never escapes
    the public API on its own.
    """

    error_code = "NET001"

    def __init__(self, message: str, original_error: Optional[BaseException] = None):
        details = {}
        if original_error is not None:
            details["error_type"] = type(original_error).__name__
        super().__init__(message, details)
        self.original_error = original_error


class ClassifiedError(TinkerError):
    """A failure with kind, HTTP status, category and retry-after hint.

    Args:
        message: Human-readable description
        http_status: Response status code, when the failure came from a response
        category: ``ErrorCategory`` (or its string value)
        retry_after_ms: Server-issued retry hint in milliseconds
        raw_data: Decoded response body or other diagnostic payload
    """

    kind: ErrorKind = ErrorKind.STATUS_ERROR
    error_code = "TNK100"

    def __init__(
        self,
        message: str,
        *,
        http_status: Optional[int] = None,
        category: Any = ErrorCategory.UNKNOWN,
        retry_after_ms: Optional[int] = None,
        raw_data: Any = None,
    ):
        details: Dict[str, Any] = {}
        if http_status is not None:
            details["http_status"] = http_status
        super().__init__(message, details)
        self.http_status = http_status
        self.category = ErrorCategory.parse(category)
        self.retry_after_ms = retry_after_ms
        self.raw_data = raw_data

    @property
    def is_user_error(self) -> bool:
        return self.category is ErrorCategory.USER

    @property
    def is_retryable(self) -> bool:
        return self.category.retryable

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation; unset optional fields are explicit ``None``."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "http_status": self.http_status,
            "category": self.category.value,
            "retry_after_ms": self.retry_after_ms,
            "raw_data": self.raw_data,
        }

    def __str__(self) -> str:
        if self.http_status is not None:
            return f"[{self.kind.value} ({self.http_status})] {self.message}"
        return f"[{self.kind.value}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(message={self.message!r}, "
            f"http_status={self.http_status!r}, category={self.category.value!r})"
        )


class ConnectionFailure(ClassifiedError):
    """No usable response: connect/read failures, transport timeouts, open circuits."""

    kind = ErrorKind.CONNECTION_FAILURE
    error_code = "TNK101"


class RequestTimeout(ClassifiedError):
    """A poll deadline or caller-side await timeout elapsed."""

    kind = ErrorKind.TIMEOUT
    error_code = "TNK102"


class StatusError(ClassifiedError):
    """The server answered with a non-2xx status."""

    kind = ErrorKind.STATUS_ERROR
    error_code = "TNK103"


class OperationFailed(ClassifiedError):
    """A submitted operation reported ``failed`` when polled."""

    kind = ErrorKind.OPERATION_FAILED
    error_code = "TNK104"


class ResponseValidationError(ClassifiedError):
    """A successful response whose body could not be understood."""

    kind = ErrorKind.VALIDATION_ERROR
    error_code = "TNK105"

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("category", ErrorCategory.USER)
        super().__init__(message, **kwargs)
