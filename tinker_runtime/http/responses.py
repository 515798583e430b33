"""Turn raw HTTP responses into decoded bodies or classified errors."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional, Union

from tinker_runtime.exceptions import (
    ClassifiedError,
    ConnectionFailure,
    ErrorCategory,
    ResponseValidationError,
    StatusError,
    TransportError,
)
from tinker_runtime.http.transport import RawResponse
from tinker_runtime.resilience.constants import DEFAULT_RATE_LIMIT_RETRY_MS
from tinker_runtime.resilience.retry import parse_retry_after_ms

logger = logging.getLogger(__name__)

__all__ = ["category_for_status", "classify_response", "connection_failure", "decode_body"]


def decode_body(body: bytes) -> Any:
    """Decode a JSON body; raises ``ValueError`` when it is not JSON."""
    if not body:
        return None
    return json.loads(body.decode("utf-8"))


def category_for_status(status: int) -> ErrorCategory:
    """Infer a category from the status code alone."""
    if status in (408, 429) or status >= 500:
        return ErrorCategory.SERVER
    if 400 <= status < 500:
        return ErrorCategory.USER
    return ErrorCategory.UNKNOWN


def _error_body(body: bytes) -> Dict[str, Any]:
    try:
        decoded = decode_body(body)
    except ValueError:
        return {"message": body.decode("utf-8", errors="replace")}
    if isinstance(decoded, dict):
        return decoded
    if decoded is None:
        return {}
    return {"message": str(decoded)}


def _error_message(data: Mapping[str, Any], status: int) -> str:
    for key in ("message", "error"):
        value = data.get(key)
        if isinstance(value, dict) and value.get("message"):
            return str(value["message"])
        if value:
            return str(value)
    return f"HTTP {status}"


def classify_response(response: RawResponse) -> Union[Dict[str, Any], ClassifiedError]:
    """Return the decoded object for a 2xx response, otherwise a ``ClassifiedError``.

    An empty 2xx body decodes to ``{}``. A 2xx body that is not a JSON object
    is a user-category ``ResponseValidationError``.
    """
    status = response.status
    if 200 <= status < 300:
        try:
            decoded = decode_body(response.body)
        except ValueError as exc:
            return ResponseValidationError(
                f"Malformed JSON response: {exc}",
                http_status=status,
                raw_data=response.body.decode("utf-8", errors="replace"),
            )
        if decoded is None:
            return {}
        if not isinstance(decoded, dict):
            return ResponseValidationError(
                f"Expected a JSON object, got {type(decoded).__name__}",
                http_status=status,
                raw_data=decoded,
            )
        return decoded

    data = _error_body(response.body)
    if status == 429:
        category = ErrorCategory.SERVER
    elif "category" in data:
        category = ErrorCategory.parse(data.get("category"))
    else:
        category = category_for_status(status)

    retry_after_ms: Optional[int] = parse_retry_after_ms(response.headers)
    if status == 429 and retry_after_ms is None:
        retry_after_ms = DEFAULT_RATE_LIMIT_RETRY_MS

    return StatusError(
        _error_message(data, status),
        http_status=status,
        category=category,
        retry_after_ms=retry_after_ms,
        raw_data=data,
    )


def connection_failure(exc: TransportError) -> ConnectionFailure:
    return ConnectionFailure(
        exc.message,
        category=ErrorCategory.UNKNOWN,
        raw_data={"error_type": exc.details.get("error_type")},
    )
