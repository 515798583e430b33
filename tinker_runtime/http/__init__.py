"""HTTP transport, response classification and the retrying request executor."""

from tinker_runtime.http.executor import (
    RequestExecutor,
    close_default_executor,
    execute_with_retry,
    get_default_executor,
)
from tinker_runtime.http.responses import category_for_status, classify_response
from tinker_runtime.http.transport import (
    HttpPoolConfig,
    HttpRequest,
    HttpxTransport,
    RawResponse,
    Transport,
)

__all__ = [
    "RequestExecutor",
    "close_default_executor",
    "execute_with_retry",
    "get_default_executor",
    "category_for_status",
    "classify_response",
    "HttpPoolConfig",
    "HttpRequest",
    "HttpxTransport",
    "RawResponse",
    "Transport",
]
