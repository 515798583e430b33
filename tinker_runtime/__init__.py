"""Client runtime for the Tinker training and sampling service.

Submits long-running operations over HTTP+JSON, retries transient failures,
shares rate-limit backoff per tenant, polls request handles until they
settle, and runs oversized batches as merged chunked requests.
"""

import logging as _stdlib_logging

from tinker_runtime.chunking import ChunkCombiner, Chunker, CombinedOutput, reduce_metrics
from tinker_runtime.config import Config, PoolType, TenantKey, normalize_base_url
from tinker_runtime.exceptions import (
    ClassifiedError,
    ConfigurationError,
    ConnectionFailure,
    ErrorCategory,
    ErrorKind,
    OperationFailed,
    RequestTimeout,
    ResponseValidationError,
    StatusError,
    TinkerError,
)
from tinker_runtime.futures import (
    FutureHandle,
    FuturePoller,
    QueueState,
    await_many,
    await_result,
)
from tinker_runtime.http import HttpxTransport, RequestExecutor, execute_with_retry
from tinker_runtime.resilience import RetryPolicy, TenantRateLimiter, get_rate_limiter
from tinker_runtime.sampling import SamplingDispatch

_stdlib_logging.getLogger(__name__).addHandler(_stdlib_logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "ChunkCombiner",
    "Chunker",
    "CombinedOutput",
    "reduce_metrics",
    "Config",
    "PoolType",
    "TenantKey",
    "normalize_base_url",
    "ClassifiedError",
    "ConfigurationError",
    "ConnectionFailure",
    "ErrorCategory",
    "ErrorKind",
    "OperationFailed",
    "RequestTimeout",
    "ResponseValidationError",
    "StatusError",
    "TinkerError",
    "FutureHandle",
    "FuturePoller",
    "QueueState",
    "await_many",
    "await_result",
    "HttpxTransport",
    "RequestExecutor",
    "execute_with_retry",
    "RetryPolicy",
    "TenantRateLimiter",
    "get_rate_limiter",
    "SamplingDispatch",
]
