"""Resilience-related constants used across the runtime.

Defaults for the request executor, future polling, rate-limited dispatch,
circuit breakers and batch chunking live here so they can be tuned in one
place.
"""

# =============================================================================
# Request Executor Defaults
# =============================================================================

# Additional attempts after the first one
DEFAULT_MAX_RETRIES: int = 2

# Initial backoff delay (in seconds); doubled per attempt before jitter
DEFAULT_BASE_DELAY: float = 0.5

# Maximum backoff delay (in seconds), regardless of attempt number
DEFAULT_MAX_DELAY: float = 8.0

# Wall-clock budget for all retries of one logical call (in seconds)
DEFAULT_RETRY_BUDGET: float = 30.0

# Delay used for 429 responses that carry no retry-after header (in ms)
DEFAULT_RATE_LIMIT_RETRY_MS: int = 1000

# Per-request HTTP timeout (in seconds)
DEFAULT_REQUEST_TIMEOUT: float = 120.0


# =============================================================================
# Future Polling Defaults
# =============================================================================

# First poll backoff (in seconds); doubled per iteration
DEFAULT_POLL_BASE_DELAY: float = 1.0

# Upper bound on the poll backoff (in seconds)
DEFAULT_POLL_MAX_DELAY: float = 30.0

# Sleep after a backpressure answer without retry_after_ms (in ms)
DEFAULT_BACKPRESSURE_RETRY_MS: int = 1000

# Retrieval endpoint for submitted operations
FUTURE_RETRIEVE_PATH: str = "/api/v1/future/retrieve"


# =============================================================================
# Circuit Breaker Defaults
# =============================================================================

# Number of failures before the circuit opens
DEFAULT_FAILURE_THRESHOLD: int = 5

# Time to wait before attempting recovery (in seconds)
DEFAULT_COOLDOWN_SECONDS: float = 30.0

# Number of calls allowed during half-open state
DEFAULT_HALF_OPEN_MAX_CALLS: int = 1


# =============================================================================
# Rate-Limited Dispatch Defaults
# =============================================================================

# Concurrent in-flight calls per dispatcher
DEFAULT_DISPATCH_CONCURRENCY: int = 400

# Concurrent in-flight calls while recently throttled
DEFAULT_THROTTLED_CONCURRENCY: int = 10

# In-flight request payload budget (in bytes)
DEFAULT_BYTE_BUDGET: int = 5 * 1024 * 1024

# Byte cost multiplier applied while recently throttled
DEFAULT_BACKOFF_BYTE_PENALTY: int = 20

# How long a recorded backoff keeps the dispatcher throttled (in seconds)
DEFAULT_THROTTLE_WINDOW_SECONDS: float = 10.0


# =============================================================================
# Chunking Defaults
# =============================================================================

# Maximum items per chunk
DEFAULT_MAX_CHUNK_ITEMS: int = 128

# Maximum estimated number count per chunk
DEFAULT_MAX_CHUNK_SIZE: int = 500_000


__all__ = [
    # Request Executor
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_BASE_DELAY",
    "DEFAULT_MAX_DELAY",
    "DEFAULT_RETRY_BUDGET",
    "DEFAULT_RATE_LIMIT_RETRY_MS",
    "DEFAULT_REQUEST_TIMEOUT",
    # Future Polling
    "DEFAULT_POLL_BASE_DELAY",
    "DEFAULT_POLL_MAX_DELAY",
    "DEFAULT_BACKPRESSURE_RETRY_MS",
    "FUTURE_RETRIEVE_PATH",
    # Circuit Breaker
    "DEFAULT_FAILURE_THRESHOLD",
    "DEFAULT_COOLDOWN_SECONDS",
    "DEFAULT_HALF_OPEN_MAX_CALLS",
    # Rate-Limited Dispatch
    "DEFAULT_DISPATCH_CONCURRENCY",
    "DEFAULT_THROTTLED_CONCURRENCY",
    "DEFAULT_BYTE_BUDGET",
    "DEFAULT_BACKOFF_BYTE_PENALTY",
    "DEFAULT_THROTTLE_WINDOW_SECONDS",
    # Chunking
    "DEFAULT_MAX_CHUNK_ITEMS",
    "DEFAULT_MAX_CHUNK_SIZE",
]
