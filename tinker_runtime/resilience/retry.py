"""Retry decisions for the request executor.

A ``RetryPolicy`` turns the outcome of one HTTP attempt into a
``RetryDirective``. Rules are evaluated in order and the first one that
has an opinion wins:

1. ``x-should-retry`` response header (``true``/``false``)
2. user-category errors never retry
3. 429: wait the server's retry-after (no exponential backoff)
4. 408 and 5xx: full-jitter exponential backoff
5. connection failures: full-jitter exponential backoff

Anything else is not retried.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from tinker_runtime.exceptions import ClassifiedError, ErrorCategory, ErrorKind
from tinker_runtime.resilience.constants import (
    DEFAULT_BASE_DELAY,
    DEFAULT_MAX_DELAY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RATE_LIMIT_RETRY_MS,
    DEFAULT_RETRY_BUDGET,
)

logger = logging.getLogger(__name__)

__all__ = [
    "RetryDirective",
    "RetryPolicy",
    "NO_RETRY",
    "get_header",
    "parse_retry_after_ms",
    "should_retry_header",
]

SHOULD_RETRY_HEADER = "x-should-retry"
RETRY_AFTER_MS_HEADER = "retry-after-ms"
RETRY_AFTER_HEADER = "retry-after"


@dataclass(frozen=True)
class RetryDirective:
    """Whether to retry and how long to wait first (seconds)."""

    should_retry: bool
    delay: float = 0.0
    reason: str = ""


NO_RETRY = RetryDirective(False, 0.0, "not retryable")


def get_header(headers: Optional[Mapping[str, str]], name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    if not headers:
        return None
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def should_retry_header(headers: Optional[Mapping[str, str]]) -> Optional[bool]:
    """Return the server's explicit retry instruction, if any."""
    value = get_header(headers, SHOULD_RETRY_HEADER)
    if value is None:
        return None
    value = value.strip().lower()
    if value == "true":
        return True
    if value == "false":
        return False
    return None


def parse_retry_after_ms(headers: Optional[Mapping[str, str]]) -> Optional[int]:
    """Read ``retry-after-ms`` (ms) or ``retry-after`` (seconds) as milliseconds.

    HTTP-date values for ``retry-after`` are not supported and yield None.
    """
    raw_ms = get_header(headers, RETRY_AFTER_MS_HEADER)
    if raw_ms is not None:
        try:
            return max(0, int(float(raw_ms.strip())))
        except ValueError:
            logger.debug("Ignoring unparseable %s header: %r", RETRY_AFTER_MS_HEADER, raw_ms)

    raw_seconds = get_header(headers, RETRY_AFTER_HEADER)
    if raw_seconds is not None:
        try:
            return max(0, int(float(raw_seconds.strip()) * 1000))
        except ValueError:
            logger.debug("Ignoring unparseable %s header: %r", RETRY_AFTER_HEADER, raw_seconds)
    return None


Rule = Callable[
    ["RetryPolicy", int, Optional[int], Mapping[str, str], Optional[ClassifiedError]],
    Optional[RetryDirective],
]


def _header_rule(policy, attempt, status, headers, error):
    override = should_retry_header(headers)
    if override is None:
        return None
    if not override:
        return RetryDirective(False, 0.0, "server said x-should-retry: false")
    retry_after = parse_retry_after_ms(headers)
    if retry_after is not None:
        return RetryDirective(True, retry_after / 1000.0, "server said x-should-retry: true")
    return RetryDirective(True, policy.compute_delay(attempt), "server said x-should-retry: true")


def _user_category_rule(policy, attempt, status, headers, error):
    if error is not None and error.category is ErrorCategory.USER:
        return RetryDirective(False, 0.0, "user error")
    return None


def _rate_limit_rule(policy, attempt, status, headers, error):
    if status != 429:
        return None
    retry_after = parse_retry_after_ms(headers)
    if retry_after is None:
        retry_after = policy.rate_limit_delay_ms
    return RetryDirective(True, retry_after / 1000.0, "rate limited")


def _server_status_rule(policy, attempt, status, headers, error):
    if status is not None and (status == 408 or status >= 500):
        return RetryDirective(True, policy.compute_delay(attempt), f"status {status}")
    return None


def _connection_rule(policy, attempt, status, headers, error):
    if error is not None and error.kind is ErrorKind.CONNECTION_FAILURE:
        return RetryDirective(True, policy.compute_delay(attempt), "connection failure")
    return None


DEFAULT_RULES: List[Rule] = [
    _header_rule,
    _user_category_rule,
    _rate_limit_rule,
    _server_status_rule,
    _connection_rule,
]


@dataclass
class RetryPolicy:
    """Retry configuration for one logical request.

    ``max_retries`` counts additional attempts; ``budget`` bounds the wall
    clock spent across all attempts and sleeps.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    budget: float = DEFAULT_RETRY_BUDGET
    rate_limit_delay_ms: int = DEFAULT_RATE_LIMIT_RETRY_MS
    rng: Callable[[], float] = field(default=random.random, repr=False)
    rules: List[Rule] = field(default_factory=lambda: list(DEFAULT_RULES), repr=False)

    def compute_delay(self, attempt: int) -> float:
        """Full-jitter backoff for the ``attempt``-th retry (0-based)."""
        return min(self.base_delay * (2 ** attempt) * self.rng(), self.max_delay)

    def decide(
        self,
        attempt: int,
        *,
        status: Optional[int] = None,
        headers: Optional[Mapping[str, str]] = None,
        error: Optional[ClassifiedError] = None,
    ) -> RetryDirective:
        headers = headers or {}
        for rule in self.rules:
            directive = rule(self, attempt, status, headers, error)
            if directive is not None:
                return directive
        return NO_RETRY

    def to_dict(self) -> Dict[str, Any]:
        """Note: rng and rules are not serialized."""
        return {
            "max_retries": self.max_retries,
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
            "budget": self.budget,
            "rate_limit_delay_ms": self.rate_limit_delay_ms,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RetryPolicy":
        return cls(
            max_retries=int(data.get("max_retries", DEFAULT_MAX_RETRIES)),
            base_delay=float(data.get("base_delay", DEFAULT_BASE_DELAY)),
            max_delay=float(data.get("max_delay", DEFAULT_MAX_DELAY)),
            budget=float(data.get("budget", DEFAULT_RETRY_BUDGET)),
            rate_limit_delay_ms=int(
                data.get("rate_limit_delay_ms", DEFAULT_RATE_LIMIT_RETRY_MS)
            ),
        )
