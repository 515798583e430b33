"""Circuit breaker pattern for endpoints that keep failing.

States:
- CLOSED: calls pass through; failures are counted
- OPEN: calls are refused until the cooldown elapses
- HALF_OPEN: a limited number of trial calls decide whether to close again
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from tinker_runtime.resilience.constants import (
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_HALF_OPEN_MAX_CALLS,
)

logger = logging.getLogger(__name__)

__all__ = ["CircuitState", "CircuitBreaker", "CircuitBreakerRegistry"]


class CircuitState:
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """Circuit breaker with open/half-open/closed states."""

    name: str = "default"
    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD
    cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS
    half_open_max_calls: int = DEFAULT_HALF_OPEN_MAX_CALLS
    on_state_change: Optional[Callable[[str], None]] = None
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    _state: str = field(default=CircuitState.CLOSED, init=False)
    _failures: int = field(default=0, init=False)
    _opened_at: float = field(default=0.0, init=False)
    _half_open_calls: int = field(default=0, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def _transition(self, state: str) -> None:
        if state == self._state:
            return
        logger.info("Circuit '%s' %s -> %s", self.name, self._state, state)
        self._state = state
        if self.on_state_change:
            try:
                self.on_state_change(state)
            except Exception:
                logger.warning("Circuit '%s' state callback failed", self.name, exc_info=True)

    def allow(self) -> bool:
        with self._lock:
            if self._state == CircuitState.OPEN:
                if self.clock() - self._opened_at < self.cooldown_seconds:
                    return False
                self._half_open_calls = 0
                self._transition(CircuitState.HALF_OPEN)
            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.half_open_max_calls:
                    return False
                self._half_open_calls += 1
            return True

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._half_open_calls = 0
            self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._state == CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
                self._opened_at = self.clock()
                self._half_open_calls = 0
                self._transition(CircuitState.OPEN)

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._half_open_calls = 0
            self._transition(CircuitState.CLOSED)

    @property
    def state(self) -> str:
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "failure_threshold": self.failure_threshold,
            "cooldown_seconds": self.cooldown_seconds,
            "half_open_max_calls": self.half_open_max_calls,
            "state": self._state,
            "failures": self._failures,
        }


class CircuitBreakerRegistry:
    """Named breakers, created on first lookup with shared defaults."""

    def __init__(self, **defaults: Any) -> None:
        self._defaults = defaults
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = self._breakers.setdefault(name, CircuitBreaker(name=name, **self._defaults))
        return breaker

    def reset(self, name: Optional[str] = None) -> None:
        if name is None:
            for breaker in self._breakers.values():
                breaker.reset()
        elif name in self._breakers:
            self._breakers[name].reset()

    def states(self) -> Dict[str, str]:
        return {name: breaker.state for name, breaker in self._breakers.items()}
