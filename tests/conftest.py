"""Pytest configuration and fixtures."""

import pytest

from tinker_runtime.config import Config
from tinker_runtime.http.executor import RequestExecutor
from tinker_runtime.resilience.rate_limiter import TenantRateLimiter, reset_rate_limiter
from tinker_runtime.resilience.retry import RetryPolicy

from tests.fakes import FakeClock, FakeTransport


@pytest.fixture(autouse=True)
def _isolated_rate_limiter():
    """Each test starts with a fresh process-wide limiter."""
    reset_rate_limiter()
    yield
    reset_rate_limiter()


@pytest.fixture
def config() -> Config:
    return Config(base_url="https://api.example.com/services/prod", api_key="tml-test-key")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock: FakeClock) -> TenantRateLimiter:
    return TenantRateLimiter(clock=clock, sleep=clock.sleep)


@pytest.fixture
def make_executor(clock: FakeClock, limiter: TenantRateLimiter):
    """Build an executor over a FakeTransport; jitter is pinned to its maximum."""

    def _make(responses=None, handler=None, rng=lambda: 1.0):
        transport = FakeTransport(responses, handler)
        executor = RequestExecutor(
            transport,
            rate_limiter=limiter,
            sleep=clock.sleep,
            policy=RetryPolicy(rng=rng),
        )
        return executor, transport

    return _make
