"""Tests for tinker_runtime.resilience.rate_limiter."""

import asyncio
import threading

from tinker_runtime import telemetry
from tinker_runtime.config import TenantKey
from tinker_runtime.resilience.rate_limiter import TenantRateLimiter, get_rate_limiter

TENANT_A = TenantKey.of("https://api.example.com", "key-a")
TENANT_B = TenantKey.of("https://api.example.com", "key-b")


class TestBackoffRecording:
    """Tests for record_backoff()."""

    def test_sets_backoff_from_now(self, clock, limiter):
        """Backoff ends retry_after_ms after the current time."""
        limiter.record_backoff(TENANT_A, 500)
        assert limiter.backoff_until(TENANT_A) == clock.now + 0.5
        assert limiter.should_backoff(TENANT_A)
        assert limiter.backoff_remaining(TENANT_A) == 0.5

    def test_only_moves_forward(self, clock, limiter):
        """A shorter backoff never shortens an existing one."""
        limiter.record_backoff(TENANT_A, 1000)
        limiter.record_backoff(TENANT_A, 200)
        assert limiter.backoff_until(TENANT_A) == clock.now + 1.0

    def test_tenants_are_isolated(self, limiter):
        """One tenant's backoff is invisible to another."""
        limiter.record_backoff(TENANT_A, 5000)
        assert limiter.should_backoff(TENANT_A)
        assert not limiter.should_backoff(TENANT_B)
        assert limiter.backoff_remaining(TENANT_B) == 0.0

    def test_ignores_missing_hint(self, limiter):
        """None or non-positive hints leave the state alone."""
        limiter.record_backoff(TENANT_A, None)
        limiter.record_backoff(TENANT_A, 0)
        assert not limiter.should_backoff(TENANT_A)

    def test_concurrent_writers_keep_latest_deadline(self, clock, limiter):
        """Racing writers converge on the furthest deadline."""
        delays = list(range(100, 3100, 100))
        threads = [
            threading.Thread(target=limiter.record_backoff, args=(TENANT_A, ms)) for ms in delays
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert limiter.backoff_until(TENANT_A) == clock.now + max(delays) / 1000.0
        assert len(limiter) == 1

    def test_emits_backoff_event(self, limiter):
        """Recording a backoff emits a telemetry event."""
        with telemetry.EventRecorder([telemetry.RATE_LIMIT_BACKOFF]) as recorder:
            limiter.record_backoff(TENANT_A, 750)
        assert len(recorder.events) == 1
        assert recorder.events[0].measurements["retry_after_ms"] == 750.0


class TestAwaitReady:
    """Tests for await_ready()."""

    def test_returns_immediately_without_backoff(self, clock, limiter):
        """No backoff means no sleep."""
        asyncio.run(limiter.await_ready(TENANT_A))
        assert clock.sleeps == []

    def test_sleeps_remaining_backoff(self, clock, limiter):
        """The waiter sleeps exactly the remaining window."""
        limiter.record_backoff(TENANT_A, 1500)
        asyncio.run(limiter.await_ready(TENANT_A))
        assert clock.sleeps == [1.5]
        assert not limiter.should_backoff(TENANT_A)

    def test_rechecks_after_extension(self, clock):
        """A backoff extended during the sleep is waited out too."""
        limiter = None

        async def sleep(seconds):
            clock.sleeps.append(seconds)
            if len(clock.sleeps) == 1:
                limiter.record_backoff(TENANT_A, 5000)
            clock.now += seconds

        limiter = TenantRateLimiter(clock=clock, sleep=sleep)
        limiter.record_backoff(TENANT_A, 1000)
        asyncio.run(limiter.await_ready(TENANT_A))
        assert clock.sleeps == [1.0, 4.0]

    def test_other_tenant_not_blocked(self, clock, limiter):
        """Waiting on one tenant does not delay another."""
        limiter.record_backoff(TENANT_A, 10_000)
        asyncio.run(limiter.await_ready(TENANT_B))
        assert clock.sleeps == []


class TestDefaultLimiter:
    """Tests for the process-wide limiter."""

    def test_singleton(self):
        """get_rate_limiter always returns the same registry."""
        assert get_rate_limiter() is get_rate_limiter()
