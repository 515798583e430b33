"""Tests for tinker_runtime.sampling."""

import asyncio

import pytest

from tinker_runtime.config import Config
from tinker_runtime.exceptions import StatusError
from tinker_runtime.sampling import ByteBudget, SamplingDispatch

from tests.fakes import json_response


@pytest.fixture
def make_dispatch(clock, make_executor):
    def _make(responses=None, handler=None, **kwargs):
        executor, transport = make_executor(responses, handler)
        return SamplingDispatch(executor, clock=clock, **kwargs), transport

    return _make


def _sample(dispatch, config, **kwargs):
    return asyncio.run(
        dispatch.rate_limited_call("POST", "/api/v1/asample", {"prompt": [1, 2, 3]}, config, **kwargs)
    )


class TestRateLimitedCall:
    """Tests for SamplingDispatch.rate_limited_call()."""

    def test_success_uses_sampling_pool(self, config, make_dispatch):
        """Calls go out on the sampling pool and return the decoded body."""
        dispatch, transport = make_dispatch([json_response(200, {"request_id": "s-1"})])

        assert _sample(dispatch, config) == {"request_id": "s-1"}
        assert transport.requests[0].pool_key[2] == "sampling"
        assert not dispatch.recently_throttled

    def test_server_errors_are_not_retried(self, config, make_dispatch):
        """Sampling calls make a single attempt."""
        dispatch, transport = make_dispatch([json_response(503)])

        with pytest.raises(StatusError):
            _sample(dispatch, config)
        assert len(transport.requests) == 1

    def test_rate_limit_records_shared_backoff(self, config, clock, limiter, make_dispatch):
        """A 429 raises, extends the tenant backoff and throttles the dispatcher."""
        dispatch, transport = make_dispatch(
            [json_response(429, {}, {"retry-after-ms": "2000"}), json_response(200, {"ok": True})]
        )

        with pytest.raises(StatusError) as exc_info:
            _sample(dispatch, config)

        assert exc_info.value.http_status == 429
        assert len(transport.requests) == 1
        assert limiter.backoff_remaining(config.tenant_key) == pytest.approx(2.0)
        assert dispatch.recently_throttled

        assert _sample(dispatch, config) == {"ok": True}
        assert clock.sleeps == [2.0]

    def test_rate_limit_default_backoff(self, config, limiter, make_dispatch):
        """A 429 without retry-after backs off for one second."""
        dispatch, _ = make_dispatch([json_response(429)])

        with pytest.raises(StatusError):
            _sample(dispatch, config)
        assert limiter.backoff_remaining(config.tenant_key) == pytest.approx(1.0)

    def test_throttle_window_expires(self, config, clock, make_dispatch):
        """The dispatcher stops throttling once the window has passed."""
        dispatch, _ = make_dispatch([])
        dispatch.record_backoff(config.tenant_key, 1000)

        clock.now += 1.0 + 9.9
        assert dispatch.recently_throttled
        clock.now += 0.2
        assert not dispatch.recently_throttled

    def test_throttled_calls_pay_byte_penalty(self, config, make_dispatch):
        """While throttled a call reserves twenty times its size."""
        in_flight = []

        def handler(request):
            in_flight.append(dispatch.bytes.available)
            return json_response(200, {})

        dispatch, _ = make_dispatch(handler=handler, byte_budget=10_000)

        _sample(dispatch, config, estimated_bytes=100)
        dispatch.record_backoff(config.tenant_key, 0)
        _sample(dispatch, config, estimated_bytes=100)

        assert in_flight == [9_900, 8_000]
        assert dispatch.bytes.available == 10_000

    def test_estimated_bytes_default_to_body_size(self, config, make_dispatch):
        """Without an estimate the JSON body length is reserved."""
        in_flight = []

        def handler(request):
            in_flight.append(dispatch.bytes.available)
            return json_response(200, {})

        dispatch, transport = make_dispatch(handler=handler, byte_budget=1_000)

        _sample(dispatch, config)
        assert in_flight == [1_000 - len(transport.requests[0].body)]

    def test_other_tenants_unaffected(self, config, clock, limiter, make_dispatch):
        """A 429 for one tenant does not delay another."""
        other = Config(base_url="https://api.example.com/services/prod", api_key="tml-other-key")
        dispatch, _ = make_dispatch(
            [json_response(429, {}, {"retry-after-ms": "5000"}), json_response(200, {})]
        )

        with pytest.raises(StatusError):
            _sample(dispatch, config)
        _sample(dispatch, other)

        assert clock.sleeps == []
        assert not limiter.should_backoff(other.tenant_key)


class TestByteBudget:
    """Tests for ByteBudget."""

    def test_oversized_request_runs_alone(self):
        """A request larger than the budget runs, and blocks others until released."""
        order = []

        async def _inner():
            budget = ByteBudget(10)
            await budget.acquire(15)
            assert budget.available == -5

            async def _second():
                async with budget.hold(1):
                    order.append("second")

            task = asyncio.ensure_future(_second())
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            order.append("first-done")
            await budget.release(15)
            await task
            return budget.available

        assert asyncio.run(_inner()) == 10
        assert order == ["first-done", "second"]

    def test_invalid_budget(self):
        with pytest.raises(ValueError):
            ByteBudget(0)
