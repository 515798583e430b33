"""Tests for tinker_runtime.resilience.retry."""

from tinker_runtime.exceptions import ConnectionFailure, ErrorCategory, StatusError
from tinker_runtime.resilience.retry import (
    RetryPolicy,
    parse_retry_after_ms,
    should_retry_header,
)


def _policy(rng_value=1.0, **kwargs):
    return RetryPolicy(rng=lambda: rng_value, **kwargs)


class TestRetryHeaders:
    """Tests for header parsing helpers."""

    def test_should_retry_header_case_insensitive(self):
        """Header name and value are matched case-insensitively."""
        assert should_retry_header({"X-Should-Retry": "FALSE"}) is False
        assert should_retry_header({"x-should-retry": "true"}) is True
        assert should_retry_header({"x-should-retry": "maybe"}) is None
        assert should_retry_header({}) is None

    def test_retry_after_ms(self):
        """retry-after-ms is read as milliseconds."""
        assert parse_retry_after_ms({"Retry-After-Ms": "250"}) == 250

    def test_retry_after_seconds(self):
        """retry-after is converted from seconds."""
        assert parse_retry_after_ms({"retry-after": "2"}) == 2000
        assert parse_retry_after_ms({"retry-after": "1.5"}) == 1500

    def test_retry_after_ms_wins(self):
        """The millisecond header takes precedence."""
        assert parse_retry_after_ms({"retry-after": "9", "retry-after-ms": "100"}) == 100

    def test_unparseable_retry_after(self):
        """HTTP dates and garbage are ignored."""
        assert parse_retry_after_ms({"retry-after": "Wed, 21 Oct 2015 07:28:00 GMT"}) is None
        assert parse_retry_after_ms({}) is None


class TestRetryDecisions:
    """Tests for RetryPolicy.decide() rule precedence."""

    def test_should_retry_false_overrides_status(self):
        """An explicit 'false' wins over a retryable status."""
        directive = _policy().decide(0, status=503, headers={"x-should-retry": "false"})
        assert directive.should_retry is False

    def test_should_retry_true_overrides_user_error(self):
        """An explicit 'true' wins even for a user-category error."""
        error = StatusError("bad", http_status=400, category=ErrorCategory.USER)
        directive = _policy().decide(0, status=400, headers={"x-should-retry": "true"}, error=error)
        assert directive.should_retry is True
        assert directive.delay == 0.5

    def test_rate_limited_uses_retry_after(self):
        """429 waits exactly the server's retry-after, not the backoff schedule."""
        directive = _policy().decide(4, status=429, headers={"retry-after-ms": "250"})
        assert directive.should_retry is True
        assert directive.delay == 0.25

    def test_rate_limited_default_delay(self):
        """429 without a hint waits one second."""
        directive = _policy().decide(0, status=429)
        assert directive.delay == 1.0

    def test_server_errors_back_off_exponentially(self):
        """408 and 5xx use full-jitter exponential backoff capped at 8s."""
        policy = _policy()
        assert policy.decide(0, status=503).delay == 0.5
        assert policy.decide(3, status=500).delay == 4.0
        assert policy.decide(6, status=408).delay == 8.0

    def test_jitter_spans_zero_to_max(self):
        """Delay is the computed maximum scaled by a uniform draw."""
        assert _policy(rng_value=0.0).compute_delay(3) == 0.0
        assert _policy(rng_value=0.5).compute_delay(2) == 1.0

    def test_user_category_never_retries(self):
        """A user-category error is final even on a 5xx status."""
        error = StatusError("bad input", http_status=500, category=ErrorCategory.USER)
        directive = _policy().decide(0, status=500, error=error)
        assert directive.should_retry is False
        assert directive.reason == "user error"

    def test_connection_failures_retry(self):
        """Transport failures back off like server errors."""
        directive = _policy().decide(1, error=ConnectionFailure("reset"))
        assert directive.should_retry is True
        assert directive.delay == 1.0

    def test_client_errors_do_not_retry(self):
        """Plain 4xx responses are not retried."""
        assert _policy().decide(0, status=404).should_retry is False
        assert _policy().decide(0, status=409).should_retry is False

    def test_round_trip_dict(self):
        """to_dict/from_dict preserve the numeric settings."""
        policy = RetryPolicy(max_retries=4, budget=10.0)
        restored = RetryPolicy.from_dict(policy.to_dict())
        assert restored.max_retries == 4
        assert restored.budget == 10.0
        assert restored.max_delay == 8.0
