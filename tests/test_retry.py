"""
Unit tests for retry/backoff and credential redaction.
"""

import logging

import pytest

from eds_task_sync.models import NetworkError
from eds_task_sync.models import NotFoundError
from eds_task_sync.models import RateLimitedError
from eds_task_sync.models import ServerError
from eds_task_sync.retry import RedactingFilter
from eds_task_sync.retry import RetryPolicy
from eds_task_sync.retry import call_with_retry
from eds_task_sync.retry import is_transient
from eds_task_sync.retry import redact


class _Flaky:
    """Callable that raises the queued errors before succeeding."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


class TestPolicy:
    def test_delay_grows_and_is_capped(self):
        policy = RetryPolicy()
        no_jitter = lambda low, high: 1.0  # noqa: E731
        assert policy.delay_for(1, no_jitter) == pytest.approx(0.8)
        assert policy.delay_for(2, no_jitter) == pytest.approx(1.6)
        assert policy.delay_for(10, no_jitter) == pytest.approx(6.0)

    def test_jitter_bounds(self):
        policy = RetryPolicy()
        assert policy.delay_for(1, lambda low, high: low) == pytest.approx(0.8 * 0.85)
        assert policy.delay_for(1, lambda low, high: high) == pytest.approx(0.8 * 1.15)


class TestIsTransient:
    def test_rate_limit_always_retried(self):
        assert is_transient(RateLimitedError("429"), idempotent=False)

    def test_network_and_server_only_when_idempotent(self):
        assert is_transient(NetworkError("timeout"))
        assert is_transient(ServerError("502", status=502))
        assert not is_transient(NetworkError("timeout"), idempotent=False)
        assert not is_transient(ServerError("502", status=502), idempotent=False)

    def test_other_errors_are_permanent(self):
        assert not is_transient(NotFoundError("404"))


class TestCallWithRetry:
    def test_recovers_from_transient_failure(self):
        sleeps = []
        fn = _Flaky(ServerError("503", status=503))
        assert call_with_retry(fn, sleep=sleeps.append) == "ok"
        assert fn.calls == 2
        assert len(sleeps) == 1

    def test_gives_up_after_max_attempts(self):
        sleeps = []
        fn = _Flaky(*[NetworkError("down")] * 5)
        with pytest.raises(NetworkError):
            call_with_retry(fn, RetryPolicy(max_attempts=3), sleep=sleeps.append)
        assert fn.calls == 3
        assert len(sleeps) == 2

    def test_create_is_not_retried_on_server_error(self):
        fn = _Flaky(ServerError("500"))
        with pytest.raises(ServerError):
            call_with_retry(fn, idempotent=False, sleep=lambda _: None)
        assert fn.calls == 1

    def test_create_is_retried_on_rate_limit(self):
        fn = _Flaky(RateLimitedError("429"))
        assert call_with_retry(fn, idempotent=False, sleep=lambda _: None) == "ok"

    def test_permanent_error_is_raised_immediately(self):
        fn = _Flaky(NotFoundError("404"))
        with pytest.raises(NotFoundError):
            call_with_retry(fn, sleep=lambda _: None)
        assert fn.calls == 1


class TestRedaction:
    def test_literal_secret(self):
        assert redact("token is tk_abc123", ["tk_abc123"]) == "token is [redacted]"

    def test_bearer_header(self):
        assert redact("Authorization: Bearer eyJhbGciOi.x.y") == "Authorization: Bearer [redacted]"

    def test_json_token_fields(self):
        text = '{"token": "abc", "jwt":"def", "title": "Milk"}'
        assert redact(text) == '{"token":"[redacted]", "jwt":"[redacted]", "title": "Milk"}'

    def test_filter_scrubs_log_records(self):
        record = logging.LogRecord(
            "test", logging.INFO, __file__, 1, "sent %s", ("tk_abc123",), None
        )
        assert RedactingFilter(["tk_abc123"]).filter(record)
        assert record.getMessage() == "sent [redacted]"
