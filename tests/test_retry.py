"""Tests for the bounded retry policy."""

import pytest

from snapexport.retry import RetryExhausted, RetryPolicy, poll_until, retry_call


class TestRetryPolicy:
    """Test retry schedules."""

    def test_fixed_delays(self):
        """Test that a fixed policy sleeps attempts-1 times at the interval."""
        assert list(RetryPolicy(attempts=4, interval=5).delays()) == [5, 5, 5]

    def test_backoff_capped(self):
        """Test that backoff grows the delay up to max_interval."""
        policy = RetryPolicy(attempts=5, interval=1, backoff=3, max_interval=10)
        assert list(policy.delays()) == [1, 3, 9, 10]

    def test_rejects_zero_attempts(self):
        """Test that at least one attempt is required."""
        with pytest.raises(ValueError):
            RetryPolicy(attempts=0, interval=1)


class TestRetryCall:
    """Test retry_call."""

    def test_succeeds_after_failures(self):
        """Test that transient failures are retried until success."""
        calls = []
        sleeps = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("not yet")
            return "up"

        result = retry_call(flaky, RetryPolicy(5, 2), retry_on=(ConnectionError,), sleep=sleeps.append)
        assert result == "up"
        assert len(calls) == 3
        assert sleeps == [2, 2]

    def test_exhausted_carries_last_error(self):
        """Test that exhaustion reports the attempt count and last error."""
        def always_down():
            raise ConnectionError("refused")

        with pytest.raises(RetryExhausted) as exc_info:
            retry_call(always_down, RetryPolicy(3, 0), retry_on=(ConnectionError,), sleep=lambda s: None)
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, ConnectionError)

    def test_other_errors_propagate(self):
        """Test that errors outside retry_on are not retried."""
        calls = []

        def broken():
            calls.append(1)
            raise KeyError("boom")

        with pytest.raises(KeyError):
            retry_call(broken, RetryPolicy(5, 0), retry_on=(ConnectionError,), sleep=lambda s: None)
        assert len(calls) == 1


class TestPollUntil:
    """Test poll_until."""

    def test_returns_first_non_none(self):
        """Test that polling stops at the first result."""
        values = iter([None, None, "DONE"])
        assert poll_until(lambda: next(values), RetryPolicy(5, 0), sleep=lambda s: None) == "DONE"

    def test_exhausted(self):
        """Test that polling gives up after the policy's attempts."""
        with pytest.raises(RetryExhausted):
            poll_until(lambda: None, RetryPolicy(2, 0), sleep=lambda s: None)
