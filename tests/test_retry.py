"""Tests for the bounded retry policy."""

import pytest

from flourish.core.retry import (
    RetryExhausted,
    RetryPolicy,
    exponential_backoff,
    fixed_backoff,
    no_backoff,
)


class Flaky:
    """Callable that fails a set number of times before succeeding."""

    def __init__(self, failures: int, error: type[Exception] = ConnectionError) -> None:
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"failure {self.calls}")
        return "ok"


class TestRetryPolicy:
    """Tests for RetryPolicy.call."""

    def test_success_first_try(self) -> None:
        """Test no retry happens when the operation succeeds."""
        op = Flaky(0)
        assert RetryPolicy(sleep=lambda s: None).call(op) == "ok"
        assert op.calls == 1

    def test_success_after_retries(self) -> None:
        """Test the operation is retried until it succeeds."""
        op = Flaky(2)
        assert RetryPolicy(max_attempts=3, sleep=lambda s: None).call(op) == "ok"
        assert op.calls == 3

    def test_exhausted(self) -> None:
        """Test RetryExhausted carries the attempt count and last error."""
        op = Flaky(5)
        with pytest.raises(RetryExhausted) as exc_info:
            RetryPolicy(max_attempts=3, sleep=lambda s: None).call(op)

        assert op.calls == 3
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, ConnectionError)
        assert str(exc_info.value.last_error) == "failure 3"

    def test_single_attempt_exhausted(self) -> None:
        """Test one failed attempt raises RetryExhausted chained to the error, without sleeping."""
        sleeps: list[float] = []
        op = Flaky(1)
        with pytest.raises(RetryExhausted) as exc_info:
            RetryPolicy(max_attempts=1, backoff=fixed_backoff(5.0), sleep=sleeps.append).call(op)

        assert op.calls == 1
        assert exc_info.value.attempts == 1
        assert exc_info.value.__cause__ is exc_info.value.last_error
        assert sleeps == []

    def test_non_retryable_propagates(self) -> None:
        """Test errors outside retry_on are raised immediately."""
        op = Flaky(1, error=KeyError)
        policy = RetryPolicy(retry_on=(ConnectionError,), sleep=lambda s: None)
        with pytest.raises(KeyError):
            policy.call(op)
        assert op.calls == 1

    def test_on_retry_called_for_each_failure(self) -> None:
        """Test the on_retry hook sees every failed attempt."""
        seen: list[int] = []
        op = Flaky(2)
        RetryPolicy(sleep=lambda s: None).call(op, on_retry=lambda attempt, e: seen.append(attempt))
        assert seen == [1, 2]

    def test_sleeps_between_attempts_only(self) -> None:
        """Test backoff sleeps happen between attempts, not after the last."""
        sleeps: list[float] = []
        policy = RetryPolicy(max_attempts=3, backoff=fixed_backoff(5.0), sleep=sleeps.append)
        with pytest.raises(RetryExhausted):
            policy.call(Flaky(10))
        assert sleeps == [5.0, 5.0]

    def test_invalid_max_attempts(self) -> None:
        """Test max_attempts must be at least 1."""
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestBackoff:
    """Tests for backoff functions."""

    def test_no_backoff(self) -> None:
        """Test no_backoff never waits."""
        assert no_backoff(1) == 0.0
        assert no_backoff(7) == 0.0

    def test_fixed_backoff(self) -> None:
        """Test fixed_backoff waits the same time every attempt."""
        backoff = fixed_backoff(2.5)
        assert [backoff(a) for a in (1, 2, 3)] == [2.5, 2.5, 2.5]

    def test_exponential_backoff_capped(self) -> None:
        """Test exponential_backoff doubles up to the cap."""
        backoff = exponential_backoff(base=1.0, cap=5.0)
        assert [backoff(a) for a in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]
