"""
Tests for the retry policy.
"""
import pytest
from pydantic import ValidationError

from sigtest.retry import NO_RETRY, RetryPolicy


class Flaky:
    """Fails `failures` times with `error`, then returns 'ok'."""

    def __init__(self, failures, error=ConnectionError):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"failure {self.calls}")
        return "ok"


def test_retries_until_success():
    sleeps = []
    flaky = Flaky(failures=2)
    policy = RetryPolicy(max_attempts=3, backoff_seconds=[1.0, 2.0])

    assert policy.call(flaky, sleep=sleeps.append) == "ok"
    assert flaky.calls == 3
    assert sleeps == [1.0, 2.0]


def test_raises_last_error_when_exhausted():
    sleeps = []
    flaky = Flaky(failures=5)
    policy = RetryPolicy(max_attempts=3, backoff_seconds=[0.5])

    with pytest.raises(ConnectionError, match="failure 3"):
        policy.call(flaky, sleep=sleeps.append)
    assert flaky.calls == 3
    assert sleeps == [0.5, 0.5]


def test_non_retryable_error_propagates_immediately():
    flaky = Flaky(failures=1, error=KeyError)
    policy = RetryPolicy(max_attempts=3)

    with pytest.raises(KeyError):
        policy.call(flaky, retry_on=(ConnectionError,), sleep=lambda _: None)
    assert flaky.calls == 1


def test_arguments_are_passed_through():
    policy = RetryPolicy()
    assert policy.call(lambda a, b=0: a + b, 2, b=3) == 5


def test_delay_for():
    policy = RetryPolicy(backoff_seconds=[1.0, 2.0, 4.0])
    assert [policy.delay_for(i) for i in range(5)] == [1.0, 2.0, 4.0, 4.0, 4.0]
    assert NO_RETRY.delay_for(0) == 0.0


def test_no_retry():
    flaky = Flaky(failures=1)
    with pytest.raises(ConnectionError):
        NO_RETRY.call(flaky)
    assert flaky.calls == 1


def test_max_attempts_must_be_positive():
    with pytest.raises(ValidationError):
        RetryPolicy(max_attempts=0)
