import pytest

from videopipe.core.exceptions import FatalProcessingError, RetryableProcessingError
from videopipe.services.retry_policy import RetryPolicy


def test_linear_backoff():
    policy = RetryPolicy(retry_count=3, retry_delay_seconds=5.0)

    assert policy.delay_for(1) == 5.0
    assert policy.delay_for(2) == 10.0


def test_retries_until_attempts_exhausted():
    policy = RetryPolicy(retry_count=3, retry_delay_seconds=2.0)
    failure = RetryableProcessingError("HTTP 503", status_code=503)

    first = policy.decide(1, failure)
    second = policy.decide(2, failure)
    last = policy.decide(3, failure)

    assert first.should_retry and first.delay_seconds == 2.0
    assert second.should_retry and second.delay_seconds == 4.0
    assert not last.should_retry
    assert "3 attempts" in last.reason


def test_fatal_failure_gives_up_immediately():
    policy = RetryPolicy(retry_count=5)

    decision = policy.decide(1, FatalProcessingError("HTTP 400", status_code=400))

    assert not decision.should_retry
    assert "Non-retryable" in decision.reason


def test_plain_exceptions_count_as_transient():
    decision = RetryPolicy(retry_count=2, retry_delay_seconds=1.0).decide(1, ConnectionError("reset"))

    assert decision.should_retry


def test_single_attempt_never_retries():
    assert not RetryPolicy(retry_count=1).decide(1, RuntimeError("x")).should_retry


@pytest.mark.parametrize("count, delay", [(0, 1.0), (3, -1.0)])
def test_invalid_configuration(count, delay):
    with pytest.raises(ValueError):
        RetryPolicy(retry_count=count, retry_delay_seconds=delay)
