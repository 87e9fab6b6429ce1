"""
Retry Policy - decides whether a failed job is dispatched again and when.
"""

import logging
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RetryDecision:
    """
    Outcome of a retry evaluation.

    Either retry after `delay_seconds` or give up. `reason` is meant for
    logs and the job's error message.
    """

    should_retry: bool
    delay_seconds: float = 0.0
    reason: Optional[str] = None

    @classmethod
    def retry_after(cls, delay_seconds: float) -> "RetryDecision":
        return cls(should_retry=True, delay_seconds=delay_seconds)

    @classmethod
    def give_up(cls, reason: str) -> "RetryDecision":
        return cls(should_retry=False, reason=reason)

    def __str__(self) -> str:
        if self.should_retry:
            return f"RetryDecision(retry in {self.delay_seconds:.2f}s)"
        return f"RetryDecision(give up: {self.reason})"


class RetryPolicy:
    """
    Linear back-off: attempt k failing waits retry_delay * k before attempt k+1.

    A job is retried while attempt < retry_count. Failures the processing
    client marks as non-retryable give up immediately.
    """

    def __init__(self, retry_count: int = 3, retry_delay_seconds: float = 5.0):
        if retry_count < 1:
            raise ValueError(f"retry_count must be >= 1, got {retry_count}")
        if retry_delay_seconds < 0:
            raise ValueError(f"retry_delay_seconds must be >= 0, got {retry_delay_seconds}")
        self.retry_count = retry_count
        self.retry_delay_seconds = retry_delay_seconds

    def delay_for(self, attempt: int) -> float:
        return self.retry_delay_seconds * attempt

    def decide(self, attempt: int, failure: Exception) -> RetryDecision:
        """
        Evaluate a failed attempt.

        Args:
            attempt: The attempt number that just failed (1-based).
            failure: The reported failure. Its `retryable` attribute decides
                whether retrying makes sense at all; exceptions without the
                attribute count as transient.
        """
        if not getattr(failure, "retryable", True):
            logging.debug(f"Non-retryable failure on attempt {attempt}: {failure}")
            return RetryDecision.give_up(f"Non-retryable failure: {failure}")

        if attempt >= self.retry_count:
            return RetryDecision.give_up(
                f"Failed after {attempt} attempts: {failure}"
            )

        return RetryDecision.retry_after(self.delay_for(attempt))

    def get_policy_info(self) -> dict:
        return {
            "retry_count": self.retry_count,
            "retry_delay_seconds": self.retry_delay_seconds,
        }
