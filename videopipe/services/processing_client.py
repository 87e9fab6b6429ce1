"""
Processing Client contract.

The scheduler only knows "submit a file, get a result or a failure". Concrete
clients (upload, poll, download against one specific service) live outside
this package and subclass BaseProcessingClient.

Classification of failures into retryable and fatal happens here, in the
client layer, so the scheduler never has to guess from error text.
"""

import errno
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from videopipe.core.exceptions import (
    FatalProcessingError,
    ProcessingFailure,
    RetryableProcessingError,
)
from videopipe.models import Job

ProgressCallback = Callable[[int], Awaitable[None]]

# Client-side statuses that still make sense to retry later.
RETRYABLE_CLIENT_STATUSES = frozenset({408, 425, 429})

# errno codes that indicate a dropped connection rather than a bad request.
TRANSIENT_ERRNOS = frozenset(
    {
        errno.EIO,
        errno.ECONNREFUSED,
        errno.ETIMEDOUT,
        errno.ENETUNREACH,
        errno.EHOSTUNREACH,
        errno.EPIPE,
        errno.ENOTCONN,
        errno.ECONNRESET,
    }
)


@dataclass
class ProcessingResult:
    """Successful outcome returned by a processing client."""

    payload: Dict[str, Any] = field(default_factory=dict)
    output_path: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        data = dict(self.payload)
        if self.output_path is not None:
            data.setdefault("output_path", self.output_path)
        return data


def classify_http_status(status_code: Optional[int]) -> bool:
    """
    Return True when a failure with this HTTP status is worth retrying.

    4xx means the service rejected the request and will do so again, except
    for timeouts and rate limiting. 5xx and a missing status (the request
    never got an answer) are transient.
    """
    if status_code is None:
        return True
    if 400 <= status_code < 500:
        return status_code in RETRYABLE_CLIENT_STATUSES
    return True


def failure_from_status(message: str, status_code: Optional[int]) -> ProcessingFailure:
    """Build the failure type matching `classify_http_status`."""
    if classify_http_status(status_code):
        return RetryableProcessingError(message, status_code=status_code)
    return FatalProcessingError(message, status_code=status_code)


def classify_exception(error: Exception) -> ProcessingFailure:
    """
    Turn an arbitrary exception raised inside a client into a ProcessingFailure.

    Checks, in order: already classified, an HTTP status on the error or its
    response, a missing local source file, and transient errno codes.
    Anything else is treated as transient.
    """
    if isinstance(error, ProcessingFailure):
        return error

    status_code = getattr(error, "status_code", None)
    if status_code is None:
        response = getattr(error, "response", None)
        status_code = getattr(response, "status_code", None) or getattr(response, "status", None)
    if isinstance(status_code, int):
        return failure_from_status(f"HTTP {status_code}: {error}", status_code)

    if isinstance(error, FileNotFoundError):
        return FatalProcessingError(f"Source file missing: {error}")

    error_errno = getattr(error, "errno", None)
    if error_errno in TRANSIENT_ERRNOS:
        return RetryableProcessingError(f"Network errno {error_errno}: {error}")

    return RetryableProcessingError(f"Unexpected error: {error}")


class BaseProcessingClient(ABC):
    """
    Abstract processing client.

    Subclasses implement `_process`. `submit` wraps it so every failure that
    reaches the scheduler is a classified ProcessingFailure.
    """

    async def submit(self, job: Job, on_progress: ProgressCallback) -> ProcessingResult:
        """
        Process one job's source file.

        Args:
            job: Snapshot of the job. Clients must not mutate it.
            on_progress: Awaitable callback receiving a percentage.

        Raises:
            ProcessingFailure: RetryableProcessingError or FatalProcessingError.
        """
        try:
            return await self._process(job, on_progress)
        except ProcessingFailure:
            raise
        except Exception as e:
            failure = classify_exception(e)
            logging.warning(
                f"{self.get_client_name()} failed for {job.source_path}: "
                f"{failure} (retryable={failure.retryable})"
            )
            raise failure from e

    @abstractmethod
    async def _process(self, job: Job, on_progress: ProgressCallback) -> ProcessingResult:
        """Upload, poll until terminal and optionally download the result."""
        pass

    def get_client_name(self) -> str:
        return type(self).__name__
