# videopipe/core/exceptions.py
from typing import Optional


class JobQueueError(Exception):
    """Base class for errors raised by the job queue."""


class JobValidationError(JobQueueError):
    """Raised when an enqueue request is missing required fields."""

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"Missing required field: {field}")


class DuplicateJobError(JobQueueError):
    """Raised when an equivalent job is already pending or processing."""

    def __init__(self, existing_job):
        self.existing_job = existing_job
        super().__init__(
            f"Job for {existing_job.source_path} already active "
            f"(id={existing_job.id}, status={existing_job.status.value})"
        )


class JobNotFoundError(JobQueueError):
    """Raised when a job id is unknown."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job with ID {job_id} does not exist.")


class InvalidStateError(JobQueueError):
    """Raised when an operator action is not allowed in the job's current state."""

    def __init__(self, job_id: str, status: str, action: str):
        self.job_id = job_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} job {job_id} while it is '{status}'.")


class InvalidTransitionError(JobQueueError):
    """Raised when a job status transition is not allowed."""

    def __init__(self, job_id: str, from_status: str, to_status: str):
        self.job_id = job_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid state transition for {job_id}: "
            f"Cannot move from '{from_status}' to '{to_status}'."
        )


class ProcessingFailure(JobQueueError):
    """
    Failure reported by a processing client.

    The client decides whether the failure is worth retrying; the scheduler
    only reads the flag.
    """

    retryable: bool = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RetryableProcessingError(ProcessingFailure):
    """Transient failure, e.g. a 5xx or a dropped connection."""

    retryable = True


class FatalProcessingError(ProcessingFailure):
    """Non-retryable failure, e.g. the service rejected the upload (4xx)."""

    retryable = False


class DispositionError(JobQueueError):
    """Raised when a delete/quarantine side effect cannot be performed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Disposition of {path} failed: {reason}")
