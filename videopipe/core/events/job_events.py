"""
Lifecycle events published by the job scheduler.

Every event carries a snapshot of the job taken at publish time, so
subscribers never observe later mutations.
"""

from dataclasses import dataclass
from typing import Optional

from videopipe.core.events.domain_event import DomainEvent
from videopipe.models import DispositionOutcome, Job, JobStatus


@dataclass(frozen=True)
class JobStatusChangedEvent(DomainEvent):
    """Event published by the state machine on every accepted transition."""

    job_id: str
    source_path: str
    old_status: Optional[JobStatus]
    new_status: JobStatus


@dataclass(frozen=True)
class JobEnqueuedEvent(DomainEvent):
    job: Job


@dataclass(frozen=True)
class JobDispatchedEvent(DomainEvent):
    """Event published when the limiter admits a job and the client call starts."""

    job: Job


@dataclass(frozen=True)
class JobProgressEvent(DomainEvent):
    """Event published when progress moves within an attempt."""

    job_id: str
    progress: int
    attempt: int
    job: Job


@dataclass(frozen=True)
class JobRetryScheduledEvent(DomainEvent):
    """Event published when a failed attempt is put back after a back-off delay."""

    job: Job
    delay_seconds: float
    error_message: str


@dataclass(frozen=True)
class JobCompletedEvent(DomainEvent):
    job: Job


@dataclass(frozen=True)
class JobFailedEvent(DomainEvent):
    """Event published when retries are exhausted or the failure was fatal."""

    job: Job
    error_message: str


@dataclass(frozen=True)
class JobCancelledEvent(DomainEvent):
    job: Job


@dataclass(frozen=True)
class JobDisposedEvent(DomainEvent):
    """Event published after the source file of a terminal job was handled."""

    job: Job
    disposition: DispositionOutcome
    error_message: Optional[str] = None


@dataclass(frozen=True)
class QueueDrainedEvent(DomainEvent):
    """Event published when nothing is pending or in flight any more."""

    completed: int
    failed: int


@dataclass(frozen=True)
class SchedulerStartedEvent(DomainEvent):
    batch_id: int
    queue_size: int


@dataclass(frozen=True)
class SchedulerStoppedEvent(DomainEvent):
    batch_id: int
    completed: int
    failed: int
    drained: bool
