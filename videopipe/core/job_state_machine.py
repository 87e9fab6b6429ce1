import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional, Set

from videopipe.core.events.event_bus import DomainEventBus
from videopipe.core.events.job_events import JobStatusChangedEvent
from videopipe.core.exceptions import InvalidTransitionError, JobNotFoundError
from videopipe.core.job_repository import JobRepository
from videopipe.models import Job, JobStatus


class JobStateMachine:
    """
    Central "dørmand" for alle job-status overgange.

    This is the ONLY class allowed to:
    1. Validate a status transition.
    2. Change a Job's status, attempt and progress fields.
    3. Save the change to the JobRepository.
    4. Publish JobStatusChangedEvent.
    """

    def __init__(
        self,
        job_repository: JobRepository,
        event_bus: DomainEventBus,
    ):
        self._repository = job_repository
        self._event_bus = event_bus
        # Beskytter mod at to tasks ændrer det samme job samtidig.
        self._lock = asyncio.Lock()

        # processing -> cancelled is deliberately absent: an in-flight call
        # must be allowed to finish.
        self._transitions: Dict[JobStatus, Set[JobStatus]] = {
            JobStatus.PENDING: {
                JobStatus.PROCESSING,
                JobStatus.CANCELLED,
            },
            JobStatus.PROCESSING: {
                JobStatus.COMPLETED,
                JobStatus.FAILED,
                JobStatus.PENDING,  # retry
            },
            JobStatus.COMPLETED: set(),
            JobStatus.FAILED: set(),
            JobStatus.CANCELLED: set(),
        }
        logging.info("JobStateMachine initialiseret med %s overgangsregler", len(self._transitions))

    def can_transition(self, from_status: JobStatus, to_status: JobStatus) -> bool:
        return to_status in self._transitions.get(from_status, set())

    async def transition(
        self,
        *,
        job_id: str,
        new_status: JobStatus,
        **kwargs,
    ) -> Job:
        """
        Perform a status transition atomically and publish an event.

        Args:
            job_id: Id of the job to transition (keyword-only).
            new_status: The desired new status (keyword-only).
            **kwargs: Optional fields to update (e.g. error_message).

        Usage:
            await state_machine.transition(
                job_id="abc123",
                new_status=JobStatus.COMPLETED,
                result={"download_url": "..."},
            )

        Returns:
            The updated Job object.

        Raises:
            InvalidTransitionError: If the transition is not allowed.
            JobNotFoundError: If the job does not exist.
        """
        event_to_publish: Optional[JobStatusChangedEvent] = None

        async with self._lock:
            job = await self._repository.get_by_id(job_id)
            if not job:
                raise JobNotFoundError(job_id)

            old_status = job.status

            if not self.can_transition(old_status, new_status):
                raise InvalidTransitionError(job.id, old_status.value, new_status.value)

            logging.info(f"Transition: {job.source_path} | {old_status.value} -> {new_status.value}")
            job.status = new_status

            # Ryd altid gamle fejl som standard; kwargs kan overskrive.
            job.error_message = None

            now = datetime.now()
            if new_status == JobStatus.PROCESSING:
                job.attempt += 1
                job.started_at = now
                job.progress = 0
                job.retry_at = None
                job.last_error_retryable = None
            elif new_status == JobStatus.PENDING:
                job.progress = 0
            elif new_status in (JobStatus.COMPLETED, JobStatus.FAILED):
                job.completed_at = now
                if job.started_at:
                    job.processing_time_seconds = (now - job.started_at).total_seconds()
                if new_status == JobStatus.COMPLETED:
                    job.progress = 100
            elif new_status == JobStatus.CANCELLED:
                job.completed_at = now
                job.retry_at = None

            for key, value in kwargs.items():
                if hasattr(job, key):
                    setattr(job, key, value)

            await self._repository.update(job)

            event_to_publish = JobStatusChangedEvent(
                job_id=job.id,
                source_path=job.source_path,
                old_status=old_status,
                new_status=new_status,
            )

        # Announce outside the lock so slow subscribers never block transitions.
        self._event_bus.publish_nowait(event_to_publish)

        return job

    async def update_progress(self, *, job_id: str, attempt: int, progress: int) -> Optional[int]:
        """
        Record progress for the given attempt.

        Progress is clamped to [0, 100] and never lowered within an attempt.
        Updates for another attempt or a job that is no longer processing are
        ignored and None is returned.
        """
        async with self._lock:
            job = await self._repository.get_by_id(job_id)
            if not job or job.status != JobStatus.PROCESSING or job.attempt != attempt:
                return None

            clamped = max(0, min(100, int(progress)))
            if clamped > job.progress:
                job.progress = clamped
                await self._repository.update(job)
            return job.progress

    async def record(self, *, job_id: str, **fields) -> Job:
        """Update non-status fields (disposition results) without a transition."""
        async with self._lock:
            job = await self._repository.get_by_id(job_id)
            if not job:
                raise JobNotFoundError(job_id)
            for key in ("status", "attempt", "progress"):
                if key in fields:
                    raise ValueError(f"'{key}' can only change through transition()")
            for key, value in fields.items():
                if hasattr(job, key):
                    setattr(job, key, value)
            await self._repository.update(job)
            return job
