"""
Job Scheduler - owns the job queue and drives every job to a terminal state.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Union

from pydantic import ValidationError

from videopipe.config import Settings
from videopipe.core.events.event_bus import DomainEventBus
from videopipe.core.events.job_events import (
    JobCancelledEvent,
    JobCompletedEvent,
    JobDispatchedEvent,
    JobDisposedEvent,
    JobEnqueuedEvent,
    JobFailedEvent,
    JobProgressEvent,
    JobRetryScheduledEvent,
    QueueDrainedEvent,
    SchedulerStartedEvent,
    SchedulerStoppedEvent,
)
from videopipe.core.exceptions import (
    DispositionError,
    DuplicateJobError,
    InvalidStateError,
    InvalidTransitionError,
    JobNotFoundError,
    JobValidationError,
    ProcessingFailure,
    RetryableProcessingError,
)
from videopipe.core.job_repository import JobRepository
from videopipe.core.job_state_machine import JobStateMachine
from videopipe.models import (
    DispositionOutcome,
    FileDescriptor,
    Job,
    JobStatus,
    ProcessingOutcome,
    QueueStats,
    TERMINAL_STATUSES,
)
from videopipe.services.concurrency_limiter import ConcurrencyLimiter
from videopipe.services.delayed_scheduler import DelayedTaskScheduler
from videopipe.services.disposition_handler import DispositionHandler, DispositionResult
from videopipe.services.processing_client import BaseProcessingClient, ProgressCallback
from videopipe.services.retry_policy import RetryPolicy

EnqueueRequest = Union[FileDescriptor, Mapping[str, Any]]


class JobScheduler:
    """
    Accepts file-ready requests and runs them through the processing client.

    One dispatch loop pulls pending jobs in FIFO batches and hands each to the
    concurrency limiter. Outcomes are turned into state transitions: success
    deletes the source, retryable failures come back after a back-off delay,
    everything else fails the job and quarantines the source. Processing
    errors never escape this class; they end up as job state and events.
    """

    def __init__(
        self,
        settings: Settings,
        job_repository: JobRepository,
        event_bus: DomainEventBus,
        state_machine: JobStateMachine,
        processing_client: BaseProcessingClient,
        disposition_handler: DispositionHandler,
        limiter: Optional[ConcurrencyLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.settings = settings
        self._repository = job_repository
        self._event_bus = event_bus
        self._state_machine = state_machine
        self._client = processing_client
        self._disposition_handler = disposition_handler
        self._limiter = limiter or ConcurrencyLimiter(settings.concurrency_limit)
        self._retry_policy = retry_policy or RetryPolicy(
            retry_count=settings.retry_count,
            retry_delay_seconds=settings.retry_delay_seconds,
        )
        self._retry_timers = DelayedTaskScheduler(self._release_retry)

        self._running = False
        self._generation = 0
        self._current_batch_id = 0
        self._loop_task: Optional[asyncio.Task] = None
        self._retired_loops: Set[asyncio.Task] = set()
        self._wakeup = asyncio.Event()
        self._enqueue_lock = asyncio.Lock()

        # Jobs held by a batch (waiting for a slot or running) and jobs
        # whose client call is in progress.
        self._claimed: Set[str] = set()
        self._in_flight: Set[str] = set()
        self._drained_announced = False

        logging.info(
            f"JobScheduler initialiseret - batch_size={settings.batch_size}, "
            f"concurrency_limit={self._limiter.limit}, "
            f"retry_count={self._retry_policy.retry_count}"
        )

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    async def enqueue(self, request: EnqueueRequest) -> Job:
        """
        Create a pending job for a discovered file.

        Raises:
            JobValidationError: Source or destination path missing.
            DuplicateJobError: A job for the same source is pending or
                processing; the existing job is attached to the error.
        """
        descriptor = self._validate_request(request)

        async with self._enqueue_lock:
            existing = await self._repository.find_active_by_source(descriptor.source_path)
            if existing:
                logging.debug(f"Job already active, skipping: {descriptor.source_path}")
                raise DuplicateJobError(existing.model_copy())

            job = Job(
                source_path=descriptor.source_path,
                destination_path=descriptor.destination_path,
                relative_path=descriptor.relative_path,
                size_bytes=descriptor.size_bytes,
            )
            await self._repository.add(job)

        logging.info(f"Job enqueued: {job}")
        self._event_bus.publish_nowait(JobEnqueuedEvent(job=job.model_copy()))
        self._drained_announced = False
        self._wakeup.set()
        return job.model_copy()

    async def enqueue_many(self, requests: Iterable[EnqueueRequest]) -> List[Job]:
        """Enqueue several files, skipping invalid and duplicate entries."""
        created: List[Job] = []
        for request in requests:
            try:
                created.append(await self.enqueue(request))
            except JobValidationError as e:
                logging.warning(f"Invalid enqueue request skipped: {e}")
            except DuplicateJobError as e:
                logging.debug(f"Duplicate enqueue request skipped: {e}")
        return created

    def _validate_request(self, request: EnqueueRequest) -> FileDescriptor:
        if isinstance(request, FileDescriptor):
            descriptor = request
        else:
            try:
                descriptor = FileDescriptor.model_validate(dict(request))
            except (ValidationError, TypeError, ValueError) as e:
                raise JobValidationError("request", f"Malformed enqueue request: {e}") from e

        if not descriptor.source_path or not descriptor.source_path.strip():
            raise JobValidationError("source_path")
        if not descriptor.destination_path or not descriptor.destination_path.strip():
            raise JobValidationError(
                "destination_path",
                f"Missing required field: destination_path ({descriptor.source_path})",
            )
        return descriptor

    # ------------------------------------------------------------------
    # Start / stop
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            logging.warning("Scheduler er allerede startet")
            return

        self._running = True
        self._generation += 1
        self._current_batch_id += 1
        self._drained_announced = False
        self._loop_task = asyncio.create_task(
            self._dispatch_loop(self._generation), name=f"job-dispatch-loop-{self._generation}"
        )

        queue_size = await self._repository.pending_count()
        logging.info(f"Scheduler started (batch {self._current_batch_id}, {queue_size} queued)")
        self._event_bus.publish_nowait(
            SchedulerStartedEvent(batch_id=self._current_batch_id, queue_size=queue_size)
        )

    async def stop(self) -> bool:
        """
        Stop dispatching and wait for in-flight jobs to settle.

        Jobs still waiting for a limiter slot stay pending. The wait is
        bounded by `stop_drain_timeout_seconds` when configured; on timeout
        the in-flight calls keep running in the background and are finished
        and disposed normally.

        Loops left behind by an earlier stop that timed out are waited for
        as well, also when the scheduler is no longer running.

        Returns:
            True if every in-flight job settled before returning.
        """
        was_running = self._running
        if not was_running and not self._retired_loops:
            logging.warning("Scheduler kører ikke")
            return True

        self._running = False
        self._wakeup.set()
        logging.info("Stopping scheduler...")

        # Nuværende loop plus loops som en tidligere stop() opgav at vente på
        loops = set(self._retired_loops)
        if self._loop_task is not None:
            loops.add(self._loop_task)
        self._loop_task = None

        drained = True
        if loops:
            if self._in_flight:
                logging.info(f"Waiting for {len(self._in_flight)} active job(s) to finish...")
            timeout = self.settings.stop_drain_timeout_seconds
            _, still_running = await asyncio.wait(loops, timeout=timeout)
            if still_running:
                drained = False
                for loop_task in still_running:
                    # Keep a reference until the old loop has settled its batch
                    if loop_task not in self._retired_loops:
                        self._retired_loops.add(loop_task)
                        loop_task.add_done_callback(self._retired_loops.discard)
                logging.warning(
                    f"Drain timeout after {timeout}s - {len(self._in_flight)} job(s) still "
                    f"in flight, they will finish in the background"
                )

        if not was_running:
            return drained

        counts = await self._repository.count_by_status()
        self._event_bus.publish_nowait(
            SchedulerStoppedEvent(
                batch_id=self._current_batch_id,
                completed=counts[JobStatus.COMPLETED],
                failed=counts[JobStatus.FAILED],
                drained=drained,
            )
        )
        logging.info("Scheduler stopped")
        return drained

    async def close(self) -> None:
        """Stop the scheduler and drop any pending retry timers."""
        if self._running:
            await self.stop()
        await self._retry_timers.close()

    # ------------------------------------------------------------------
    # Dispatch loop
    # ------------------------------------------------------------------

    async def _dispatch_loop(self, generation: int) -> None:
        logging.info("Dispatch loop startet")
        try:
            while self._is_current(generation):
                batch = await self._next_batch()

                if not batch:
                    await self._announce_drained_if_idle()
                    self._wakeup.clear()
                    try:
                        await asyncio.wait_for(
                            self._wakeup.wait(), timeout=self.settings.batch_yield_seconds
                        )
                    except asyncio.TimeoutError:
                        pass
                    continue

                logging.info(
                    f"Processing batch of {len(batch)} job(s) "
                    f"(batch {self._current_batch_id})"
                )
                self._claimed.update(job.id for job in batch)
                tasks = [
                    asyncio.create_task(self._admit_job(job.id), name=f"job-{job.id[:8]}")
                    for job in batch
                ]
                try:
                    await asyncio.gather(*tasks)
                finally:
                    self._claimed.difference_update(job.id for job in batch)

                if self._is_current(generation):
                    await asyncio.sleep(self.settings.batch_yield_seconds)

        except asyncio.CancelledError:
            logging.info("Dispatch loop blev cancelled")
            raise
        finally:
            logging.info("Dispatch loop stoppet")

    def _is_current(self, generation: int) -> bool:
        return self._running and generation == self._generation

    async def _next_batch(self) -> List[Job]:
        batch_size = self.settings.batch_size
        candidates = await self._repository.next_pending(batch_size + len(self._claimed))
        return [job for job in candidates if job.id not in self._claimed][:batch_size]

    async def _admit_job(self, job_id: str) -> None:
        try:
            await self._limiter.admit(lambda: self._process_job(job_id))
        except Exception as e:
            logging.error(f"Unexpected error processing job {job_id}: {e}", exc_info=True)

    async def _process_job(self, job_id: str) -> None:
        if not self._running:
            # Stopped while waiting for a slot; stays pending for the next start
            return

        self._in_flight.add(job_id)
        try:
            job = await self._state_machine.transition(
                job_id=job_id, new_status=JobStatus.PROCESSING
            )
        except (InvalidTransitionError, JobNotFoundError) as e:
            self._in_flight.discard(job_id)
            logging.debug(f"Job {job_id} no longer dispatchable: {e}")
            return

        attempt = job.attempt
        snapshot = job.model_copy()
        logging.info(f"Dispatching {job.source_path} (attempt {attempt})")
        self._event_bus.publish_nowait(JobDispatchedEvent(job=snapshot.model_copy()))

        try:
            failure: Optional[ProcessingFailure] = None
            result: Any = None
            try:
                result = await self._client.submit(
                    snapshot, self._progress_callback(job_id, attempt)
                )
            except ProcessingFailure as e:
                failure = e
            except Exception as e:
                failure = RetryableProcessingError(f"Unexpected client error: {e}")

            try:
                if failure is not None:
                    await self._handle_failure(job_id, failure)
                else:
                    await self._handle_success(job_id, result)
            except Exception as e:
                logging.error(f"Outcome handling failed for job {job_id}: {e}", exc_info=True)
                await self._fail_unsettled_job(job_id, f"Outcome handling failed: {e}")
        finally:
            self._in_flight.discard(job_id)

    def _progress_callback(self, job_id: str, attempt: int) -> ProgressCallback:
        last_published = -1

        async def on_progress(percent: int) -> None:
            nonlocal last_published
            progress = await self._state_machine.update_progress(
                job_id=job_id, attempt=attempt, progress=percent
            )
            # Only announce actual movement
            if progress is None or progress <= last_published:
                return
            job = await self._repository.get_by_id(job_id)
            if job is None:
                return
            last_published = progress
            self._event_bus.publish_nowait(
                JobProgressEvent(
                    job_id=job_id, progress=progress, attempt=attempt, job=job.model_copy()
                )
            )

        return on_progress

    # ------------------------------------------------------------------
    # Outcome handling
    # ------------------------------------------------------------------

    @staticmethod
    def _result_payload(result: Any) -> Dict[str, Any]:
        if hasattr(result, "as_dict"):
            return result.as_dict()
        if result is None:
            return {}
        if isinstance(result, Mapping):
            return dict(result)
        # Fx en download-URL som ren streng
        return {"value": result}

    async def _handle_success(self, job_id: str, result: Any) -> None:
        payload = self._result_payload(result)

        job = await self._state_machine.transition(
            job_id=job_id, new_status=JobStatus.COMPLETED, result=payload
        )
        logging.info(
            f"Job completed: {job.source_path} "
            f"(attempt {job.attempt}, {job.processing_time_seconds:.1f}s)"
        )
        self._event_bus.publish_nowait(JobCompletedEvent(job=job.model_copy()))

        await self._apply_disposition(job, ProcessingOutcome.SUCCESS)

    async def _handle_failure(self, job_id: str, failure: ProcessingFailure) -> None:
        job = await self._repository.get_by_id(job_id)
        if job is None:
            logging.warning(f"Job {job_id} disappeared before its failure could be handled")
            return

        decision = self._retry_policy.decide(job.attempt, failure)
        error_message = str(failure)

        if decision.should_retry:
            job = await self._state_machine.transition(
                job_id=job_id,
                new_status=JobStatus.PENDING,
                error_message=error_message,
                last_error_retryable=failure.retryable,
                retry_at=datetime.now() + timedelta(seconds=decision.delay_seconds),
            )
            self._retry_timers.schedule(job_id, decision.delay_seconds)
            logging.warning(
                f"Job failed, retrying in {decision.delay_seconds:.2f}s: {job.source_path} "
                f"(attempt {job.attempt}/{self._retry_policy.retry_count}): {error_message}"
            )
            self._event_bus.publish_nowait(
                JobRetryScheduledEvent(
                    job=job.model_copy(),
                    delay_seconds=decision.delay_seconds,
                    error_message=error_message,
                )
            )
            return

        job = await self._state_machine.transition(
            job_id=job_id,
            new_status=JobStatus.FAILED,
            error_message=error_message,
            last_error_retryable=failure.retryable,
        )
        logging.error(f"Job failed permanently: {job.source_path} - {decision.reason}")
        self._event_bus.publish_nowait(
            JobFailedEvent(job=job.model_copy(), error_message=error_message)
        )

        await self._apply_disposition(job, ProcessingOutcome.FAILURE)

    async def _apply_disposition(self, job: Job, outcome: ProcessingOutcome) -> None:
        try:
            result = await self._disposition_handler.dispose(job.model_copy(), outcome)
        except Exception as e:
            logging.error(f"Disposition failed for {job.source_path}: {e}", exc_info=True)
            failed_outcome = (
                DispositionOutcome.DELETE_FAILED
                if outcome == ProcessingOutcome.SUCCESS
                else DispositionOutcome.QUARANTINE_FAILED
            )
            reason = e.reason if isinstance(e, DispositionError) else str(e)
            result = DispositionResult(outcome=failed_outcome, error_message=reason)

        disposition_fields = {
            "disposition": result.outcome,
            "disposition_error": result.error_message,
            "quarantine_path": result.quarantine_path,
        }
        try:
            job = await self._state_machine.record(job_id=job.id, **disposition_fields)
        except JobNotFoundError:
            # Purged meanwhile; the event still reports what happened to the file
            logging.warning(f"Job {job.id} removed before its disposition was recorded")
            job = job.model_copy(update=disposition_fields)
        self._event_bus.publish_nowait(
            JobDisposedEvent(
                job=job.model_copy(),
                disposition=result.outcome,
                error_message=result.error_message,
            )
        )

    async def _fail_unsettled_job(self, job_id: str, error_message: str) -> None:
        """
        Settle a job whose outcome handling raised.

        A job still processing is failed and quarantined, a terminal job
        without disposition gets its disposition, and a pending job without
        a retry timer goes back into the dispatch order.
        """
        try:
            job = await self._repository.get_by_id(job_id)
            if job is None:
                return

            if job.status == JobStatus.PROCESSING:
                job = await self._state_machine.transition(
                    job_id=job_id,
                    new_status=JobStatus.FAILED,
                    error_message=error_message,
                    last_error_retryable=False,
                )
                self._event_bus.publish_nowait(
                    JobFailedEvent(job=job.model_copy(), error_message=error_message)
                )
                await self._apply_disposition(job, ProcessingOutcome.FAILURE)
            elif job.status in (JobStatus.COMPLETED, JobStatus.FAILED) and job.disposition is None:
                outcome = (
                    ProcessingOutcome.SUCCESS
                    if job.status == JobStatus.COMPLETED
                    else ProcessingOutcome.FAILURE
                )
                await self._apply_disposition(job, outcome)
            elif job.status == JobStatus.PENDING and job_id not in self._retry_timers:
                await self._repository.requeue(job_id)
                self._wakeup.set()
        except Exception as e:
            logging.error(f"Could not settle job {job_id}: {e}", exc_info=True)

    async def _release_retry(self, job_id: str) -> None:
        """Timer callback: the back-off delay for a job has elapsed."""
        if not await self._repository.requeue(job_id):
            logging.debug(f"Retry for {job_id} dropped - job no longer pending")
            return
        await self._state_machine.record(job_id=job_id, retry_at=None)
        logging.info(f"Retry released for job {job_id[:8]}")
        self._drained_announced = False
        self._wakeup.set()

    async def _announce_drained_if_idle(self) -> None:
        if self._drained_announced or self._in_flight or len(self._retry_timers):
            return
        if await self._repository.pending_count():
            return

        self._drained_announced = True
        counts = await self._repository.count_by_status()
        logging.info("Processing queue is empty")
        self._event_bus.publish_nowait(
            QueueDrainedEvent(
                completed=counts[JobStatus.COMPLETED], failed=counts[JobStatus.FAILED]
            )
        )

    # ------------------------------------------------------------------
    # Operator operations
    # ------------------------------------------------------------------

    async def cancel(self, job_id: str) -> Job:
        """
        Cancel a job that has not been dispatched yet.

        Raises:
            JobNotFoundError: Unknown job id.
            InvalidStateError: The job is not pending.
        """
        job = await self._repository.get_by_id(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        try:
            job = await self._state_machine.transition(
                job_id=job_id, new_status=JobStatus.CANCELLED
            )
        except InvalidTransitionError as e:
            raise InvalidStateError(job_id, e.from_status, "cancel") from e

        self._retry_timers.cancel(job_id)
        logging.info(f"Job cancelled: {job.source_path}")
        self._event_bus.publish_nowait(JobCancelledEvent(job=job.model_copy()))
        return job.model_copy()

    async def get_stats(self) -> QueueStats:
        counts = await self._repository.count_by_status()
        return QueueStats(
            total=sum(counts.values()),
            pending=counts[JobStatus.PENDING],
            processing=counts[JobStatus.PROCESSING],
            completed=counts[JobStatus.COMPLETED],
            failed=counts[JobStatus.FAILED],
            cancelled=counts[JobStatus.CANCELLED],
            waiting_retry=len(self._retry_timers),
            is_running=self._running,
            current_batch_id=self._current_batch_id,
            batch_size=self.settings.batch_size,
            concurrency_limit=self._limiter.limit,
        )

    async def get_jobs(self, status: Optional[Union[JobStatus, str]] = None) -> List[Job]:
        """All jobs (optionally of one status), newest first."""
        wanted = JobStatus(status) if status is not None else None
        jobs = await self._repository.get_all()
        selected = [job.model_copy() for job in jobs if wanted is None or job.status == wanted]
        return sorted(selected, key=lambda job: job.created_at, reverse=True)

    async def get_job(self, job_id: str) -> Job:
        job = await self._repository.get_by_id(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job.model_copy()

    async def purge_terminal(self) -> Dict[str, int]:
        """
        Remove completed, failed and cancelled jobs from memory.

        Completed and failed jobs whose source has not been disposed of yet
        are kept until the disposition is recorded.
        """
        removed = {status.value: 0 for status in TERMINAL_STATUSES}
        for job in await self._repository.get_all():
            if job.status not in TERMINAL_STATUSES:
                continue
            if job.status != JobStatus.CANCELLED and job.disposition is None:
                continue
            if await self._repository.remove(job.id):
                removed[job.status.value] += 1

        logging.info(f"Purged terminal jobs: {removed}")
        return removed

    async def wait_until_idle(self, poll_interval: float = 0.01) -> None:
        """Wait until nothing is pending, in flight or waiting for a retry."""
        while (
            self._in_flight
            or len(self._retry_timers)
            or await self._repository.pending_count()
        ):
            await asyncio.sleep(poll_interval)

    def get_scheduler_info(self) -> dict:
        return {
            "running": self._running,
            "current_batch_id": self._current_batch_id,
            "in_flight": len(self._in_flight),
            "limiter": self._limiter.get_limiter_info(),
            "retry_policy": self._retry_policy.get_policy_info(),
            "disposition": self._disposition_handler.get_disposition_info(),
            "client": self._client.get_client_name(),
        }
