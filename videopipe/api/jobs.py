import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from videopipe.core.exceptions import (
    DuplicateJobError,
    InvalidStateError,
    JobNotFoundError,
    JobValidationError,
)
from videopipe.dependencies import get_job_scheduler
from videopipe.models import FileDescriptor, Job, JobStatus, QueueStats
from videopipe.services.job_scheduler import JobScheduler

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.get("/stats", response_model=QueueStats)
async def get_stats(scheduler: JobScheduler = Depends(get_job_scheduler)):
    """Counts by status and whether the scheduler is dispatching."""
    return await scheduler.get_stats()


@router.get("", response_model=List[Job])
async def list_jobs(
    job_status: Optional[JobStatus] = Query(default=None, alias="status"),
    scheduler: JobScheduler = Depends(get_job_scheduler),
):
    return await scheduler.get_jobs(job_status)


@router.post("", response_model=Job, status_code=status.HTTP_201_CREATED)
async def enqueue_job(
    descriptor: FileDescriptor,
    scheduler: JobScheduler = Depends(get_job_scheduler),
):
    """Manually queue a file, e.g. one moved back out of quarantine."""
    logging.info(
        f"Enqueue requested via API: {descriptor.source_path}",
        extra={"operation": "api_enqueue"},
    )
    try:
        return await scheduler.enqueue(descriptor)
    except JobValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except DuplicateJobError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(e), "existing_job_id": e.existing_job.id},
        )


@router.post("/start", response_model=QueueStats)
async def start_processing(scheduler: JobScheduler = Depends(get_job_scheduler)):
    logging.info("Scheduler start requested", extra={"operation": "api_start"})
    await scheduler.start()
    return await scheduler.get_stats()


@router.post("/stop")
async def stop_processing(scheduler: JobScheduler = Depends(get_job_scheduler)):
    """Stop dispatching; returns once in-flight jobs have settled (or the drain timed out)."""
    logging.info("Scheduler stop requested", extra={"operation": "api_stop"})
    drained = await scheduler.stop()
    return {"drained": drained, "stats": await scheduler.get_stats()}


@router.delete("/terminal")
async def purge_terminal_jobs(scheduler: JobScheduler = Depends(get_job_scheduler)):
    return {"removed": await scheduler.purge_terminal()}


@router.get("/{job_id}", response_model=Job)
async def get_job(job_id: str, scheduler: JobScheduler = Depends(get_job_scheduler)):
    try:
        return await scheduler.get_job(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/{job_id}/cancel", response_model=Job)
async def cancel_job(job_id: str, scheduler: JobScheduler = Depends(get_job_scheduler)):
    logging.info(f"Cancel requested for job {job_id}", extra={"operation": "api_cancel"})
    try:
        return await scheduler.cancel(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
