"""
Job Repository - in-memory data access layer for Job objects.
"""

import asyncio
import logging
from collections import Counter
from typing import Dict, List, Optional

from videopipe.models import Job, JobStatus


class JobRepository:
    """
    Owns the job collections of one scheduler instance.

    Jobs are stored by id in insertion order. Dispatch order is kept
    separately in a FIFO list of ids: a job enters it when enqueued and again
    when its retry delay has elapsed, and leaves it as soon as its status is
    no longer pending.
    """

    def __init__(self):
        self._jobs_by_id: Dict[str, Job] = {}
        self._pending_order: List[str] = []
        self._lock = asyncio.Lock()
        logging.info("JobRepository initialized")

    async def get_by_id(self, job_id: str) -> Optional[Job]:
        async with self._lock:
            return self._jobs_by_id.get(job_id)

    async def get_all(self) -> List[Job]:
        async with self._lock:
            return list(self._jobs_by_id.values())

    async def add(self, job: Job) -> None:
        """Add a new job; pending jobs are appended to the dispatch order."""
        async with self._lock:
            if job.id in self._jobs_by_id:
                logging.error(
                    f"Job with ID {job.id} already exists in repository. Use update() to modify."
                )
                return
            self._jobs_by_id[job.id] = job
            if job.status == JobStatus.PENDING:
                self._pending_order.append(job.id)

    async def update(self, job: Job) -> None:
        """Store a modified job and drop it from the dispatch order if it left pending."""
        async with self._lock:
            if job.id not in self._jobs_by_id:
                logging.warning(
                    f"Job with ID {job.id} does not exist in repository. Cannot update."
                )
            self._jobs_by_id[job.id] = job
            if job.status != JobStatus.PENDING and job.id in self._pending_order:
                self._pending_order.remove(job.id)

    async def requeue(self, job_id: str) -> bool:
        """Put a pending job back at the tail of the dispatch order."""
        async with self._lock:
            job = self._jobs_by_id.get(job_id)
            if not job or job.status != JobStatus.PENDING:
                return False
            if job_id not in self._pending_order:
                self._pending_order.append(job_id)
            return True

    async def next_pending(self, limit: int) -> List[Job]:
        """Return up to `limit` dispatchable jobs in FIFO order without removing them."""
        async with self._lock:
            return [self._jobs_by_id[job_id] for job_id in self._pending_order[:limit]]

    async def pending_count(self) -> int:
        async with self._lock:
            return len(self._pending_order)

    async def find_active_by_source(self, source_path: str) -> Optional[Job]:
        """Find a pending or processing job for the same source file."""
        async with self._lock:
            for job in self._jobs_by_id.values():
                if job.source_path == source_path and job.status.is_active:
                    return job
            return None

    async def count_by_status(self) -> Dict[JobStatus, int]:
        async with self._lock:
            counts = Counter(job.status for job in self._jobs_by_id.values())
            return {status: counts.get(status, 0) for status in JobStatus}

    async def remove(self, job_id: str) -> bool:
        async with self._lock:
            if job_id in self._jobs_by_id:
                del self._jobs_by_id[job_id]
                if job_id in self._pending_order:
                    self._pending_order.remove(job_id)
                return True
            return False

    async def count(self) -> int:
        async with self._lock:
            return len(self._jobs_by_id)
