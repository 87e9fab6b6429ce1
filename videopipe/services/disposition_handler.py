"""
Disposition Handler - applies the filesystem side effect for terminal jobs.

Completed jobs get their source deleted; failed jobs get their source moved
to quarantine. Results are reported back to the scheduler, which records
them on the job. The job's processing status is never touched here.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Set

import aiofiles
import aiofiles.os

from videopipe.config import Settings
from videopipe.core.exceptions import DispositionError
from videopipe.models import DispositionOutcome, Job, JobStatus, ProcessingOutcome
from videopipe.utils.file_operations import (
    build_quarantine_path,
    generate_conflict_free_path,
    is_within_directory,
)


@dataclass
class DispositionResult:
    """Outcome of one delete or quarantine operation."""

    outcome: DispositionOutcome
    quarantine_path: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in (DispositionOutcome.DELETED, DispositionOutcome.QUARANTINED)

    def __str__(self) -> str:
        extra = f", error={self.error_message}" if self.error_message else ""
        return f"DispositionResult({self.outcome.value}{extra})"


class DispositionHandler:
    """Deletes or quarantines the source file of a terminal job, once per job."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._disposed_job_ids: Set[str] = set()

        logging.info(
            f"DispositionHandler initialiseret - quarantine: {settings.quarantine_directory}"
        )

    async def dispose(self, job: Job, outcome: ProcessingOutcome) -> DispositionResult:
        """
        Apply the side effect matching `outcome` to the job's source file.

        Raises:
            DispositionError: If the job is not in the terminal state matching
                the outcome, or was already disposed.
        """
        expected = (
            JobStatus.COMPLETED if outcome == ProcessingOutcome.SUCCESS else JobStatus.FAILED
        )
        if job.status != expected:
            raise DispositionError(
                job.source_path,
                f"job {job.id} is '{job.status.value}', expected '{expected.value}'",
            )
        if job.id in self._disposed_job_ids:
            raise DispositionError(job.source_path, f"job {job.id} was already disposed")
        self._disposed_job_ids.add(job.id)

        if outcome == ProcessingOutcome.SUCCESS:
            return await self.delete_source(job.source_path)
        return await self.quarantine_source(job.source_path)

    async def delete_source(self, source_path: str) -> DispositionResult:
        """
        Delete a processed source file with retries.

        Permissions are relaxed before each unlink. A file that is already
        gone counts as deleted.
        """
        path = Path(source_path)
        attempts = self.settings.delete_attempts
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                await self._relax_permissions(path)
                await aiofiles.os.remove(path)
                logging.info(f"Source deleted: {source_path}")
                return DispositionResult(outcome=DispositionOutcome.DELETED)
            except FileNotFoundError:
                logging.debug(f"Source already gone, treating as deleted: {source_path}")
                return DispositionResult(outcome=DispositionOutcome.DELETED)
            except OSError as e:
                last_error = e
                logging.warning(
                    f"Delete attempt {attempt}/{attempts} failed for {source_path}: {e}"
                )
                if attempt < attempts:
                    await asyncio.sleep(self.settings.delete_backoff_seconds * attempt)

        logging.error(f"Source could not be deleted after {attempts} attempts: {source_path}")
        return DispositionResult(
            outcome=DispositionOutcome.DELETE_FAILED,
            error_message=str(last_error),
        )

    async def quarantine_source(self, source_path: str) -> DispositionResult:
        """
        Move a failed source file into the quarantine directory.

        The path relative to the source directory is mirrored when possible,
        otherwise the file is placed flat by name. Rename is tried first;
        when that fails (e.g. across devices) the file is copied and the
        original removed.
        """
        path = Path(source_path)
        quarantine_dir = Path(self.settings.quarantine_directory)

        if not await aiofiles.os.path.exists(path):
            logging.error(f"Cannot quarantine missing source: {source_path}")
            return DispositionResult(
                outcome=DispositionOutcome.QUARANTINE_FAILED,
                error_message="Source file no longer exists",
            )

        # Already in quarantine: leave it, never nest quarantine in quarantine
        if is_within_directory(path, quarantine_dir):
            logging.info(f"Source already in quarantine: {source_path}")
            return DispositionResult(
                outcome=DispositionOutcome.QUARANTINED, quarantine_path=str(path)
            )

        source_base = Path(self.settings.source_directory) if self.settings.source_directory else None
        try:
            destination = build_quarantine_path(path, source_base, quarantine_dir)
            await aiofiles.os.makedirs(destination.parent, exist_ok=True)
            destination = generate_conflict_free_path(destination)
        except (OSError, RuntimeError) as e:
            logging.error(f"Could not prepare quarantine location for {source_path}: {e}")
            return DispositionResult(
                outcome=DispositionOutcome.QUARANTINE_FAILED, error_message=str(e)
            )

        try:
            await aiofiles.os.rename(path, destination)
            logging.info(f"Source quarantined: {source_path} -> {destination}")
            return DispositionResult(
                outcome=DispositionOutcome.QUARANTINED, quarantine_path=str(destination)
            )
        except OSError as rename_error:
            logging.warning(
                f"Rename into quarantine failed for {source_path} ({rename_error}), "
                f"falling back to copy"
            )

        return await self._copy_then_delete(path, destination)

    async def _copy_then_delete(self, path: Path, destination: Path) -> DispositionResult:
        chunk_size = self.settings.quarantine_copy_chunk_kb * 1024
        try:
            async with aiofiles.open(path, "rb") as src, aiofiles.open(destination, "wb") as dst:
                while True:
                    chunk = await src.read(chunk_size)
                    if not chunk:
                        break
                    await dst.write(chunk)
        except OSError as copy_error:
            logging.error(f"Quarantine copy failed for {path}: {copy_error}")
            try:
                await aiofiles.os.remove(destination)
            except FileNotFoundError:
                pass
            return DispositionResult(
                outcome=DispositionOutcome.QUARANTINE_FAILED, error_message=str(copy_error)
            )

        try:
            await aiofiles.os.remove(path)
        except OSError as unlink_error:
            logging.warning(
                f"Quarantine copy written but original could not be removed: {path}: {unlink_error}"
            )
            return DispositionResult(
                outcome=DispositionOutcome.QUARANTINED,
                quarantine_path=str(destination),
                error_message=f"Original not removed: {unlink_error}",
            )

        logging.info(f"Source quarantined via copy: {path} -> {destination}")
        return DispositionResult(
            outcome=DispositionOutcome.QUARANTINED, quarantine_path=str(destination)
        )

    async def _relax_permissions(self, path: Path) -> None:
        try:
            await asyncio.to_thread(os.chmod, path, 0o666)
        except FileNotFoundError:
            raise
        except OSError as e:
            logging.debug(f"chmod before delete failed for {path}: {e}")

    def get_disposition_info(self) -> dict:
        return {
            "source_directory": self.settings.source_directory,
            "quarantine_directory": self.settings.quarantine_directory,
            "delete_attempts": self.settings.delete_attempts,
            "disposed_jobs": len(self._disposed_job_ids),
        }
