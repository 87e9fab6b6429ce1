from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    """
    Status for et job gennem hele processing-forløbet.

    Normal Workflow: Pending -> Processing -> Completed
    Retry: Processing -> Pending (efter back-off delay) -> Processing
    Alternative: -> Failed (retries brugt op eller fatal fejl)
    Operator: Pending -> Cancelled (kun før dispatch)
    """

    PENDING = "pending"  # Venter på at blive dispatched
    PROCESSING = "processing"  # Kald til processing service i gang
    COMPLETED = "completed"  # Service returnerede et resultat
    FAILED = "failed"  # Permanent fejl
    CANCELLED = "cancelled"  # Annulleret af operator før dispatch

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in (JobStatus.PENDING, JobStatus.PROCESSING)


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


class DispositionOutcome(str, Enum):
    """Result of the filesystem side effect applied to a terminal job's source."""

    DELETED = "deleted"
    QUARANTINED = "quarantined"
    DELETE_FAILED = "delete_failed"
    QUARANTINE_FAILED = "quarantine_failed"


class ProcessingOutcome(str, Enum):
    """Which disposition a terminal job asks for."""

    SUCCESS = "success"
    FAILURE = "failure"


class FileDescriptor(BaseModel):
    """Enqueue request handed over by file discovery."""

    source_path: str = Field(default="", description="Absolute path to the source video")
    destination_path: str = Field(
        default="", description="Where the processed output should be written"
    )
    relative_path: Optional[str] = Field(
        default=None, description="Source path relative to the watched directory"
    )
    size_bytes: int = Field(default=0, ge=0, description="File size in bytes")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "source_path": "/data/Input/clips/holiday_001.mp4",
                "destination_path": "/data/Output/clips/holiday_001.mp4",
                "relative_path": "clips/holiday_001.mp4",
                "size_bytes": 52428800,
            }
        }
    )


class Job(BaseModel):
    """
    One tracked processing lifecycle for a single source file.

    Status, attempt, progress and timestamps are owned by the scheduler and
    only changed through JobStateMachine. Collaborators receive snapshots.
    """

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique identifier for this job",
    )

    source_path: str = Field(..., description="Absolute path to the source file")
    destination_path: str = Field(..., description="Output path for the processed file")
    relative_path: Optional[str] = Field(
        default=None, description="Source path relative to the watched directory"
    )
    size_bytes: int = Field(default=0, ge=0, description="File size in bytes")

    status: JobStatus = Field(default=JobStatus.PENDING)

    attempt: int = Field(default=0, ge=0, description="Number of dispatches so far")

    progress: int = Field(
        default=0,
        ge=0,
        le=100,
        description="Progress of the current attempt in percent (0-100)",
    )

    created_at: datetime = Field(default_factory=datetime.now)
    started_at: Optional[datetime] = Field(
        default=None, description="Start of the current/last attempt"
    )
    completed_at: Optional[datetime] = Field(
        default=None, description="Set when the job reaches a terminal state"
    )
    retry_at: Optional[datetime] = Field(
        default=None, description="When a retry-delayed job becomes eligible again"
    )
    processing_time_seconds: float = Field(default=0.0, ge=0.0)

    error_message: Optional[str] = Field(default=None)
    last_error_retryable: Optional[bool] = Field(default=None)

    result: Optional[Dict[str, Any]] = Field(
        default=None, description="Payload returned by the processing service"
    )

    disposition: Optional[DispositionOutcome] = Field(default=None)
    disposition_error: Optional[str] = Field(default=None)
    quarantine_path: Optional[str] = Field(default=None)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "3f0e1c9a-6a52-4d0e-9a57-0c6f6b4c1e2d",
                "source_path": "/data/Input/clips/holiday_001.mp4",
                "destination_path": "/data/Output/clips/holiday_001.mp4",
                "relative_path": "clips/holiday_001.mp4",
                "size_bytes": 52428800,
                "status": "processing",
                "attempt": 1,
                "progress": 42,
                "created_at": "2025-10-08T14:25:00",
                "started_at": "2025-10-08T14:27:00",
                "completed_at": None,
                "error_message": None,
                "disposition": None,
            }
        }
    )

    def __str__(self) -> str:
        return (
            f"Job(id={self.id[:8]}, "
            f"path={self.source_path}, "
            f"status={self.status.value}, "
            f"attempt={self.attempt})"
        )


class QueueStats(BaseModel):
    """Snapshot of the scheduler counters exposed to operators."""

    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    waiting_retry: int = 0
    is_running: bool = False
    current_batch_id: int = 0
    batch_size: int = 0
    concurrency_limit: int = 0
