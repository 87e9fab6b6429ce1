# Services for the job queue:
# - Concurrency limiting and retry back-off
# - Processing client contract
# - Source disposition (delete / quarantine)
# - The scheduler tying them together
from .concurrency_limiter import ConcurrencyLimiter
from .disposition_handler import DispositionHandler, DispositionResult
from .job_scheduler import JobScheduler
from .processing_client import BaseProcessingClient, ProcessingResult
from .retry_policy import RetryDecision, RetryPolicy

__all__ = [
    "BaseProcessingClient",
    "ConcurrencyLimiter",
    "DispositionHandler",
    "DispositionResult",
    "JobScheduler",
    "ProcessingResult",
    "RetryDecision",
    "RetryPolicy",
]
