"""
Pytest configuration og shared fixtures.
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import pytest
import pytest_asyncio

from videopipe.config import Settings
from videopipe.core.events.domain_event import DomainEvent
from videopipe.core.events.event_bus import DomainEventBus
from videopipe.core.job_repository import JobRepository
from videopipe.core.job_state_machine import JobStateMachine
from videopipe.dependencies import reset_singletons
from videopipe.models import FileDescriptor, Job
from videopipe.services.disposition_handler import DispositionHandler
from videopipe.services.job_scheduler import JobScheduler
from videopipe.services.processing_client import (
    BaseProcessingClient,
    ProcessingResult,
    ProgressCallback,
)

# Slå logning fra under tests for at holde output rent
logging.disable(logging.CRITICAL)

Outcome = Union[Exception, ProcessingResult]


class ScriptedClient(BaseProcessingClient):
    """
    Processing client driven by a script per source path.

    A list of outcomes is consumed one per attempt (success once exhausted);
    a single exception is raised on every attempt. A gate event, when set,
    holds every call until the test releases it.
    """

    def __init__(
        self,
        outcomes: Optional[Dict[str, Union[Outcome, List[Outcome]]]] = None,
        delay: float = 0.0,
        gate: Optional[asyncio.Event] = None,
        progress_steps: Tuple[int, ...] = (25, 50),
    ):
        self.outcomes = outcomes or {}
        self.delay = delay
        self.gate = gate
        self.progress_steps = progress_steps
        self.calls: List[Tuple[str, int]] = []
        self.call_times: Dict[str, List[float]] = {}
        self.active = 0
        self.peak_active = 0

    async def _process(self, job: Job, on_progress: ProgressCallback) -> ProcessingResult:
        loop = asyncio.get_running_loop()
        self.calls.append((job.source_path, job.attempt))
        self.call_times.setdefault(job.source_path, []).append(loop.time())
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            for step in self.progress_steps:
                await on_progress(step)
            if self.gate is not None:
                await self.gate.wait()
            elif self.delay:
                await asyncio.sleep(self.delay)

            outcome = self._next_outcome(job.source_path)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome or ProcessingResult(payload={"task_id": f"task-{job.id[:8]}"})
        finally:
            self.active -= 1

    def _next_outcome(self, source_path: str) -> Optional[Outcome]:
        script = self.outcomes.get(source_path)
        if isinstance(script, list):
            return script.pop(0) if script else None
        return script

    def attempts_for(self, source_path: str) -> int:
        return sum(1 for path, _ in self.calls if path == source_path)


class EventRecorder:
    """Collects every published event for assertions."""

    def __init__(self):
        self.events: List[DomainEvent] = []

    async def __call__(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type) -> List[DomainEvent]:
        return [event for event in self.events if isinstance(event, event_type)]


@pytest.fixture(autouse=True)
def clean_singletons():
    """Automatically reset singletons before hver test."""
    reset_singletons()
    yield
    reset_singletons()


@pytest.fixture
def workspace(tmp_path: Path) -> Dict[str, Path]:
    dirs = {
        "input": tmp_path / "Input",
        "output": tmp_path / "Output",
        "failed": tmp_path / "Failed",
    }
    for directory in dirs.values():
        directory.mkdir()
    return dirs


@pytest.fixture
def settings(workspace: Dict[str, Path]) -> Settings:
    return Settings(
        source_directory=str(workspace["input"]),
        output_directory=str(workspace["output"]),
        quarantine_directory=str(workspace["failed"]),
        batch_size=5,
        concurrency_limit=3,
        retry_count=3,
        retry_delay_seconds=0.01,
        batch_yield_seconds=0.01,
        delete_backoff_seconds=0.0,
    )


@pytest.fixture
def make_video(workspace: Dict[str, Path]):
    """Create a small fake video below Input and return its descriptor."""

    def _make(relative: str, content: bytes = b"\x00fake-video") -> FileDescriptor:
        source = workspace["input"] / relative
        source.parent.mkdir(parents=True, exist_ok=True)
        source.write_bytes(content)
        return FileDescriptor(
            source_path=str(source),
            destination_path=str(workspace["output"] / relative),
            relative_path=relative,
            size_bytes=len(content),
        )

    return _make


@pytest.fixture
def event_bus() -> DomainEventBus:
    return DomainEventBus()


@pytest.fixture
def client() -> ScriptedClient:
    return ScriptedClient()


@pytest_asyncio.fixture
async def recorder(event_bus: DomainEventBus) -> EventRecorder:
    recorder = EventRecorder()
    await event_bus.subscribe(DomainEvent, recorder)
    return recorder


@pytest_asyncio.fixture
async def build_scheduler(settings: Settings, event_bus: DomainEventBus):
    """Factory for schedulers wired with real collaborators; closed after the test."""
    created: List[JobScheduler] = []

    def _build(
        processing_client: BaseProcessingClient,
        disposition_handler: Optional[DispositionHandler] = None,
        **overrides,
    ) -> JobScheduler:
        scheduler_settings = settings.model_copy(update=overrides) if overrides else settings
        repository = JobRepository()
        scheduler = JobScheduler(
            settings=scheduler_settings,
            job_repository=repository,
            event_bus=event_bus,
            state_machine=JobStateMachine(repository, event_bus),
            processing_client=processing_client,
            disposition_handler=disposition_handler or DispositionHandler(scheduler_settings),
        )
        created.append(scheduler)
        return scheduler

    yield _build

    for scheduler in created:
        await scheduler.close()
    await event_bus.flush()


@pytest.fixture
def client_factory():
    """The ScriptedClient class, for tests that need custom scripts."""
    return ScriptedClient
