import errno
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from videopipe.core.exceptions import DispositionError
from videopipe.models import DispositionOutcome, Job, JobStatus, ProcessingOutcome
from videopipe.services.disposition_handler import DispositionHandler


@pytest.fixture
def handler(settings) -> DispositionHandler:
    return DispositionHandler(settings)


def _terminal_job(source: Path, status: JobStatus) -> Job:
    return Job(source_path=str(source), destination_path="/out/x.mp4", status=status)


@pytest.mark.asyncio
async def test_success_deletes_source(handler, workspace):
    source = workspace["input"] / "clip.mp4"
    source.write_bytes(b"data")

    result = await handler.dispose(_terminal_job(source, JobStatus.COMPLETED), ProcessingOutcome.SUCCESS)

    assert result.outcome == DispositionOutcome.DELETED
    assert not source.exists()


@pytest.mark.asyncio
async def test_read_only_source_is_deleted(handler, workspace):
    source = workspace["input"] / "locked.mp4"
    source.write_bytes(b"data")
    source.chmod(0o444)

    result = await handler.delete_source(str(source))

    assert result.succeeded
    assert not source.exists()


@pytest.mark.asyncio
async def test_missing_source_counts_as_deleted(handler, workspace):
    result = await handler.delete_source(str(workspace["input"] / "gone.mp4"))

    assert result.outcome == DispositionOutcome.DELETED


@pytest.mark.asyncio
async def test_delete_gives_up_after_configured_attempts(handler, workspace):
    source = workspace["input"] / "busy.mp4"
    source.write_bytes(b"data")

    busy = AsyncMock(side_effect=PermissionError(errno.EBUSY, "busy"))
    with patch("aiofiles.os.remove", busy):
        result = await handler.delete_source(str(source))

    assert result.outcome == DispositionOutcome.DELETE_FAILED
    assert "busy" in result.error_message
    assert busy.await_count == handler.settings.delete_attempts
    assert source.exists()


@pytest.mark.asyncio
async def test_failure_mirrors_relative_path_in_quarantine(handler, workspace):
    source = workspace["input"] / "show" / "day1" / "clip.mp4"
    source.parent.mkdir(parents=True)
    source.write_bytes(b"data")

    result = await handler.dispose(_terminal_job(source, JobStatus.FAILED), ProcessingOutcome.FAILURE)

    expected = workspace["failed"] / "show" / "day1" / "clip.mp4"
    assert result.outcome == DispositionOutcome.QUARANTINED
    assert result.quarantine_path == str(expected)
    assert expected.read_bytes() == b"data"
    assert not source.exists()


@pytest.mark.asyncio
async def test_quarantine_outside_source_directory_uses_file_name(handler, tmp_path, workspace):
    source = tmp_path / "elsewhere" / "clip.mp4"
    source.parent.mkdir()
    source.write_bytes(b"data")

    result = await handler.quarantine_source(str(source))

    assert result.quarantine_path == str(workspace["failed"] / "clip.mp4")


@pytest.mark.asyncio
async def test_quarantine_name_conflict_gets_suffix(handler, workspace):
    (workspace["failed"] / "clip.mp4").write_bytes(b"old")
    source = workspace["input"] / "clip.mp4"
    source.write_bytes(b"new")

    result = await handler.quarantine_source(str(source))

    assert result.quarantine_path == str(workspace["failed"] / "clip_1.mp4")
    assert (workspace["failed"] / "clip.mp4").read_bytes() == b"old"


@pytest.mark.asyncio
async def test_quarantine_falls_back_to_copy_across_devices(handler, workspace):
    source = workspace["input"] / "clip.mp4"
    source.write_bytes(b"x" * 5000)

    cross_device = AsyncMock(side_effect=OSError(errno.EXDEV, "Invalid cross-device link"))
    with patch("aiofiles.os.rename", cross_device):
        result = await handler.quarantine_source(str(source))

    destination = workspace["failed"] / "clip.mp4"
    assert result.outcome == DispositionOutcome.QUARANTINED
    assert destination.read_bytes() == b"x" * 5000
    assert not source.exists()


@pytest.mark.asyncio
async def test_quarantine_of_missing_source_fails(handler, workspace):
    result = await handler.quarantine_source(str(workspace["input"] / "gone.mp4"))

    assert result.outcome == DispositionOutcome.QUARANTINE_FAILED
    assert not result.succeeded


@pytest.mark.asyncio
async def test_file_already_in_quarantine_is_left_alone(handler, workspace):
    source = workspace["failed"] / "clip.mp4"
    source.write_bytes(b"data")

    result = await handler.quarantine_source(str(source))

    assert result.outcome == DispositionOutcome.QUARANTINED
    assert result.quarantine_path == str(source)
    assert source.exists()


@pytest.mark.asyncio
async def test_dispose_runs_once_per_job(handler, workspace):
    source = workspace["input"] / "clip.mp4"
    source.write_bytes(b"data")
    job = _terminal_job(source, JobStatus.COMPLETED)

    await handler.dispose(job, ProcessingOutcome.SUCCESS)

    with pytest.raises(DispositionError):
        await handler.dispose(job, ProcessingOutcome.SUCCESS)


@pytest.mark.asyncio
async def test_dispose_rejects_mismatched_status(handler, workspace):
    source = workspace["input"] / "clip.mp4"
    source.write_bytes(b"data")

    with pytest.raises(DispositionError):
        await handler.dispose(_terminal_job(source, JobStatus.PROCESSING), ProcessingOutcome.SUCCESS)

    assert source.exists()
