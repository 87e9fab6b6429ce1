"""
Tests for the DomainEventBus.
"""

import asyncio
from unittest.mock import Mock, patch

import pytest

from videopipe.core.events.domain_event import DomainEvent
from videopipe.core.events.event_bus import DomainEventBus
from videopipe.core.events.job_events import JobProgressEvent, QueueDrainedEvent
from videopipe.models import Job


def _progress_event(progress: int) -> JobProgressEvent:
    job = Job(source_path="/in/clip.mp4", destination_path="/out/clip.mp4", progress=progress)
    return JobProgressEvent(job_id=job.id, progress=progress, attempt=1, job=job)


@pytest.mark.asyncio
async def test_subscribe_and_publish():
    """Test that a handler is called when its subscribed event is published."""
    bus = DomainEventBus()
    handler_mock = Mock()

    async def async_handler(event: DomainEvent):
        handler_mock(event)

    await bus.subscribe(QueueDrainedEvent, async_handler)

    event_to_publish = QueueDrainedEvent(completed=1, failed=0)
    await bus.publish(event_to_publish)

    handler_mock.assert_called_once_with(event_to_publish)


@pytest.mark.asyncio
async def test_publish_to_correct_handlers_only():
    """Only handlers for the published event type are called."""
    bus = DomainEventBus()
    drained_mock = Mock()
    progress_mock = Mock()

    async def drained_handler(event):
        drained_mock(event)

    async def progress_handler(event):
        progress_mock(event)

    await bus.subscribe(QueueDrainedEvent, drained_handler)
    await bus.subscribe(JobProgressEvent, progress_handler)

    event = _progress_event(40)
    await bus.publish(event)

    progress_mock.assert_called_once_with(event)
    drained_mock.assert_not_called()


@pytest.mark.asyncio
async def test_base_class_subscriber_receives_all_events():
    bus = DomainEventBus()
    received = []

    async def catch_all(event):
        received.append(event)

    await bus.subscribe(DomainEvent, catch_all)

    first = QueueDrainedEvent(completed=0, failed=0)
    second = _progress_event(10)
    await bus.publish(first)
    await bus.publish(second)

    assert received == [first, second]


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery():
    bus = DomainEventBus()
    handler_mock = Mock()

    async def handler(event):
        handler_mock(event)

    await bus.subscribe(QueueDrainedEvent, handler)
    assert await bus.unsubscribe(QueueDrainedEvent, handler) is True
    assert await bus.unsubscribe(QueueDrainedEvent, handler) is False

    await bus.publish(QueueDrainedEvent(completed=0, failed=0))
    handler_mock.assert_not_called()


@pytest.mark.asyncio
async def test_publish_with_no_subscribers():
    """Publishing an event with no subscribers does not raise an error."""
    bus = DomainEventBus()

    try:
        await bus.publish(DomainEvent())
    except Exception as e:
        pytest.fail(f"Publishing with no subscribers raised an exception: {e}")


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_others():
    """If one handler fails, other handlers are still executed."""
    bus = DomainEventBus()

    handler_success_mock = Mock()
    handler_fail_mock = Mock()

    async def success_handler(event: DomainEvent):
        handler_success_mock(event)
        await asyncio.sleep(0.01)

    async def failing_handler(event: DomainEvent):
        handler_fail_mock(event)
        raise ValueError("Handler failed intentionally")

    await bus.subscribe(DomainEvent, failing_handler)
    await bus.subscribe(DomainEvent, success_handler)

    event_to_publish = DomainEvent()

    with patch("logging.error") as mock_log_error:
        await bus.publish(event_to_publish)

        handler_fail_mock.assert_called_once_with(event_to_publish)
        handler_success_mock.assert_called_once_with(event_to_publish)

        mock_log_error.assert_called_once()
        log_args, _ = mock_log_error.call_args
        assert "Unhandled exception in handler 'failing_handler'" in log_args[0]
        assert "Handler failed intentionally" in log_args[0]


@pytest.mark.asyncio
async def test_publish_nowait_is_delivered_after_flush():
    bus = DomainEventBus()
    handler_mock = Mock()

    async def slow_handler(event):
        await asyncio.sleep(0.01)
        handler_mock(event)

    await bus.subscribe(DomainEvent, slow_handler)

    event = DomainEvent()
    bus.publish_nowait(event)
    handler_mock.assert_not_called()

    await bus.flush()
    handler_mock.assert_called_once_with(event)
