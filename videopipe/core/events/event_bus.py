"""
Central domain event bus (Mediator Pattern).
"""
import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Set, Type

from videopipe.core.events.domain_event import DomainEvent

# An event handler is an async function that takes a DomainEvent and returns None
EventHandler = Callable[[DomainEvent], Awaitable[None]]


class DomainEventBus:
    """
    Asynchronous event bus for job lifecycle events.

    A handler subscribed to a base class receives every subclass event, so a
    subscriber on DomainEvent sees the full lifecycle stream. If one handler
    fails, the error is logged and the remaining handlers still run.
    """

    def __init__(self) -> None:
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = defaultdict(list)
        self._lock = asyncio.Lock()
        self._pending_publishes: Set[asyncio.Task] = set()

    async def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        """
        Subscribes a handler to a specific event type (and its subclasses).

        Args:
            event_type: The class of the domain event to subscribe to.
            handler: The asynchronous function to call when the event is published.
        """
        async with self._lock:
            self._handlers[event_type].append(handler)
            logging.debug(
                f"Handler {getattr(handler, '__name__', handler)} subscribed to {event_type.__name__}"
            )

    async def unsubscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> bool:
        async with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)
                return True
            return False

    def _handlers_for(self, event_type: Type[DomainEvent]) -> List[EventHandler]:
        handlers: List[EventHandler] = []
        for cls in event_type.__mro__:
            handlers.extend(self._handlers.get(cls, []))
        return handlers

    async def publish(self, event: DomainEvent) -> None:
        """
        Publishes a domain event, calling all subscribed handlers concurrently.

        Args:
            event: The domain event instance to publish.
        """
        event_type = type(event)
        handlers = self._handlers_for(event_type)

        if not handlers:
            logging.debug(f"No handlers for event {event_type.__name__}")
            return

        logging.debug(f"Publishing {event_type.__name__} to {len(handlers)} handler(s)")

        tasks = [self._safe_execute(handler, event) for handler in handlers]
        await asyncio.gather(*tasks)

    def publish_nowait(self, event: DomainEvent) -> None:
        """
        Fire-and-forget publish for callers that must not wait on slow subscribers.

        The task is kept referenced until it finishes so it cannot be garbage
        collected mid-flight.
        """
        task = asyncio.create_task(self.publish(event))
        self._pending_publishes.add(task)
        task.add_done_callback(self._pending_publishes.discard)

    async def flush(self) -> None:
        """Wait until all fire-and-forget publishes have been delivered."""
        while self._pending_publishes:
            await asyncio.gather(*list(self._pending_publishes), return_exceptions=True)

    async def _safe_execute(self, handler: EventHandler, event: DomainEvent) -> None:
        try:
            await handler(event)
        except Exception as e:
            logging.error(
                f"Unhandled exception in handler '{getattr(handler, '__name__', handler)}' for event "
                f"'{type(event).__name__}': {e}",
                exc_info=True,
            )
