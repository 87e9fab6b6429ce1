"""
Concurrency Limiter - caps simultaneous calls to the processing service.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")


class ConcurrencyLimiter:
    """
    Runs admitted tasks so that at most `limit` execute at the same time.

    Excess tasks wait in submission order; asyncio.Semaphore wakes its
    waiters first-in first-out. A slot is always released when the task
    finishes, whether it returned, raised or was cancelled.
    """

    def __init__(self, limit: int = 3):
        if limit < 1:
            raise ValueError(f"Concurrency limit must be >= 1, got {limit}")
        self._limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self._active = 0
        self._waiting = 0
        self._peak_active = 0

        logging.info(f"ConcurrencyLimiter initialiseret med {limit} slots")

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def active(self) -> int:
        return self._active

    @property
    def waiting(self) -> int:
        return self._waiting

    @property
    def peak_active(self) -> int:
        """Highest number of tasks that ever ran at the same time."""
        return self._peak_active

    async def admit(self, task: Callable[[], Awaitable[T]]) -> T:
        """
        Wait for a free slot, then run and await `task()`.

        Args:
            task: Zero-argument callable returning an awaitable. It is only
                called once a slot is held, so no work starts early.

        Returns:
            Whatever the task returns. Exceptions propagate to the caller.
        """
        self._waiting += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._waiting -= 1

        self._active += 1
        self._peak_active = max(self._peak_active, self._active)
        try:
            return await task()
        finally:
            self._active -= 1
            self._semaphore.release()

    def get_limiter_info(self) -> dict:
        return {
            "limit": self._limit,
            "active": self._active,
            "waiting": self._waiting,
            "peak_active": self._peak_active,
        }
