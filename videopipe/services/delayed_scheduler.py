"""
Delayed Task Scheduler - deadline-ordered retry timers.

Replaces one asyncio task per retry with a single min-heap and one runner
task, so due order and cancellation stay well defined.
"""

import asyncio
import heapq
import itertools
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

DueCallback = Callable[[str], Awaitable[None]]


@dataclass(order=True)
class _TimerEntry:
    deadline: float
    sequence: int
    key: str = field(compare=False)
    cancelled: bool = field(default=False, compare=False)


class DelayedTaskScheduler:
    """
    Calls `on_due(key)` once the delay registered for `key` has elapsed.

    Timers with equal deadlines fire in scheduling order. Re-scheduling a key
    replaces its previous timer. Cancelled entries are skipped lazily when
    they reach the top of the heap.
    """

    def __init__(self, on_due: DueCallback):
        self._on_due = on_due
        self._heap: List[_TimerEntry] = []
        self._entries: Dict[str, _TimerEntry] = {}
        self._sequence = itertools.count()
        self._wakeup = asyncio.Event()
        self._runner: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def schedule(self, key: str, delay_seconds: float) -> float:
        """
        Register `key` to fire after `delay_seconds`.

        Returns:
            The loop-time deadline of the timer.
        """
        loop = asyncio.get_running_loop()
        self.cancel(key)

        entry = _TimerEntry(
            deadline=loop.time() + max(0.0, delay_seconds),
            sequence=next(self._sequence),
            key=key,
        )
        heapq.heappush(self._heap, entry)
        self._entries[key] = entry
        self._wakeup.set()
        self._ensure_runner()

        logging.debug(f"Timer scheduled for {key} in {delay_seconds:.2f}s")
        return entry.deadline

    def cancel(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        entry.cancelled = True
        self._wakeup.set()
        logging.debug(f"Timer cancelled for {key}")
        return True

    def time_remaining(self, key: str) -> Optional[float]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        return max(0.0, entry.deadline - asyncio.get_running_loop().time())

    async def close(self) -> None:
        """Drop all timers and stop the runner task."""
        for entry in self._entries.values():
            entry.cancelled = True
        self._entries.clear()
        self._heap.clear()

        if self._runner and not self._runner.done():
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
        self._runner = None

    def _ensure_runner(self) -> None:
        if self._runner is None or self._runner.done():
            self._runner = asyncio.create_task(self._run(), name="retry-timer-runner")

    def _discard_cancelled(self) -> None:
        while self._heap and self._heap[0].cancelled:
            heapq.heappop(self._heap)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            self._discard_cancelled()

            if not self._heap:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            timeout = self._heap[0].deadline - loop.time()
            if timeout > 0:
                self._wakeup.clear()
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
                except asyncio.TimeoutError:
                    pass
                continue

            entry = heapq.heappop(self._heap)
            if entry.cancelled:
                continue

            # The key stays registered until the callback is done, so
            # len() never reports zero while a release is in progress.
            try:
                await self._on_due(entry.key)
            except Exception as e:
                logging.error(f"Error in delayed task for {entry.key}: {e}", exc_info=True)
            finally:
                if self._entries.get(entry.key) is entry:
                    del self._entries[entry.key]
