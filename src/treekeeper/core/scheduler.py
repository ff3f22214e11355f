"""keyed debounce timers.

scheduling under a key replaces whatever was pending under that key, so a
burst of calls collapses into one run after the last quiet period.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Protocol, runtime_checkable


logger = logging.getLogger(__name__)

Task = Callable[[], None]


@runtime_checkable
class Scheduler(Protocol):
    """schedule(fn, delay), cancelable, rescheduled on every call."""

    def schedule(self, key: str, delay: float, fn: Task) -> None:
        ...

    def cancel(self, key: str) -> bool:
        ...

    def cancel_all(self) -> None:
        ...

    def fire(self, key: str) -> bool:
        """run a pending task now instead of waiting for its delay."""
        ...

    def pending(self, key: str) -> bool:
        ...


class AsyncioScheduler:
    """one sleeping asyncio task per key. needs a running event loop."""

    def __init__(self) -> None:
        self._tasks: dict[str, tuple[asyncio.Task, Task]] = {}

    def schedule(self, key: str, delay: float, fn: Task) -> None:
        self.cancel(key)
        task = asyncio.get_running_loop().create_task(self._run_after(key, delay, fn))
        self._tasks[key] = (task, fn)

    async def _run_after(self, key: str, delay: float, fn: Task) -> None:
        await asyncio.sleep(delay)
        entry = self._tasks.get(key)
        if entry and entry[0] is asyncio.current_task():
            del self._tasks[key]
        self._invoke(key, fn)

    @staticmethod
    def _invoke(key: str, fn: Task) -> None:
        try:
            fn()
        except Exception:
            logger.exception("scheduled task %s failed", key)

    def cancel(self, key: str) -> bool:
        entry = self._tasks.pop(key, None)
        if entry is None:
            return False
        entry[0].cancel()
        return True

    def cancel_all(self) -> None:
        for key in list(self._tasks):
            self.cancel(key)

    def fire(self, key: str) -> bool:
        entry = self._tasks.pop(key, None)
        if entry is None:
            return False
        task, fn = entry
        task.cancel()
        self._invoke(key, fn)
        return True

    def pending(self, key: str) -> bool:
        return key in self._tasks


class ManualScheduler:
    """scheduler on a virtual clock, advanced explicitly. for tests and scripts."""

    def __init__(self) -> None:
        self.now = 0.0
        self._seq = 0
        self._pending: dict[str, tuple[float, int, Task]] = {}

    def schedule(self, key: str, delay: float, fn: Task) -> None:
        self._seq += 1
        self._pending[key] = (self.now + delay, self._seq, fn)

    def cancel(self, key: str) -> bool:
        return self._pending.pop(key, None) is not None

    def cancel_all(self) -> None:
        self._pending.clear()

    def fire(self, key: str) -> bool:
        entry = self._pending.pop(key, None)
        if entry is None:
            return False
        entry[2]()
        return True

    def pending(self, key: str) -> bool:
        return key in self._pending

    def keys(self) -> list[str]:
        return list(self._pending)

    def advance(self, seconds: float) -> int:
        """move the clock forward, running every task that comes due. returns how many ran."""
        target = self.now + seconds
        ran = 0
        while True:
            due = [(when, seq, key) for key, (when, seq, _) in self._pending.items() if when <= target]
            if not due:
                break
            when, _, key = min(due)
            self.now = when
            _, _, fn = self._pending.pop(key)
            fn()
            ran += 1
        self.now = target
        return ran

    def run_pending(self) -> int:
        """run everything pending, however far in the future."""
        if not self._pending:
            return 0
        latest = max(when for when, _, _ in self._pending.values())
        return self.advance(max(0.0, latest - self.now))
