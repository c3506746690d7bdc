"""
In-process concurrency and rate guards for per-case work.

Both structures are process-local and reset on restart. Running more than
one monitor instance needs them moved to a shared key-value store with TTL.
"""

import asyncio
import time
from typing import Callable, Dict, List, Optional


class SlidingWindowRateLimiter:
    """
    Per-key sliding window: at most ``limit`` events in the trailing
    ``window_seconds``.

    ``is_limited`` only checks; callers ``record`` an event once it has
    actually been accepted.
    """

    def __init__(
        self,
        limit: int = 5,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._events: Dict[str, List[float]] = {}

    def is_limited(self, key: str) -> bool:
        cutoff = self._clock() - self.window_seconds
        recent = [ts for ts in self._events.get(key, []) if ts > cutoff]
        return len(recent) >= self.limit

    def record(self, key: str) -> None:
        self._events.setdefault(key, []).append(self._clock())

    def cleanup(self, max_age_seconds: float = 3600.0) -> int:
        """
        Drop timestamps older than max_age_seconds and forget keys left empty.

        Returns the number of keys removed.
        """
        cutoff = self._clock() - max_age_seconds
        removed = 0
        for key in list(self._events):
            kept = [ts for ts in self._events[key] if ts > cutoff]
            if kept:
                self._events[key] = kept
            else:
                del self._events[key]
                removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._events)


class InFlightTracker:
    """
    At most one running task per key.

    ``start`` registers the task synchronously, so a second call for the same
    key made before the first task finishes is refused. The entry is removed
    by the task's own done-callback.
    """

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def start(self, key: str, coro) -> Optional[asyncio.Task]:
        if key in self._tasks:
            coro.close()
            return None
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._release(k, t))
        return task

    def _release(self, key: str, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    def tasks(self) -> List[asyncio.Task]:
        return list(self._tasks.values())

    async def drain(self) -> None:
        """Wait for every running task to finish."""
        pending = self.tasks()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
