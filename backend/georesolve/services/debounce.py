from __future__ import annotations

import asyncio
import itertools
from typing import Awaitable, Callable, Hashable

from georesolve.core.logging import get_logger


_logger = get_logger(__name__)

DebouncedCallable = Callable[[int], Awaitable[None]]


class DebounceScheduler:
    """
    Coalesce bursts of input into one request per key.

    Every call to :meth:`schedule` issues a new, strictly increasing token and
    restarts the quiet period for its key. When the period elapses the
    callable runs once with its token; callers check :meth:`is_latest` before
    applying a result so that responses to superseded requests are dropped.
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._latest: dict[Hashable, int] = {}
        self._pending: dict[Hashable, asyncio.Task[None]] = {}
        self._running: dict[Hashable, set[asyncio.Task[None]]] = {}

    def issue(self, key: Hashable) -> int:
        """Issue a token for an immediate, non-debounced request."""

        token = next(self._counter)
        self._latest[key] = token
        return token

    def schedule(self, key: Hashable, delay: float, fn: DebouncedCallable) -> int:
        self._cancel_pending(key)
        token = self.issue(key)
        task = asyncio.get_running_loop().create_task(
            self._run_after(key, token, delay, fn)
        )
        self._pending[key] = task
        task.add_done_callback(lambda done: self._forget(key, done))
        _logger.debug("Lookup scheduled", key=key, token=token, delay=delay)
        return token

    def is_latest(self, key: Hashable, token: int) -> bool:
        return self._latest.get(key) == token

    def cancel(self, key: Hashable) -> None:
        """Drop the pending call and invalidate requests already in flight."""

        self._cancel_pending(key)
        self.issue(key)

    def cancel_all(self) -> None:
        for key in list(self._latest):
            self.cancel(key)

    def pending(self, key: Hashable) -> asyncio.Task[None] | None:
        return self._pending.get(key)

    async def wait(self, key: Hashable) -> None:
        """Wait until no call is pending or running for ``key``."""

        while tasks := self._tasks_for(key):
            await asyncio.gather(*tasks, return_exceptions=True)

    def _tasks_for(self, key: Hashable) -> list[asyncio.Task[None]]:
        tasks = list(self._running.get(key, ()))
        pending = self._pending.get(key)
        if pending is not None:
            tasks.append(pending)
        return tasks

    async def _run_after(
        self, key: Hashable, token: int, delay: float, fn: DebouncedCallable
    ) -> None:
        await asyncio.sleep(delay)
        task = asyncio.current_task()
        if self._pending.get(key) is task:
            del self._pending[key]
        # Once fired the call is no longer cancellable by new input; its
        # result is filtered by token instead.
        self._running.setdefault(key, set()).add(task)
        if not self.is_latest(key, token):
            return
        await fn(token)

    def _cancel_pending(self, key: Hashable) -> None:
        task = self._pending.pop(key, None)
        if task is not None and not task.done():
            task.cancel()

    def _forget(self, key: Hashable, task: asyncio.Task[None]) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        running = self._running.get(key)
        if running is not None:
            running.discard(task)
            if not running:
                del self._running[key]
        if not task.cancelled() and task.exception() is not None:
            _logger.error(
                "Debounced call failed",
                key=key,
                error=str(task.exception()),
            )
