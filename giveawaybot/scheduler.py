"""Cooperative timers for the tick loop and periodic checkpoints."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from .clock import Clock, SystemClock

log = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]


class TimerHandle:
    """Cancellation handle returned for every scheduled timer."""

    __slots__ = ("name", "_task", "_busy", "_stopping")

    def __init__(self, name: str) -> None:
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._busy = False
        self._stopping = False

    def cancel(self) -> None:
        """Cancel immediately, interrupting a running job."""
        self._stopping = True
        if self._task is not None:
            self._task.cancel()

    def stop(self) -> None:
        """Stop after the running job, if any, has finished."""
        self._stopping = True
        if not self._busy and self._task is not None:
            self._task.cancel()

    @property
    def stopping(self) -> bool:
        return self._stopping

    @property
    def cancelled(self) -> bool:
        return self._task is not None and self._task.cancelled()

    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def wait(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class TaskScheduler:
    """Runs one-shot and fixed-delay periodic jobs on the event loop.

    Job bodies share a bounded pool of worker slots. A periodic job awaits each
    run before sleeping again, so runs of the same job never overlap.
    """

    def __init__(self, clock: Optional[Clock] = None, *, max_workers: int = 4) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be greater than zero")
        self.clock = clock or SystemClock()
        self._slots = asyncio.Semaphore(max_workers)
        self._handles: Set[TimerHandle] = set()

    def call_later(self, delay: float, job: Job, *, name: str) -> TimerHandle:
        async def runner(handle: TimerHandle) -> None:
            await self.clock.sleep(delay)
            if not handle.stopping:
                await self._run(handle, job)

        return self._spawn(name, runner)

    def call_every(
        self,
        interval: float,
        job: Job,
        *,
        name: str,
        initial_delay: float = 0,
    ) -> TimerHandle:
        if interval <= 0:
            raise ValueError("interval must be greater than zero")

        async def runner(handle: TimerHandle) -> None:
            if initial_delay > 0:
                await self.clock.sleep(initial_delay)
            while not handle.stopping:
                await self._run(handle, job)
                if handle.stopping:
                    break
                await self.clock.sleep(interval)

        return self._spawn(name, runner)

    async def shutdown(self) -> None:
        """Stop every timer, letting jobs already running finish."""
        handles = list(self._handles)
        for handle in handles:
            handle.stop()
        for handle in handles:
            await handle.wait()
        self._handles.clear()

    @property
    def active(self) -> int:
        return sum(1 for handle in self._handles if not handle.done())

    def _spawn(
        self, name: str, runner: Callable[[TimerHandle], Awaitable[None]]
    ) -> TimerHandle:
        handle = TimerHandle(name)
        task = asyncio.create_task(runner(handle), name=f"timer:{name}")
        handle._task = task
        self._handles.add(handle)
        task.add_done_callback(lambda _: self._handles.discard(handle))
        return handle

    async def _run(self, handle: TimerHandle, job: Job) -> None:
        async with self._slots:
            handle._busy = True
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Scheduled job %s failed", handle.name)
            finally:
                handle._busy = False
