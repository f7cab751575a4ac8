"""Recurring background tasks (auto-sync, auto-fetch)."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from .events import AutoTaskFailed, AutoTaskStarted, AutoTaskStopped, EventBus

logger = structlog.get_logger()


class RecurringTask:
    """Runs an async callback every ``interval`` seconds.

    The next tick is scheduled only once the previous one has finished, so
    ticks never overlap. ``run_once`` lets callers trigger a tick by hand and
    is skipped while a tick is in flight. ``stop`` only prevents future ticks;
    ``drain`` waits for the one in flight, if any.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[Any]],
        events: EventBus | None = None,
    ):
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")
        self.name = name
        self.interval = interval
        self._callback = callback
        self._events = events
        self._task: asyncio.Task | None = None
        self._stopping: list[asyncio.Task] = []
        self._stop_event: asyncio.Event | None = None
        self._busy = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def busy(self) -> bool:
        return self._busy

    def start(self) -> None:
        """Schedule the loop on the running event loop. No-op if already running.

        A loop that was stopped but has not exited yet does not count as
        running; a fresh loop is started and the old one is left to wind down.
        """
        if self.running and not self._stop_event.is_set():
            return
        if self.running:
            self._stopping.append(self._task)

        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._loop(self._stop_event),
            name=f"recurring:{self.name}",
        )

        logger.info("Started recurring task", task=self.name, interval=self.interval)
        if self._events:
            self._events.emit(AutoTaskStarted(task=self.name, interval=self.interval))

    def stop(self) -> None:
        """Prevent future ticks. A tick already running is left to finish."""
        if self._stop_event is None or self._stop_event.is_set():
            return

        self._stop_event.set()

        logger.info("Stopped recurring task", task=self.name)
        if self._events:
            self._events.emit(AutoTaskStopped(task=self.name))

    async def drain(self) -> None:
        """Wait until the loop has exited, including any in-flight tick."""
        tasks = [*self._stopping, *([self._task] if self._task else [])]
        if not tasks:
            return
        await asyncio.gather(*tasks, return_exceptions=True)
        self._stopping = []
        self._task = None

    async def run_once(self) -> bool:
        """Run a tick now. Returns False (and does nothing) if one is in flight."""
        if self._busy:
            logger.debug("Skipping tick, previous still running", task=self.name)
            return False

        self._busy = True
        try:
            await self._callback()
        except Exception as e:
            logger.exception("Recurring task failed", task=self.name)
            if self._events:
                self._events.emit(AutoTaskFailed(task=self.name, error=str(e)))
        finally:
            self._busy = False

        return True

    async def _loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                await self.run_once()
