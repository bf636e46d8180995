"""
Cancelable periodic tasks.

The session controller only depends on the Scheduler interface, so tests
can swap in a scheduler that fast-forwards virtual time.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from app.utils import get_logger


log = get_logger(__name__)

TickCallback = Callable[[], Awaitable[None]]


class ScheduledTask(ABC):
    """Handle for a periodic callback."""

    @abstractmethod
    def cancel(self) -> None:
        ...

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        ...


class Scheduler(ABC):
    @abstractmethod
    def every(self, interval_seconds: float, callback: TickCallback) -> ScheduledTask:
        """Run callback every interval_seconds until the task is cancelled."""


class AsyncioTask(ScheduledTask):
    def __init__(self, interval_seconds: float, callback: TickCallback):
        self.interval = interval_seconds
        self.callback = callback
        self._cancelled = False
        self._task: Optional[asyncio.Task] = asyncio.get_running_loop().create_task(self._run_loop())

    async def _run_loop(self) -> None:
        while not self._cancelled:
            try:
                await asyncio.sleep(self.interval)
                if self._cancelled:
                    break
                await self.callback()
            except asyncio.CancelledError:
                break
            except Exception as e:
                log.error(f"Scheduled task error: {e}")

    def cancel(self) -> None:
        self._cancelled = True
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # Cancelled from inside its own callback: the loop exits once the
        # callback returns.
        if self._task is not None and self._task is not current:
            self._task.cancel()
        self._task = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioScheduler(Scheduler):
    """Periodic tasks on the running event loop."""

    def every(self, interval_seconds: float, callback: TickCallback) -> ScheduledTask:
        return AsyncioTask(interval_seconds, callback)
