# market_dashboard/services/scheduler.py
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicJob:
    """Runs a coroutine factory every `interval` seconds in a background task.

    Runs never overlap: the next sleep starts after the previous run ends.
    A failing run is logged and the loop carries on.
    """

    def __init__(self, name: str, job: Callable[[], Awaitable], interval: float, run_immediately: bool = True):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.job = job
        self.interval = interval
        self.run_immediately = run_immediately
        self.runs = 0
        self.failures = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
        logger.info(f"Started periodic job '{self.name}' every {self.interval}s")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Stopped periodic job '{self.name}'")

    async def run_once(self):
        try:
            await self.job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            logger.error(f"Periodic job '{self.name}' failed: {e}", exc_info=True)
        finally:
            self.runs += 1

    async def _loop(self):
        if not self.run_immediately:
            await asyncio.sleep(self.interval)
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)
