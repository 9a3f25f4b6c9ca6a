"""
Periodic background worker

Runs run_once() on a fixed interval in a long-lived asyncio task.

- Single flight: scheduled runs and trigger_once() share one lock
- stop() lets an in-flight run finish before returning
- A failing run is logged as a SchedulerFault and the loop carries on
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from .models import SchedulerStatus, utc_now
from .protocols import SchedulerFault

logger = logging.getLogger(__name__)


class PeriodicWorker:
    """Base class for interval-driven background work"""

    name = "periodic_worker"

    def __init__(self, interval_seconds: float, clock: Callable[[], datetime] = utc_now):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_seconds = interval_seconds
        self.clock = clock
        self._run_lock = asyncio.Lock()
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._runs = 0
        self._faults = 0
        self._last_run_at: Optional[datetime] = None
        self._last_error: Optional[str] = None

    async def run_once(self) -> Any:
        raise NotImplementedError

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Start the background loop. Returns False if already running."""
        if self.is_running:
            logger.info(f"{self.name} already running")
            return False
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info(f"{self.name} started, interval={self.interval_seconds}s")
        return True

    async def stop(self) -> bool:
        """Stop the loop after any in-flight run completes. Returns False if not running."""
        if not self.is_running:
            return False
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info(f"{self.name} stopped")
        return True

    async def trigger_once(self) -> Any:
        """Run immediately, waiting for any scheduled run to finish first"""
        return await self._execute(raise_fault=True)

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            name=self.name,
            running=self.is_running,
            interval_seconds=self.interval_seconds,
            runs=self._runs,
            faults=self._faults,
            last_run_at=self._last_run_at,
            last_error=self._last_error,
        )

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            await self._execute(raise_fault=False)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def _execute(self, raise_fault: bool) -> Any:
        async with self._run_lock:
            self._last_run_at = self.clock()
            self._runs += 1
            try:
                result = await self.run_once()
                self._last_error = None
                return result
            except Exception as e:
                self._faults += 1
                self._last_error = str(e) or type(e).__name__
                fault = SchedulerFault(f"{self.name} run failed: {self._last_error}")
                logger.exception(str(fault))
                if raise_fault:
                    raise fault from e
                return None


__all__ = ["PeriodicWorker"]
