"""
Periodic Task Base

Runs ``tick()`` on a fixed interval inside the application's event loop.
Used by the reconciliation sweeps and the storage watcher; the two are
scheduled independently and never synchronized with each other.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class PeriodicTask(ABC):
    """Fixed-interval background loop with explicit start/stop."""

    name = "periodic"

    def __init__(self, interval: float):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.ticks = 0
        self._task: Optional[asyncio.Task] = None

    @abstractmethod
    async def tick(self) -> None:
        """One unit of work."""
        pass

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info(f"✅ {self.name} started (every {self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"{self.name} stopped after {self.ticks} tick(s)")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception:  # noqa: BLE001
                logger.exception(f"{self.name} tick failed")
            self.ticks += 1
