"""Periodic eviction of idle persistent workers."""

import asyncio
import logging
from typing import Optional

from .persistent import PersistentSupervisor

logger = logging.getLogger(__name__)


class IdleReaper:
    """Background task that sweeps the persistent supervisor on a timer.

    Every ``interval`` seconds, workers unused for longer than
    ``idle_timeout`` are terminated and dropped from the registry.
    """

    def __init__(
        self,
        supervisor: PersistentSupervisor,
        interval: float = 30.0,
        idle_timeout: float = 60.0,
    ) -> None:
        self._supervisor = supervisor
        self.interval = interval
        self.idle_timeout = idle_timeout
        self._task: Optional[asyncio.Task] = None

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start sweeping. Calling twice is a no-op."""
        if self.is_running():
            return
        self._task = asyncio.create_task(self._run(), name="idle-reaper")
        logger.debug("Idle reaper started (every %gs, idle > %gs)", self.interval, self.idle_timeout)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def sweep(self) -> list[str]:
        """Run one eviction pass now."""
        return await self._supervisor.evict_idle(self.idle_timeout)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Idle sweep failed")
