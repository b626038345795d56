import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class LocationTracker:
    """Cancellable periodic GPS tick owned by one shift lifecycle."""

    def __init__(
        self,
        tick: Callable[[], Awaitable[object]],
        interval_seconds: Callable[[], float],
        name: str = "location-tracker",
    ):
        self._tick = tick
        self._interval_seconds = interval_seconds
        self._name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self._name)
        logger.info(f"[TRACKER] Started {self._name}")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        if task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"[TRACKER] Stopped {self._name}")

    async def _run(self) -> None:
        while True:
            try:
                await self._tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # One bad tick must not end tracking for the rest of the shift
                logger.error(f"[TRACKER] Error in tick for {self._name}: {e}")
            await asyncio.sleep(self._interval_seconds())
