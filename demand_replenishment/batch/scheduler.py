# demand_replenishment/batch/scheduler.py
import asyncio
import logging
from datetime import datetime, time
from typing import Any, Awaitable, Callable, Optional

from demand_replenishment.utils.date_utils import next_daily_fire_time, utcnow

logger = logging.getLogger(__name__)


class DailyScheduler:
    """Fires a coroutine once a day at a fixed UTC time of day.

    The next fire time is computed explicitly rather than polled, and a
    fire time that has already run is never run again, so the trigger cannot
    double-fire within the same minute.
    """

    def __init__(
        self,
        fire_at: time,
        callback: Callable[[datetime], Awaitable[Any]],
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
        name: str = 'daily-scheduler'
    ):
        """Initialize the scheduler.

        Args:
            fire_at: Time of day to fire
            callback: Coroutine function called with the scheduled fire time
            clock: Returns the current naive UTC datetime
            sleep: Awaitable sleep, injectable for tests
            name: Scheduler name used in logs
        """
        self.fire_at = fire_at
        self.callback = callback
        self.clock = clock
        self.sleep = sleep
        self.name = name
        self.last_fired: Optional[datetime] = None
        self._stopping = False
        self._task: Optional[asyncio.Task] = None

    def next_fire_time(self, now: Optional[datetime] = None) -> datetime:
        return next_daily_fire_time(now or self.clock(), self.fire_at)

    async def fire(self, scheduled_for: datetime) -> bool:
        """Run the callback for one fire time.

        Returns:
            False if that fire time already ran, True otherwise. Callback
            errors are logged and do not stop the scheduler.
        """
        slot = scheduled_for.replace(second=0, microsecond=0)
        if self.last_fired is not None and slot <= self.last_fired:
            logger.warning(f"{self.name}: {slot} already fired, skipping")
            return False

        self.last_fired = slot
        try:
            await self.callback(scheduled_for)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self.name}: scheduled run for {slot} failed: {str(e)}", exc_info=True)
        return True

    async def run_forever(self):
        self._stopping = False
        next_fire = self.next_fire_time()
        logger.info(f"{self.name}: next run at {next_fire}")

        while not self._stopping:
            delay = (next_fire - self.clock()).total_seconds()
            if delay > 0:
                await self.sleep(delay)
                continue

            await self.fire(next_fire)
            next_fire = self.next_fire_time(max(self.clock(), next_fire))
            logger.info(f"{self.name}: next run at {next_fire}")

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run_forever(), name=self.name)
        return self._task

    async def stop(self):
        self._stopping = True
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
