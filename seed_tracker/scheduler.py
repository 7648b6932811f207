from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from .state import localnow

logger = logging.getLogger(__name__)

PURGE_HOUR = 0
PURGE_MINUTE = 5


def seconds_until(now: datetime, hour: int, minute: int) -> float:
    """Seconds from `now` to the next wall-clock `hour:minute`."""
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class Scheduler:
    """
    Drives the tracker: a tick now and every `interval_minutes` after, plus a
    retention purge at 00:05 local time every day.

    The tick loop awaits each tick before sleeping, so ticks never overlap.
    Exceptions from a tick or purge are logged and the loop carries on.
    `now` and `sleep` are injectable so tests can drive time by hand.
    """

    def __init__(
        self,
        tick: Callable[[], Awaitable[object]],
        purge: Callable[[], Awaitable[object]],
        interval_minutes: int,
        *,
        now: Callable[[], datetime] = localnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.tick = tick
        self.purge = purge
        self.interval_minutes = interval_minutes
        self.now = now
        self.sleep = sleep
        self.tick_task: Optional[asyncio.Task] = None
        self.purge_task: Optional[asyncio.Task] = None
        self.purge_scheduled = False

    @property
    def running(self) -> bool:
        return self.tick_task is not None and not self.tick_task.done()

    def start(self, interval_minutes: Optional[int] = None) -> None:
        """Start (or restart) ticking. Must be called from a running event loop."""
        if interval_minutes is not None:
            self.interval_minutes = interval_minutes
        if self.tick_task is not None:
            self.tick_task.cancel()
        self.tick_task = asyncio.get_running_loop().create_task(self._tick_loop())
        self.schedule_daily_purge()
        logger.debug("Tracking started: every %s minutes", self.interval_minutes)

    def schedule_daily_purge(self) -> None:
        if self.purge_scheduled:
            return
        self.purge_scheduled = True
        self.purge_task = asyncio.get_running_loop().create_task(self._purge_loop())

    def stop(self) -> None:
        if self.tick_task is not None:
            self.tick_task.cancel()
            self.tick_task = None
        if self.purge_task is not None:
            self.purge_task.cancel()
            self.purge_task = None
        # The armed purge is gone with its task; a later start() may arm it again.
        self.purge_scheduled = False

    async def _tick_loop(self) -> None:
        while True:
            await self._run_guarded("tick", self.tick)
            await self.sleep(self.interval_minutes * 60)

    async def _purge_loop(self) -> None:
        delay = seconds_until(self.now(), PURGE_HOUR, PURGE_MINUTE)
        logger.debug("Daily purge armed in %.0f seconds", delay)
        while True:
            await self.sleep(delay)
            await self._run_guarded("purge", self.purge)
            # Re-read the wall clock each day so a DST change moves the next run with it.
            # Measured from a minute ahead so a slightly early wake-up cannot fire twice.
            delay = seconds_until(self.now() + timedelta(minutes=1), PURGE_HOUR, PURGE_MINUTE) + 60

    async def _run_guarded(self, name: str, job: Callable[[], Awaitable[object]]) -> None:
        try:
            await job()
        except Exception:
            logger.exception("Scheduled %s failed", name)
