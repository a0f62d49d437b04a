"""
Background timers owned by the engine.

Each timer is a handle: ``start()`` spawns its task on the running loop and
``stop()`` cancels it. The liveness flag is checked after every sleep, so a
firing that races with ``stop()`` does nothing.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from datetime import date

from clubtab.business_hours import is_reset_time, time_until_next_reset, today
from clubtab.clock import Clock

logger = logging.getLogger(__name__)


class _Timer:
    name = "timer"

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._alive = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._alive and self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._alive = True
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        logger.debug("%s started", self.name)

    async def stop(self) -> None:
        self._alive = False
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug("%s stopped", self.name)

    async def _run(self) -> None:
        raise NotImplementedError


class PollTimer(_Timer):
    """Calls ``callback`` every ``interval`` seconds."""

    name = "poll-timer"

    def __init__(self, callback: Callable[[], Awaitable[object]], interval: float, clock: Clock) -> None:
        super().__init__(clock)
        self._callback = callback
        self.interval = interval

    async def _run(self) -> None:
        while True:
            await self._clock.sleep(self.interval)
            if not self._alive:
                return
            try:
                await self._callback()
            except Exception:
                logger.exception("Polling sync failed")


class ResetTimer(_Timer):
    """
    Fires ``callback`` at the daily reset instant.

    The delay is recomputed from the clock after each firing. The 17:05
    fallback only fires when the 17:00 reset did not run that day.
    """

    name = "reset-timer"

    def __init__(self, callback: Callable[[], Awaitable[object]], clock: Clock) -> None:
        super().__init__(clock)
        self._callback = callback
        self._last_reset_day: date | None = None

    async def _run(self) -> None:
        while True:
            delay = time_until_next_reset(self._clock.now())
            logger.info("Next reset in %d minutes", delay.total_seconds() // 60)
            await self._clock.sleep(delay.total_seconds())
            if not self._alive:
                return
            now = self._clock.now()
            if not is_reset_time(now) or self._last_reset_day == now.date():
                continue
            self._last_reset_day = now.date()
            logger.info("Resetting order state at %s", now.strftime("%H:%M"))
            try:
                await self._callback()
            except Exception:
                logger.exception("Daily reset failed")


class BusinessDateWatcher(_Timer):
    """Checks the business day every ``interval`` seconds and reports changes."""

    name = "business-date-watcher"

    def __init__(self, callback: Callable[[str], Awaitable[object]], interval: float, clock: Clock) -> None:
        super().__init__(clock)
        self._callback = callback
        self.interval = interval
        self.current = today(clock)

    async def _run(self) -> None:
        while True:
            await self._clock.sleep(self.interval)
            if not self._alive:
                return
            business_date = today(self._clock)
            if business_date == self.current:
                continue
            logger.info("Business date changed: %s -> %s", self.current, business_date)
            self.current = business_date
            try:
                await self._callback(business_date)
            except Exception:
                logger.exception("Business date change handler failed")
