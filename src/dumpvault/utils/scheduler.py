"""Automated backup scheduler: one backup per day at a fixed local time"""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from ..core.models import BackupResult, Cadence

if TYPE_CHECKING:
    from ..core.backup_engine import BackupExecutor


def next_run_time(now: datetime, hour: int = 2, minute: int = 0) -> datetime:
    """Next trigger strictly after ``now``; tomorrow if today's has already passed"""
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return target


def classify_cadence(day: date) -> Cadence:
    """1st of the month is monthly, Sunday is weekly, every other day is daily"""
    if day.day == 1:
        return Cadence.MONTHLY
    if day.weekday() == 6:
        return Cadence.WEEKLY
    return Cadence.DAILY


class BackupScheduler:
    """Self-rescheduling daily backup loop"""

    def __init__(
        self,
        executor: "BackupExecutor",
        hour: int = 2,
        minute: int = 0,
        enabled: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.executor = executor
        self.hour = hour
        self.minute = minute
        self.enabled = enabled
        self.clock = clock
        self.logger = logging.getLogger("BackupScheduler")
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_delay(self) -> float:
        """Seconds until the next trigger"""
        now = self.clock()
        return (next_run_time(now, self.hour, self.minute) - now).total_seconds()

    def start(self) -> asyncio.Task | None:
        """Start the loop on the running event loop (production only)"""
        if not self.enabled:
            self.logger.info("Automatic backup scheduling disabled (not in production)")
            return None
        if self.running:
            return self._task

        self._task = asyncio.create_task(self._loop(), name="backup-scheduler")
        self.logger.info("Automatic backup scheduling enabled")
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def run_once(self) -> BackupResult | None:
        """Fire one scheduled backup; logs the outcome and never raises"""
        cadence = classify_cadence(self.clock().date())
        self.logger.info(f"Starting automatic {cadence.value} backup...")

        try:
            result = await self.executor.create(cadence)
        except Exception as e:
            self.logger.error(f"Automatic {cadence.value} backup crashed: {e}", exc_info=True)
            return None

        if result.success:
            self.logger.info(f"Automatic {cadence.value} backup completed successfully")
        else:
            self.logger.error(f"Automatic {cadence.value} backup failed: {result.error}")
        return result

    async def _loop(self) -> None:
        while True:
            delay = self.next_delay()
            self.logger.info(f"Next automatic backup scheduled in {delay / 3600:.1f} hours")
            await asyncio.sleep(delay)
            await self.run_once()
