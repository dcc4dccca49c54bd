"""
Check scheduler for Repo Monitor.

Three asyncio tasks share one RepoMonitor:
- startup:  one check after a short delay (lets the chat side settle)
- periodic: a check every N minutes, aligned to the wall clock like cron */N
- daily:    a forced full refresh at HH:MM UTC

Overlap between triggers is handled by the monitor's single-flight guard:
a trigger that fires during a running check is skipped.

Usage:
    scheduler = MonitorScheduler(monitor, interval_minutes=30)
    scheduler.start()
    ...
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, time, timedelta, timezone
from typing import List, Optional

from workflows.repo_monitor import CheckResult, RepoMonitor

logger = logging.getLogger(__name__)


def parse_time_of_day(value: str) -> time:
    """Parse "HH:MM" into a UTC time."""
    try:
        hours, minutes = value.strip().split(":", 1)
        return time(hour=int(hours), minute=int(minutes), tzinfo=timezone.utc)
    except ValueError as e:
        raise ValueError(f"Invalid time of day {value!r}, expected HH:MM") from e


def seconds_until_next_interval(now: datetime, interval_minutes: int) -> float:
    """
    Seconds until the next minute that is a multiple of `interval_minutes`
    within the hour (cron "*/N * * * *").
    """
    if interval_minutes <= 0:
        raise ValueError("interval_minutes must be positive")

    base = now.replace(second=0, microsecond=0)
    candidate = base + timedelta(minutes=1)
    while candidate.minute % interval_minutes != 0:
        candidate += timedelta(minutes=1)
    return (candidate - now).total_seconds()


def seconds_until_daily(now: datetime, at: time) -> float:
    """Seconds until the next occurrence of `at` (strictly after now)."""
    now_utc = now.astimezone(timezone.utc)
    target = now_utc.replace(hour=at.hour, minute=at.minute, second=0, microsecond=0)
    if target <= now_utc:
        target += timedelta(days=1)
    return (target - now_utc).total_seconds()


class MonitorScheduler:
    """Fires RepoMonitor checks on startup, on an interval and once a day."""

    def __init__(
        self,
        monitor: RepoMonitor,
        interval_minutes: int = 30,
        startup_delay_seconds: float = 5.0,
        daily_refresh_time: Optional[str] = "03:00",
    ):
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")

        self.monitor = monitor
        self.interval_minutes = interval_minutes
        self.startup_delay_seconds = startup_delay_seconds
        self.daily_refresh_time = parse_time_of_day(daily_refresh_time) if daily_refresh_time else None
        self._tasks: List[asyncio.Task] = []

    @classmethod
    def from_config(cls, monitor: RepoMonitor) -> MonitorScheduler:
        config = monitor.config
        return cls(
            monitor,
            interval_minutes=config.check_interval_minutes,
            startup_delay_seconds=config.startup_delay_seconds,
            daily_refresh_time=config.daily_refresh_time or None,
        )

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.is_running:
            logger.warning("Scheduler already running")
            return

        logger.info(
            f"Starting scheduler (startup delay: {self.startup_delay_seconds}s, "
            f"interval: {self.interval_minutes} min, daily refresh: "
            f"{self.daily_refresh_time.strftime('%H:%M') + ' UTC' if self.daily_refresh_time else 'disabled'})"
        )
        self._tasks = [
            asyncio.create_task(self._run_startup(), name="repo-monitor-startup"),
            asyncio.create_task(self._run_periodic(), name="repo-monitor-periodic"),
        ]
        if self.daily_refresh_time:
            self._tasks.append(
                asyncio.create_task(self._run_daily(), name="repo-monitor-daily")
            )

    async def stop(self) -> None:
        """Cancel all triggers. An in-flight check is abandoned."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Scheduler stopped")

    async def _fire(self, force_full_refresh: bool) -> Optional[CheckResult]:
        try:
            result = await self.monitor.run_check(force_full_refresh=force_full_refresh)
        except Exception as e:
            logger.exception(f"Error in scheduled repository check: {e}")
            return None
        logger.info(f"Scheduled check finished: {result.status.value}")
        return result

    async def _run_startup(self) -> None:
        await asyncio.sleep(self.startup_delay_seconds)
        await self._fire(force_full_refresh=False)

    async def _run_periodic(self) -> None:
        while True:
            wait = seconds_until_next_interval(datetime.now(timezone.utc), self.interval_minutes)
            logger.debug(f"Next periodic check in {wait:.0f} seconds")
            await asyncio.sleep(wait)
            await self._fire(force_full_refresh=False)

    async def _run_daily(self) -> None:
        while True:
            wait = seconds_until_daily(datetime.now(timezone.utc), self.daily_refresh_time)
            logger.debug(f"Next full refresh in {wait:.0f} seconds")
            await asyncio.sleep(wait)
            await self._fire(force_full_refresh=True)
