import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger("custody.scheduler")


class PollingLoop:
    """A named periodic task whose ticks never overlap.

    ``run_tick`` returns immediately if the previous tick of the same loop is
    still running; errors are logged and do not stop later ticks.
    """

    def __init__(self, name: str, tick: Callable[[], Awaitable], interval_sec: float, start_delay_sec: float = 0):
        self.name = name
        self.tick = tick
        self.interval_sec = interval_sec
        self.start_delay_sec = start_delay_sec
        self.running = False
        self.ticks = 0
        self.skipped = 0
        self.failures = 0
        self.last_started_at: Optional[datetime] = None
        self.last_finished_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.last_result = None

    async def run_tick(self):
        if self.running:
            self.skipped += 1
            logger.warning("%s: previous tick still running, skipping", self.name)
            return None
        self.running = True
        self.last_started_at = datetime.now(timezone.utc)
        try:
            self.last_result = await self.tick()
            self.last_error = None
            return self.last_result
        except Exception as e:
            self.failures += 1
            self.last_error = f"{e.__class__.__name__}: {e}"
            logger.exception("%s: tick failed", self.name)
            return None
        finally:
            self.ticks += 1
            self.last_finished_at = datetime.now(timezone.utc)
            self.running = False

    def snapshot(self) -> dict:
        return {
            "interval_sec": self.interval_sec,
            "running": self.running,
            "ticks": self.ticks,
            "skipped": self.skipped,
            "failures": self.failures,
            "last_started_at": self.last_started_at.isoformat() if self.last_started_at else None,
            "last_finished_at": self.last_finished_at.isoformat() if self.last_finished_at else None,
            "last_error": self.last_error,
        }


def schedule(scheduler: AsyncIOScheduler, loop: PollingLoop) -> None:
    """Register a loop as an interval job that can have one instance at a time."""
    scheduler.add_job(
        loop.run_tick,
        "interval",
        seconds=loop.interval_sec,
        id=loop.name,
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(timezone.utc) + timedelta(seconds=loop.start_delay_sec),
    )
