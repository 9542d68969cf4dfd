from collections.abc import Awaitable, Callable
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from geopal.logger import logger

REFRESH_JOB_ID = "refresh-databases"


class RefreshScheduler:
    """Recurring cron trigger with a single registered callback.

    Must be created and started on the running event loop. Overlapping runs
    are skipped (`max_instances=1`) and missed runs are collapsed into one
    (`coalesce`).
    """

    def __init__(self, cron_schedule: str, callback: Callable[[], Awaitable[object]], timezone: str = "UTC") -> None:
        self.cron_schedule = cron_schedule
        self._trigger = CronTrigger.from_crontab(cron_schedule, timezone=timezone)
        self._scheduler = AsyncIOScheduler(timezone=timezone)
        self._scheduler.add_job(
            callback,
            trigger=self._trigger,
            id=REFRESH_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def next_run_time(self) -> datetime | None:
        job = self._scheduler.get_job(REFRESH_JOB_ID)
        return getattr(job, "next_run_time", None)

    def start(self) -> None:
        """Start firing the callback. Must be called with a running event loop."""
        self._scheduler.start()
        logger.info(f"Scheduling database updates cron={self.cron_schedule} next_run={self.next_run_time}")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Database update scheduler stopped")
