from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional
import time
import structlog

logger = structlog.get_logger()

REPORT_JOB_ID = "daily_cost_hygiene_report"


class ReportScheduler:
    """Runs the cost hygiene report on a daily UTC cron."""

    def __init__(self, settings, job: Callable[[], Awaitable[Any]]):
        self.scheduler = AsyncIOScheduler()
        self.settings = settings
        self.job = job
        self._last_run_success: Optional[bool] = None
        self._last_run_time: Optional[str] = None

    async def report_job(self) -> None:
        """A failed run is logged; the scheduler keeps running."""
        start_time = time.perf_counter()
        logger.info("scheduler_report_job_starting")
        try:
            await self.job()
            self._last_run_success = True
            logger.info("scheduler_report_job_complete", duration_seconds=round(time.perf_counter() - start_time, 2))
        except Exception as e:
            self._last_run_success = False
            logger.error("scheduler_report_job_failed", error=str(e), error_type=type(e).__name__)
        finally:
            self._last_run_time = datetime.now(timezone.utc).isoformat()

    def start(self) -> None:
        """Defines the cron schedule and starts APScheduler (needs a running event loop)."""
        self.scheduler.add_job(
            self.report_job,
            trigger=CronTrigger(
                hour=self.settings.SCHEDULER_HOUR,
                minute=self.settings.SCHEDULER_MINUTE,
                timezone="UTC",
            ),
            id=REPORT_JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self.scheduler.start()
        logger.info(
            "scheduler_started",
            hour=self.settings.SCHEDULER_HOUR,
            minute=self.settings.SCHEDULER_MINUTE,
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def get_status(self) -> dict:
        job = self.scheduler.get_job(REPORT_JOB_ID)
        next_run = getattr(job, "next_run_time", None) if job else None
        return {
            "running": self.scheduler.running,
            "last_run_success": self._last_run_success,
            "last_run_time": self._last_run_time,
            "next_run_time": next_run.isoformat() if next_run else None,
        }
