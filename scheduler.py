import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from jobs import BatchReport, BudgetJobs


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self, jobs: BudgetJobs) -> None:
        settings = get_settings()
        self.jobs = jobs
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)
        self.runners = {
            "daily": jobs.run_daily_budget_check,
            "weekly": jobs.run_weekly_insights,
            "monthly": jobs.run_monthly_summaries,
        }

    def run_job(self, name: str, source: str = "manual") -> Optional[BatchReport]:
        runner = self.runners.get(name)
        if runner is None:
            raise ValueError(f"Unknown job: {name}")
        logger.info(f"scheduler_run: job={name} source={source}")
        try:
            return runner()
        except Exception:
            logger.exception(f"scheduler_run: job={name} source={source} crashed")
            return None

    def start(self) -> None:
        trigger = CronTrigger(hour=9, minute=0)
        self.scheduler.add_job(
            self.run_job,
            trigger,
            args=["daily", "daily_09:00"],
            id="budget_check_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = CronTrigger(day_of_week="mon", hour=8, minute=0)
        self.scheduler.add_job(
            self.run_job,
            trigger,
            args=["weekly", "monday_08:00"],
            id="insights_weekly",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = CronTrigger(day=1, hour=8, minute=0)
        self.scheduler.add_job(
            self.run_job,
            trigger,
            args=["monthly", "first_08:00"],
            id="summary_monthly",
            replace_existing=True,
            misfire_grace_time=6 * 3600,
        )

        self.scheduler.start()
        logger.info(
            "Scheduler started with daily 09:00 budget check, Monday 08:00 insights "
            "and monthly summaries on the 1st"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
