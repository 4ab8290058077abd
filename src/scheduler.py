"""
scheduler.py

Background scheduling of the weekly progress rollover.

The rollover runs on a cron trigger (default: Mondays 01:00 UTC) inside an
APScheduler BackgroundScheduler that lives in the API process.  A failed
run is logged and the scheduler keeps going; the next run picks up whatever
is left because the rollover is idempotent per project.

Usage:
    scheduler = RolloverScheduler(database, settings)
    scheduler.start()
    ...
    scheduler.shutdown()
"""

import logging
from typing import Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from application import RolloverResultDTO, WeeklyRolloverUseCase
from config import Settings

logger = logging.getLogger(__name__)

ROLLOVER_JOB_ID = "weekly_rollover"


class RolloverScheduler:
    """Runs WeeklyRolloverUseCase on a weekly cron trigger."""

    def __init__(self, database, settings: Settings):
        self.database = database
        self.settings = settings
        self.scheduler = BackgroundScheduler(timezone="UTC")

    def build_trigger(self) -> CronTrigger:
        return CronTrigger(
            day_of_week=self.settings.rollover_day_of_week,
            hour=self.settings.rollover_hour,
            minute=self.settings.rollover_minute,
            timezone="UTC",
        )

    def start(self) -> None:
        self.scheduler.add_job(
            func=self.run_once,
            trigger=self.build_trigger(),
            id=ROLLOVER_JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self.scheduler.start()
        logger.info(
            "Weekly rollover scheduled (%s %02d:%02d UTC)",
            self.settings.rollover_day_of_week,
            self.settings.rollover_hour,
            self.settings.rollover_minute,
        )

    def run_once(self) -> Optional[RolloverResultDTO]:
        """Run the rollover now. Failures are logged, never raised."""
        logger.info("Running weekly rollover job")
        try:
            return WeeklyRolloverUseCase().execute(self.database.unit_of_work())
        except Exception:
            logger.exception("Weekly rollover failed")
            return None

    def get_active_jobs(self) -> List[Dict]:
        return [
            {
                "id": job.id,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger),
            }
            for job in self.scheduler.get_jobs()
        ]

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler shut down")
