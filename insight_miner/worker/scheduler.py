"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from insight_miner.config import Settings, settings
from insight_miner.worker.tasks import TaskRunner, task_runner

logger = logging.getLogger(__name__)


def setup_scheduler(runner: TaskRunner = task_runner, config: Settings = settings) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Scheduling overview:
    - Learning cycle (mining, marketplace learning, revalidation) weekly
    - Niche aggregation every few hours
    - Fusion scan weekly, after aggregation has had time to refresh

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        runner.learning_cycle,
        CronTrigger(day_of_week=config.learning_cycle_day_of_week, hour=config.learning_cycle_hour, minute=0),
        id="learning_cycle",
        name="Mine observations and learn marketplace patterns",
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
        misfire_grace_time=600,
        replace_existing=True,
    )

    scheduler.add_job(
        runner.niche_analysis,
        IntervalTrigger(hours=max(1, config.niche_analysis_interval_hours)),
        id="niche_analysis",
        name="Aggregate marketplace listings per niche",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.add_job(
        runner.fusion_scan,
        CronTrigger(day_of_week=config.fusion_scan_day_of_week, hour=config.fusion_scan_hour, minute=0),
        id="fusion_scan",
        name="Scan niche pairs for fusion opportunities",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    logger.info(
        "Scheduler configured: learning cycle %s at %02d:00, niche analysis every %d hours, "
        "fusion scan %s at %02d:00",
        config.learning_cycle_day_of_week,
        config.learning_cycle_hour,
        config.niche_analysis_interval_hours,
        config.fusion_scan_day_of_week,
        config.fusion_scan_hour,
    )
    return scheduler
