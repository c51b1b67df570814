"""APScheduler setup for InvestorBase background tasks."""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from investorbase.config import get_settings

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


def register_jobs() -> None:
    """Register all scheduled jobs. Called once at startup."""
    from investorbase.tasks.stale_research import fail_stale_research_task

    settings = get_settings()

    scheduler.add_job(
        fail_stale_research_task,
        IntervalTrigger(minutes=settings.stale_research_sweep_minutes),
        id="fail_stale_research",
        replace_existing=True,
        misfire_grace_time=300,
    )


def start_scheduler() -> None:
    if scheduler.running:
        return
    register_jobs()
    scheduler.start()
    logger.info("Scheduler started with %d job(s)", len(scheduler.get_jobs()))


def stop_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
