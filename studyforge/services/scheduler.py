import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from studyforge.jobs.stale_uploads import recover_stale_uploads

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

STALE_UPLOAD_INTERVAL_MINUTES = 10


def register_jobs():
    """Register the recurring maintenance jobs."""
    scheduler.add_job(
        recover_stale_uploads,
        IntervalTrigger(minutes=STALE_UPLOAD_INTERVAL_MINUTES),
        id="stale_upload_recovery",
        replace_existing=True,
    )


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        register_jobs()
        scheduler.start()
        logger.info("Background scheduler started")


def stop_scheduler():
    """Stop the background job scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped")
