"""Progress Tracker — Scheduler Jobs.

APScheduler daily job that writes the Excel export at the configured hour.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from tracker.config import settings
from tracker.database import get_session
from tracker.connectors.excel.exporter import export_all_data
from tracker.core.logging import get_logger

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler(timezone="UTC")


async def daily_export_job():
    """Export all project data and prune old export files."""
    logger.info("Scheduled daily export starting...")
    session_gen = get_session()
    session = next(session_gen)
    try:
        path = export_all_data(session)
        if path is not None:
            logger.info(f"Scheduled export complete: {path.name}")
    except Exception as e:
        # Next run retries; the scheduler must stay alive
        logger.error(f"Scheduled export failed: {e}")
    finally:
        session_gen.close()


def start_scheduler():
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    scheduler.add_job(
        daily_export_job,
        "cron",
        hour=settings.export_hour,
        minute=0,
        id="daily_export",
        replace_existing=True,
        misfire_grace_time=3600,
    )
    scheduler.start()
    logger.info(f"Scheduler started. Daily export at {settings.export_hour}:00 UTC")


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
