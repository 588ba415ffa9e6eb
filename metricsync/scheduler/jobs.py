"""Metricsync: Scheduler Jobs.

APScheduler daily job that syncs metrics for every connected ad account.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from metricsync.api.deps import get_pipeline
from metricsync.config import settings
from metricsync.sync.batch import sync_all_users
from metricsync.core.logging import get_logger

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()


async def daily_metrics_sync_job():
    """Run the batch metrics sync for all users."""
    logger.info("Scheduled metrics sync starting...")
    try:
        pipeline = get_pipeline()
        summary = await sync_all_users(pipeline.repository, pipeline.orchestrator)
        logger.info(
            f"Scheduled sync complete. Accounts synced: "
            f"{summary.total_ad_accounts_synced}, failed: "
            f"{summary.total_ad_accounts_failed}"
        )
    except Exception as e:
        logger.error(f"Scheduled metrics sync failed: {e}")


def start_scheduler():
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    scheduler.add_job(
        daily_metrics_sync_job,
        "cron",
        hour=settings.sync_hour,
        minute=0,
        id="daily_metrics_sync",
        replace_existing=True,
        misfire_grace_time=3600,
    )
    scheduler.start()
    logger.info(f"Scheduler started. Daily metrics sync at {settings.sync_hour}:00 UTC")


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
