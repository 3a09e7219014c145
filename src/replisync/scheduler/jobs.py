"""
APScheduler jobs for the periodic sync cycle and change-log retention.

The sync job fires every `sync_interval_minutes` but only does work on a
slave; the mode is checked at run time so flipping it needs no restart.
max_instances=1 keeps two cycles from overlapping inside this process.
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from replisync.config import get_settings

logger = logging.getLogger(__name__)


def build_scheduler(service) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        service: SyncOrchestrator the jobs run against.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _scheduled_sync,
        trigger="interval",
        minutes=settings.sync_interval_minutes,
        id="sync_cycle",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={"service": service},
    )

    scheduler.add_job(
        _cleanup_sync_logs,
        trigger="cron",
        hour=settings.cleanup_hour,
        minute=0,
        id="cleanup_sync_logs",
        replace_existing=True,
        kwargs={"service": service},
    )

    return scheduler


async def _scheduled_sync(service) -> None:
    """Run one sync cycle if this instance is a slave. Never raises."""
    settings = get_settings()
    if settings.mode != "slave":
        logger.info("Scheduled sync skipped - not a slave instance")
        return

    try:
        result = await service.run_cycle()
        logger.info(
            "Scheduled sync completed: postponed=%s pull_success=%s push_success=%s",
            result.postponed,
            result.pull.success if result.pull else None,
            result.push.success if result.push else None,
        )
    except Exception as exc:
        logger.error("Scheduled sync failed: %s", exc)


async def _cleanup_sync_logs(service) -> None:
    """Daily retention sweep of completed change-log entries."""
    settings = get_settings()
    try:
        deleted = service.cleanup_old_logs(settings.retention_days)
        logger.info("Sync logs cleanup completed - deleted %d old logs", deleted)
    except Exception as exc:
        logger.error("Sync logs cleanup failed: %s", exc)
