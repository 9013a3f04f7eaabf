"""
APScheduler jobs for sync housekeeping.

Nightly cleanup removes completed sessions and synced offline records past
the retention window, and fails any session left "started" by a worker that
died mid-sync so status polling never reports a sync that will not finish.

The scheduler runs in its own process (wired in __main__.py), separate from
the uvicorn API workers.
"""
import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from finance.config import get_settings

logger = logging.getLogger(__name__)


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine to pass to the cleanup job.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _nightly_cleanup,
        trigger="cron",
        hour=settings.sync_cleanup_hour,
        minute=0,
        id="nightly_sync_cleanup",
        replace_existing=True,
        kwargs={"engine": engine},
    )

    return scheduler


def run_cleanup(engine) -> dict:
    """Run one cleanup pass with the configured retention. Returns the counts."""
    from sqlmodel import Session

    from finance.models.settings import SyncPreferences
    from finance.sync.service import SyncService

    settings = get_settings()
    with Session(engine) as session:
        # Cleanup spans all users; preferences only matter for sync calls.
        preferences = SyncPreferences(
            strict_batch=settings.sync_strict_batch,
            initial_transaction_window_months=settings.initial_transaction_window_months,
        )
        service = SyncService(session, preferences)
        return service.cleanup(
            retention_days=settings.sync_retention_days,
            stale_minutes=settings.stale_session_minutes,
        )


async def _nightly_cleanup(engine) -> None:
    """
    Nightly job: prune old sync data.

    Idempotent: safe to run more than once a day.
    """
    logger.info("Nightly sync cleanup starting")
    try:
        counts = await asyncio.to_thread(run_cleanup, engine)
        logger.info("Nightly sync cleanup finished: %s", counts)
    except Exception as exc:
        logger.error("Nightly sync cleanup failed: %s", exc)
