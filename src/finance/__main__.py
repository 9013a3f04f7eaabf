"""
Main entrypoint: runs the housekeeping scheduler.

FastAPI runs separately under uvicorn.

Usage:
    python -m finance cleanup       # one cleanup pass, then exit
    python -m finance               # starts the scheduler
    uvicorn finance.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import asyncio
import logging
import sys

from finance.config import get_settings

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _run_cleanup() -> None:
    from finance.db.engine import get_engine
    from finance.scheduler.jobs import run_cleanup

    counts = run_cleanup(get_engine())
    logger.info("Cleanup finished: %s", counts)


async def _run_scheduler() -> None:
    from finance.db.engine import get_engine
    from finance.scheduler.jobs import build_scheduler

    settings = get_settings()
    scheduler = build_scheduler(get_engine())
    scheduler.start()
    logger.info(
        "Scheduler started (nightly sync cleanup at %02d:00 UTC)",
        settings.sync_cleanup_hour,
    )

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        logger.info("Goodbye.")


if __name__ == "__main__":
    # Dispatch on first argument: `python -m finance cleanup` or just `python -m finance`
    if len(sys.argv) > 1 and sys.argv[1] == "cleanup":
        _run_cleanup()
    else:
        asyncio.run(_run_scheduler())
