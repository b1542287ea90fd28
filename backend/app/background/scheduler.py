"""
Background scheduler for lifecycle routines.

Uses APScheduler to run:
  - crash recovery, once, shortly after startup (only after an unclean shutdown)
  - the temporary-document expiry sweep, on an interval
  - the embedding backfill, on an interval
"""

import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.background.embedding_tasks import backfill_missing_embeddings
from app.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Vietnam timezone (UTC+7)
VN_TZ = timezone(timedelta(hours=7))

CRASH_RECOVERY_JOB = "crash_recovery_job"
EXPIRY_SWEEP_JOB = "temp_expiry_sweep_job"
EMBEDDING_BACKFILL_JOB = "embedding_backfill_job"


async def run_crash_recovery(services):
    """Callback for APScheduler crash-recovery job."""
    try:
        await services.lifecycle.recover_after_crash()
    except Exception as e:
        logger.error(f"❌ Crash recovery failed: {e}", exc_info=True)


async def run_expiry_sweep(services):
    """Callback for APScheduler expiry-sweep job."""
    try:
        await services.lifecycle.sweep_expired()
    except Exception as e:
        logger.error(f"❌ Temporary expiry sweep failed: {e}", exc_info=True)


async def run_embedding_backfill(services, batch_size: int):
    """Callback for APScheduler embedding-backfill job."""
    try:
        await backfill_missing_embeddings(services, batch_size)
    except Exception as e:
        logger.error(f"❌ Embedding backfill failed: {e}", exc_info=True)


def start_lifecycle(services, settings: Settings | None = None) -> AsyncIOScheduler:
    """Register lifecycle jobs and start the scheduler.

    Called during FastAPI lifespan startup. Crash recovery is only scheduled
    when the clean-shutdown marker of the previous run is missing.
    """
    settings = settings or get_settings()
    scheduler = AsyncIOScheduler(timezone=VN_TZ)
    now = datetime.now(VN_TZ)
    lifecycle = services.lifecycle

    if lifecycle.was_clean_shutdown():
        logger.info("🏁 Previous shutdown was clean, skipping crash recovery")
    else:
        logger.warning("⚠️ Previous shutdown was not clean, scheduling crash recovery")
        scheduler.add_job(
            func=run_crash_recovery,
            trigger=DateTrigger(
                run_date=now + timedelta(seconds=settings.CRASH_RECOVERY_DELAY_SECONDS),
                timezone=VN_TZ,
            ),
            args=[services],
            id=CRASH_RECOVERY_JOB,
            replace_existing=True,
        )
    lifecycle.mark_running()

    scheduler.add_job(
        func=run_expiry_sweep,
        trigger=IntervalTrigger(minutes=settings.CLEANUP_INTERVAL_MINUTES, timezone=VN_TZ),
        next_run_time=now + timedelta(seconds=settings.CLEANUP_INITIAL_DELAY_SECONDS),
        args=[services],
        id=EXPIRY_SWEEP_JOB,
        replace_existing=True,
    )
    scheduler.add_job(
        func=run_embedding_backfill,
        trigger=IntervalTrigger(minutes=settings.EMBEDDING_BACKFILL_INTERVAL_MINUTES, timezone=VN_TZ),
        args=[services, settings.EMBEDDING_BACKFILL_BATCH_SIZE],
        id=EMBEDDING_BACKFILL_JOB,
        replace_existing=True,
    )

    scheduler.start()
    services.scheduler = scheduler

    jobs = scheduler.get_jobs()
    logger.info(f"📅 Scheduler started with {len(jobs)} job(s):")
    for job in jobs:
        logger.info(f"   - {job.id}: next run at {job.next_run_time}")
    return scheduler


def shutdown_lifecycle(services):
    """Gracefully shutdown the scheduler and mark the shutdown as clean."""
    scheduler = services.scheduler
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("📅 Scheduler shut down.")
    services.scheduler = None
    services.lifecycle.mark_clean_shutdown()
