"""
APScheduler jobs for background Stripe sync.

The queue job drains SyncQueueEntry rows every few minutes; failed entries
are picked up again on later runs until they run out of attempts. A nightly
full sync catches published packs that were never enqueued.

The scheduler runs in the `python -m uxkit` process; the API runs separately
under uvicorn.
"""
import logging
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from uxkit.config import get_settings

logger = logging.getLogger(__name__)


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine to pass to the sync engine.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _process_sync_queue,
        trigger="interval",
        minutes=settings.queue_interval_minutes,
        id="process_sync_queue",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
        kwargs={"engine": engine},
    )

    scheduler.add_job(
        _nightly_sync,
        trigger="cron",
        hour=settings.nightly_sync_hour,
        minute=0,
        id="nightly_sync",
        replace_existing=True,
        kwargs={"engine": engine},
    )

    return scheduler


async def _process_sync_queue(engine) -> None:
    """Release stale claims, then process one batch of the sync queue."""
    from uxkit.billing.factory import build_sync_engine

    settings = get_settings()
    try:
        sync_engine = build_sync_engine(engine, settings)
        sync_engine.requeue_stale(timedelta(minutes=settings.stale_claim_minutes))
        summary = await sync_engine.process_queue(limit=settings.queue_batch_size)
        if summary.total:
            logger.info(
                "Queue job: %d synced, %d failed of %d",
                summary.synced,
                summary.failed,
                summary.total,
            )
    except Exception as exc:
        logger.error("Queue job failed: %s", exc)


async def _nightly_sync(engine) -> None:
    """
    Nightly job: push every published pack that has no Stripe product yet.

    Idempotent: packs already synced are not selected.
    """
    from uxkit.billing.factory import build_sync_engine

    logger.info("Nightly Stripe sync starting")
    try:
        sync_engine = build_sync_engine(engine)
        summary = await sync_engine.sync_all_pending()
        logger.info("Nightly Stripe sync: %d/%d successful", summary.synced, summary.total)
    except Exception as exc:
        logger.error("Nightly sync failed: %s", exc)
