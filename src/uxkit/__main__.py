"""
Main entrypoint: runs the sync scheduler, or a one-off sync command.

FastAPI runs separately under uvicorn.

Usage:
    python -m uxkit                     # starts the scheduler
    python -m uxkit sync-all            # sync every published, unsynced pack
    python -m uxkit process-queue [N]   # process up to N queue entries
    python -m uxkit status              # print sync counts
    uvicorn uxkit.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import asyncio
import json
import logging
import sys
from dataclasses import asdict

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _sync_engine():
    from uxkit.billing.factory import StripeNotConfiguredError, build_sync_engine
    from uxkit.db.engine import get_engine

    try:
        return build_sync_engine(get_engine())
    except StripeNotConfiguredError as exc:
        logger.error("%s. Set it in the environment or .env.", exc)
        sys.exit(1)


def _print(result) -> None:
    print(json.dumps(asdict(result), indent=2, default=str))


async def _run_command(command: str, args) -> int:
    sync_engine = _sync_engine()

    if command == "sync-all":
        summary = await sync_engine.sync_all_pending()
        _print(summary)
        return 0 if summary.success else 1

    if command == "process-queue":
        from uxkit.config import get_settings

        limit = int(args[0]) if args else get_settings().queue_batch_size
        summary = await sync_engine.process_queue(limit=limit)
        _print(summary)
        return 0 if summary.success else 1

    if command == "status":
        _print(sync_engine.get_sync_status())
        return 0

    logger.error("Unknown command: %s", command)
    return 2


async def _run_scheduler() -> None:
    from uxkit.config import get_settings
    from uxkit.db.engine import get_engine
    from uxkit.scheduler.jobs import build_scheduler

    settings = get_settings()
    if not settings.stripe_secret_key:
        logger.error("STRIPE_SECRET_KEY not configured.")
        sys.exit(1)

    scheduler = build_scheduler(get_engine())
    scheduler.start()
    logger.info(
        "Scheduler started (queue every %d min, nightly sync at %02d:00 UTC)",
        settings.queue_interval_minutes,
        settings.nightly_sync_hour,
    )

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        logger.info("Goodbye.")


if __name__ == "__main__":
    # Dispatch on first argument: a one-off command, or nothing for the scheduler
    if len(sys.argv) > 1:
        sys.exit(asyncio.run(_run_command(sys.argv[1], sys.argv[2:])))
    else:
        asyncio.run(_run_scheduler())
