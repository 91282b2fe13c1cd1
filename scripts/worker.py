#!/usr/bin/env python
"""
Background worker for the periodic batch jobs.

Runs as a separate process from the API so that no scheduler lives inside
request handling. Each job is also exposed as a POST /api/v1/cron/...
endpoint for deployments that prefer an external scheduler.

Schedule (UTC):
- explore index rebuild   every 15 minutes
- hot score refresh       every 5 minutes
- views_24h decay         hourly, on the hour
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from strim.config import get_settings
from strim.context import AppContext
from strim.db.database import init_db
from strim.logging import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


async def run_explore_rebuild(context: AppContext):
    try:
        result = await context.explore.rebuild()
        logger.info(f"Explore rebuild: {result.count} rows, {result.pruned} pruned, {result.elapsed_ms}ms")
    except Exception as e:
        logger.error(f"Explore rebuild failed: {e}", exc_info=True)


async def run_hot_refresh(context: AppContext):
    try:
        await context.aggregator.refresh_hot_scores()
    except Exception as e:
        logger.error(f"Hot score refresh failed: {e}", exc_info=True)


async def run_views_decay(context: AppContext):
    try:
        await context.aggregator.decay_views_24h()
    except Exception as e:
        logger.error(f"views_24h decay failed: {e}", exc_info=True)


async def main():
    """Main worker loop."""
    settings = get_settings()
    context = AppContext.create(settings)

    logger.info("=" * 60)
    logger.info("STRIM WORKER STARTING")
    logger.info("=" * 60)

    await init_db(context.engine)

    # Fresh index on startup so a new deployment doesn't serve an empty explore page
    await run_explore_rebuild(context)

    scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            # Single catch-up run after downtime, never overlapping runs
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 300,
        },
    )
    scheduler.add_job(
        run_explore_rebuild,
        IntervalTrigger(minutes=15),
        args=[context],
        id="explore_rebuild",
        replace_existing=True,
    )
    scheduler.add_job(
        run_hot_refresh,
        IntervalTrigger(minutes=5),
        args=[context],
        id="hot_refresh",
        replace_existing=True,
    )
    scheduler.add_job(
        run_views_decay,
        CronTrigger(minute=0),
        args=[context],
        id="views_24h_decay",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler started - explore rebuild every 15m, hot refresh every 5m, decay hourly")

    # Keep running forever
    try:
        while True:
            await asyncio.sleep(3600)
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        logger.info("Worker shutting down...")
    finally:
        scheduler.shutdown()
        await context.close()


if __name__ == "__main__":
    asyncio.run(main())
