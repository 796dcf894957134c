"""
foodfight/tasks/phase_sweep.py
Scheduled phase-end sweep

Sessions advance when observed; this task observes every expired voting
session on a timer so nobody has to open the page first.
Enabled with FEATURE_PHASE_SWEEP.
"""
import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from foodfight.database import AsyncSessionLocal
from foodfight.services.lifecycle_service import LifecycleService

logger = logging.getLogger(__name__)


async def run_sweep_once(session_factory: Optional[async_sessionmaker] = None) -> int:
    """Run a single sweep cycle. Returns the number of sessions advanced."""
    factory = session_factory or AsyncSessionLocal
    async with factory() as db:
        count = await LifecycleService.sweep_expired(db)
        logger.info(f"Phase sweep completed: {count} sessions advanced")
        return count


async def sweep_loop(interval_seconds: int = 30, session_factory: Optional[async_sessionmaker] = None):
    """
    Background sweep loop.
    Runs every interval_seconds until cancelled.
    """
    logger.info(f"Starting phase sweep loop with interval {interval_seconds}s")

    while True:
        try:
            await run_sweep_once(session_factory)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Phase sweep error: {type(e).__name__}: {str(e)}")

        await asyncio.sleep(interval_seconds)


def start_sweep_task(interval_seconds: int = 30, session_factory: Optional[async_sessionmaker] = None):
    """Start the sweep loop as a background task."""
    return asyncio.create_task(sweep_loop(interval_seconds, session_factory))
