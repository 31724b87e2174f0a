"""
Background housekeeping via APScheduler.

Runs every hour: drops sessions idle longer than SESSION_TTL_HOURS so a user
who abandons a flow is not stuck with it when they come back.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from flatbot.utils.state import SessionStore

logger = logging.getLogger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None


async def cleanup_stale_sessions(store: SessionStore) -> None:
    """Delete sessions older than the store's TTL."""
    store.cleanup_stale()


def setup_scheduler(store: SessionStore) -> AsyncIOScheduler:
    """Start APScheduler with the hourly stale-session cleanup."""
    global _scheduler
    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        cleanup_stale_sessions,
        "interval",
        hours=1,
        args=[store],
        id="stale_session_cleanup",
        replace_existing=True,
    )
    _scheduler.start()
    logger.info("Scheduler started (hourly session cleanup)")
    return _scheduler


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    _scheduler = None
