"""
APScheduler-based periodic scheduler for session retention.

This module provides a small, purpose-built wrapper around APScheduler to run the session store's
`cleanup()` at a fixed interval (CONFIG["session_store"]["cleanup_interval_minutes"], default 60).
We use the asyncio scheduler variant so the job runs on FastAPI's event loop and can await the
store directly. The retention window is the store's `default_max_age_ms` (7 days unless configured).
Failures are logged and never crash the application; the scheduler keeps firing on later ticks.
The retention rule itself lives in services.session_store; this module only handles scheduling
and lifecycle wiring aligned with the app startup and shutdown events.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from shared.errors import AssistantError

DEFAULT_INTERVAL_MINUTES = 60


async def run_cleanup_job(store, logger: logging.Logger) -> int:
    """
    Execute one retention cleanup and log the number of removed sessions; never raise.

    Returns:
        int: Sessions removed, or 0 when the cleanup failed.
    """
    try:
        removed = await store.cleanup()
    except AssistantError as exc:
        logger.warning("session cleanup failed: %s", exc)
        return 0
    logger.info("session cleanup removed=%s", removed)
    return removed


def start_retention_scheduler(app, store, interval_minutes: int = DEFAULT_INTERVAL_MINUTES) -> AsyncIOScheduler:
    """
    Start the periodic cleanup scheduler and store it on the app state.

    Must be called from a running event loop (FastAPI startup). The scheduler instance is attached
    to `app.state.retention_scheduler` for later shutdown.
    """
    scheduler = AsyncIOScheduler()
    logger = logging.getLogger(__name__)
    scheduler.add_job(
        run_cleanup_job,
        trigger=IntervalTrigger(minutes=interval_minutes),
        args=[store, logger],
        id="session_cleanup",
        coalesce=True,
        max_instances=1,
        misfire_grace_time=600,
    )
    scheduler.start()
    logger.info("Session retention scheduler started (every %s minutes)", interval_minutes)
    setattr(app.state, "retention_scheduler", scheduler)
    return scheduler


def shutdown_retention_scheduler(app) -> None:
    """
    Stop the retention scheduler if it was started.

    Shutdown errors are logged so application teardown continues.
    """
    scheduler = getattr(app.state, "retention_scheduler", None)
    if scheduler is None:
        return
    try:
        scheduler.shutdown(wait=False)
    except Exception as exc:  # pragma: no cover - scheduler already stopped
        logging.getLogger(__name__).warning("retention scheduler shutdown failed: %s", exc)
    setattr(app.state, "retention_scheduler", None)
