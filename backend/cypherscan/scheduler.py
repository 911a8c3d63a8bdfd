# cypherscan/scheduler.py
"""
Background Scheduler for Scan Retention
───────────────────────────────────────
Uses APScheduler to evict finished scans once they are older than
SCAN_RETENTION_SECONDS. Scans live only in memory, so this is what keeps
the scan table bounded.

Setup in the app factory:
    from cypherscan.scheduler import init_scheduler
    init_scheduler(app)
"""
from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from flask import Flask

from cypherscan.extensions import EXTENSION_KEY

logger = logging.getLogger(__name__)

_scheduler: Optional[BackgroundScheduler] = None

EVICTION_CHECK_SECONDS = 60


def evict_expired_scans(app: Flask) -> int:
    """Drop terminal scans past the retention window. Returns the count."""
    services = app.extensions[EXTENSION_KEY]
    retention = services["settings"].retention_seconds
    return services["orchestrator"].evict_finished(older_than=retention)


def init_scheduler(app: Flask) -> None:
    """Initialize and start the background scheduler."""
    global _scheduler

    if _scheduler is not None:
        logger.info("Scheduler already running")
        return

    _scheduler = BackgroundScheduler(daemon=True)
    _scheduler.add_job(
        func=lambda: evict_expired_scans(app),
        trigger=IntervalTrigger(seconds=EVICTION_CHECK_SECONDS),
        id="scan_retention_eviction",
        name="Evict finished scans past retention",
        replace_existing=True,
        max_instances=1,
    )
    _scheduler.start()
    logger.info(f"Background scheduler started (evicting every {EVICTION_CHECK_SECONDS}s)")


def shutdown_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Scheduler stopped")
