"""
Periodic cleanup for the managed auth backend.

One APScheduler interval job drops state nonces nobody came back for
and mirror entries whose session artifact has lapsed. Redis expires
both on its own; the sweep matters for the in-memory store and keeps
key counts honest either way.

Started from create_app() once the SessionBroker exists. Under the
Werkzeug reloader only the serving child runs it; under Gunicorn use
--preload so a single process owns it.
"""

import logging
import os
from typing import Optional

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
)
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "sweep_expired_auth_state"

_scheduler: Optional[BackgroundScheduler] = None


def _log_job_event(event):
    """Single listener for executed, failed and missed runs."""
    if event.code == EVENT_JOB_ERROR:
        logger.error(
            "Job %s raised: %s", event.job_id, event.exception,
            exc_info=event.traceback,
        )
    elif event.code == EVENT_JOB_MISSED:
        logger.warning("Job %s skipped a run", event.job_id)
    else:
        logger.debug("Job %s finished", event.job_id)


def run_sweep(broker) -> int:
    """Sweep job body. Returns the number of entries removed."""
    removed = broker.sweep()
    if removed:
        logger.info("Sweep removed %d expired auth entries", removed)
    return removed


def _should_start(app) -> bool:
    if not app.config.get("SCHEDULER_ENABLED", True):
        logger.info("Sweep scheduler disabled by configuration")
        return False
    # The reloader's watcher process never serves requests.
    if app.debug and os.environ.get("WERKZEUG_RUN_MAIN") != "true":
        logger.info("Reloader watcher process; sweep scheduler not started")
        return False
    return True


def init_scheduler(app) -> Optional[BackgroundScheduler]:
    """
    Start the background sweep for ``app``'s broker.

    Returns:
        The running scheduler, or None when disabled or not startable.
    """
    global _scheduler

    if not _should_start(app):
        return None
    if _scheduler is not None and _scheduler.running:
        return _scheduler

    interval = app.config.get("STATE_SWEEP_INTERVAL_SECONDS", 300)
    scheduler = BackgroundScheduler(
        executors={"default": ThreadPoolExecutor(max_workers=1)},
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": interval,
        },
    )
    scheduler.add_listener(
        _log_job_event,
        EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED,
    )
    scheduler.add_job(
        run_sweep,
        trigger="interval",
        seconds=interval,
        id=SWEEP_JOB_ID,
        args=[app.extensions["spotctl_broker"]],
        replace_existing=True,
    )

    try:
        scheduler.start()
    except Exception as e:
        logger.error(f"Sweep scheduler failed to start: {e}", exc_info=True)
        return None

    _scheduler = scheduler
    logger.info("Sweep scheduler running every %ss", interval)
    return _scheduler


def get_scheduler() -> Optional[BackgroundScheduler]:
    return _scheduler


def shutdown_scheduler():
    """Stop the sweep without waiting for a run in progress."""
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Sweep scheduler stopped")
    _scheduler = None
