"""APScheduler job definitions and scheduler management.

Initializes a BackgroundScheduler with IntervalTrigger jobs for the
periodic sweeps (quiet-window settling, group garbage collection, stale
media resume, outbox drain) and provides start/shutdown/status helpers for
the FastAPI lifespan.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from mediasync.core.config import settings
from mediasync.scheduler.lock import acquire_job_lock, release_job_lock
from mediasync.services.pipeline import get_pipeline

logger = logging.getLogger(__name__)

# Module-level scheduler instance (singleton)
scheduler = BackgroundScheduler()


def run_exclusive(name: str, job: Callable[[], Any]) -> Any:
    """Run *job* unless a previous run of *name* is still in progress.

    Exceptions are logged and swallowed so the next tick still fires.
    """
    if not acquire_job_lock(name):
        logger.warning("job_skipped_still_running", extra={"job": name})
        return None
    try:
        return job()
    except Exception as exc:
        logger.error(
            "job_failed",
            extra={
                "job": name,
                "error_type": type(exc).__name__,
                "error_message": str(exc),
            },
        )
        return None
    finally:
        release_job_lock(name)


def settle_groups_job() -> None:
    """Complete media groups whose quiet window has elapsed."""
    run_exclusive("settle_groups", lambda: get_pipeline().reconciler.settle_due_groups())


def collect_groups_job() -> None:
    """Drop completed groups past their retention."""
    run_exclusive(
        "collect_groups", lambda: get_pipeline().reconciler.collect_completed_groups()
    )


def resume_media_job() -> None:
    """Re-run media tasks left PENDING or abandoned in PROCESSING."""
    run_exclusive("resume_media", lambda: get_pipeline().processor.resume_stale())


def drain_outbox_job() -> None:
    """Push queued changes to Glide."""
    run_exclusive(
        "drain_outbox",
        lambda: get_pipeline().drainer.drain(batch_size=settings.SYNC_BATCH_SIZE),
    )


def start_scheduler() -> None:
    """Configure and start the background scheduler."""
    sweep = IntervalTrigger(seconds=settings.SWEEP_INTERVAL_SECONDS)
    sync = IntervalTrigger(seconds=settings.SYNC_INTERVAL_SECONDS)

    scheduler.add_job(settle_groups_job, sweep, id="settle_groups", replace_existing=True)
    scheduler.add_job(collect_groups_job, sync, id="collect_groups", replace_existing=True)
    scheduler.add_job(resume_media_job, sync, id="resume_media", replace_existing=True)
    scheduler.add_job(drain_outbox_job, sync, id="drain_outbox", replace_existing=True)
    scheduler.start()
    logger.info(
        "scheduler_started",
        extra={
            "sweep_interval_seconds": settings.SWEEP_INTERVAL_SECONDS,
            "sync_interval_seconds": settings.SYNC_INTERVAL_SECONDS,
        },
    )


def shutdown_scheduler() -> None:
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")


def is_scheduler_running() -> bool:
    """Check if the scheduler is currently running."""
    return scheduler.running
