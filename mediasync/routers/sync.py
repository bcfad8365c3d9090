"""On-demand outbox drain: ``POST /sync``."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from mediasync.core.config import settings
from mediasync.models.outbox import SyncRequest
from mediasync.scheduler.lock import acquire_job_lock, release_job_lock
from mediasync.services.pipeline import Pipeline, get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/sync")
def trigger_sync(
    request: SyncRequest,
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Drain pending outbox entries, optionally limited to *recordIds*.

    Returns 409 while a scheduled drain is running.
    """
    if not acquire_job_lock("drain_outbox"):
        raise HTTPException(status_code=409, detail="Sync already in progress")
    try:
        result = pipeline.drainer.drain(
            batch_size=settings.SYNC_BATCH_SIZE,
            entity_ids=request.recordIds or None,
            table_name=request.tableId,
        )
    except Exception as exc:
        logger.error(
            "sync_failed",
            extra={"error_type": type(exc).__name__, "error_message": str(exc)},
        )
        raise HTTPException(status_code=500, detail="Sync failed") from exc
    finally:
        release_job_lock("drain_outbox")

    return result.model_dump()
