"""Health check endpoint.

Returns service status including datastore connectivity and scheduler
state.  503 when the datastore is down.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from starlette.responses import JSONResponse

from mediasync.scheduler.jobs import is_scheduler_running
from mediasync.services.pipeline import Pipeline, get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
def health_check(pipeline: Pipeline = Depends(get_pipeline)) -> Any:
    """Return health status with a real datastore round-trip."""
    db_status = "disconnected"

    try:
        if pipeline.repository.ping():
            db_status = "connected"
    except Exception:
        logger.warning("Health check: datastore connection failed", exc_info=True)

    scheduler_status = "running" if is_scheduler_running() else "stopped"

    payload: dict[str, str] = {
        "status": "ok" if db_status == "connected" else "degraded",
        "database": db_status,
        "scheduler": scheduler_status,
    }

    if db_status != "connected":
        return JSONResponse(status_code=503, content=payload)

    return payload
