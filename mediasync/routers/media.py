"""Media record management endpoints.

GET /media -- list records with their processing state and last error.
POST /media/{file_unique_ref}/requeue -- retry a FAILED record.
DELETE /media/{file_unique_ref} -- soft-delete and remove from Glide.
POST /media/thumbnails/regenerate -- store thumbnails missing on stored records.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query

from mediasync.core.exceptions import InvalidStateError, RecordNotFoundError
from mediasync.models.enums import ProcessingState
from mediasync.models.media import ThumbnailRequest
from mediasync.services.pipeline import Pipeline, get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/media")
def list_media(
    state: ProcessingState | None = Query(default=None),
    group_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    pipeline: Pipeline = Depends(get_pipeline),
) -> list[dict[str, Any]]:
    """List media records, newest last."""
    records = pipeline.repository.list_records(
        group_id=group_id,
        states=[state] if state else None,
        limit=limit,
    )
    return [r.model_dump(mode="json") for r in records]


@router.post("/media/thumbnails/regenerate")
def regenerate_thumbnails(
    request: ThumbnailRequest | None = None,
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    request = request or ThumbnailRequest()
    regenerated = pipeline.processor.regenerate_thumbnails(
        request.fileUniqueRefs, limit=request.limit
    )
    return {"regenerated": regenerated, "count": len(regenerated)}


@router.post("/media/{file_unique_ref}/requeue", status_code=202)
def requeue_media(
    file_unique_ref: str,
    background_tasks: BackgroundTasks,
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Reset a FAILED record and process it again in the background."""
    try:
        record = pipeline.processor.requeue(file_unique_ref)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Media not found")
    except InvalidStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc))

    background_tasks.add_task(pipeline.processor.run, record.to_task())
    return record.model_dump(mode="json")


@router.delete("/media/{file_unique_ref}")
def delete_media(
    file_unique_ref: str,
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Soft-delete a record; the next drain removes its Glide row."""
    try:
        record = pipeline.processor.delete(file_unique_ref)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Media not found")

    return {
        "ok": True,
        "file_unique_ref": record.file_unique_ref,
        "deleted_at": record.deleted_at.isoformat() if record.deleted_at else None,
    }
