"""On-demand media group settling: ``POST /groups/settle``."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from mediasync.services.pipeline import Pipeline, get_pipeline

router = APIRouter()


@router.post("/groups/settle")
def settle_groups(pipeline: Pipeline = Depends(get_pipeline)) -> dict[str, Any]:
    """Run the quiet-window sweep now and return the settled group ids."""
    settled = pipeline.reconciler.settle_due_groups()
    return {"settled": settled, "count": len(settled)}
