"""Telegram webhook endpoint.

Accepted updates are reconciled synchronously; downloads and uploads run
as background tasks after the response is sent, so Telegram gets its 200
quickly.  Only datastore or reconciler failures produce a 500, which makes
Telegram re-deliver the update.
"""

from __future__ import annotations

import hmac
import json
import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request

from mediasync.core.config import settings
from mediasync.core.constants import WEBHOOK_SECRET_HEADER
from mediasync.services.pipeline import Pipeline, get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter()


def verify_webhook_secret(
    secret_token: str | None = Header(default=None, alias=WEBHOOK_SECRET_HEADER),
) -> None:
    """Reject requests whose secret header does not match the configured one.

    Verification is disabled when ``TELEGRAM_WEBHOOK_SECRET`` is empty.
    """
    expected = settings.TELEGRAM_WEBHOOK_SECRET
    if not expected:
        return
    provided = secret_token or ""
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning("webhook_secret_mismatch")
        raise HTTPException(status_code=403, detail="Invalid webhook secret")


async def read_update(request: Request) -> Any:
    """Decode the request body; undecodable bodies become ``None``.

    The gateway then rejects them like any other malformed update, so
    Telegram still gets its 200 and stops re-delivering.
    """
    body = await request.body()
    try:
        return json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning(
            "webhook_body_undecodable",
            extra={"bytes": len(body), "error_message": str(exc)},
        )
        return None


@router.post("/webhook", dependencies=[Depends(verify_webhook_secret)])
def telegram_webhook(
    background_tasks: BackgroundTasks,
    update: Any = Depends(read_update),
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Ingest one Telegram update."""
    try:
        result = pipeline.gateway.receive(update)
    except Exception as exc:
        logger.error(
            "webhook_failed",
            extra={"error_type": type(exc).__name__, "error_message": str(exc)},
        )
        raise HTTPException(status_code=500, detail="Internal error") from exc

    for task in result.tasks:
        background_tasks.add_task(pipeline.processor.run, task)

    body: dict[str, Any] = {"ok": True, "status": result.status.value}
    if result.reason:
        body["reason"] = result.reason
    return body
