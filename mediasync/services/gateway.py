"""Ingestion gateway: raw Telegram update -> ``IncomingPost`` -> reconciler.

Validation failures are reported as ``rejected`` results, never raised;
Telegram has no useful retry semantics for malformed updates.  Re-deliveries
of a post that was already processed are acknowledged as ``duplicate``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from mediasync.core.exceptions import UpdateValidationError
from mediasync.db.repository import MediaRepository
from mediasync.models.enums import IngestionStatus, MediaKind
from mediasync.models.ingestion import IngestionResult
from mediasync.models.post import IncomingPost, MediaRef
from mediasync.services.reconciler import GroupReconciler

logger = logging.getLogger(__name__)

MESSAGE_KEYS: tuple[str, ...] = (
    "message",
    "channel_post",
    "edited_message",
    "edited_channel_post",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _file_fields(item: dict[str, Any]) -> tuple[str, str]:
    file_ref = item.get("file_id")
    file_unique_ref = item.get("file_unique_id")
    if not file_ref or not file_unique_ref:
        raise UpdateValidationError("Media is missing file_id or file_unique_id")
    return str(file_ref), str(file_unique_ref)


def _thumbnail_fields(item: dict[str, Any]) -> tuple[str | None, str | None]:
    # Bot API 6.x renamed ``thumb`` to ``thumbnail``
    thumb = item.get("thumbnail") or item.get("thumb")
    if not isinstance(thumb, dict) or not thumb.get("file_id") or not thumb.get("file_unique_id"):
        return None, None
    return str(thumb["file_id"]), str(thumb["file_unique_id"])


def extract_media_ref(message: dict[str, Any]) -> MediaRef | None:
    """Return the media carried by *message*, or None for text-only posts.

    Photos arrive as a list of sizes; the largest one is kept.  Animations
    also carry a ``document`` field, so they are checked first.
    """
    photos = message.get("photo")
    if isinstance(photos, list) and photos:
        largest = max(
            photos,
            key=lambda p: (p.get("file_size") or 0, (p.get("width") or 0) * (p.get("height") or 0)),
        )
        file_ref, file_unique_ref = _file_fields(largest)
        return MediaRef(
            kind=MediaKind.photo,
            file_ref=file_ref,
            file_unique_ref=file_unique_ref,
            size_bytes=largest.get("file_size"),
            width=largest.get("width"),
            height=largest.get("height"),
        )

    for kind in (MediaKind.animation, MediaKind.video, MediaKind.document):
        item = message.get(kind.value)
        if not isinstance(item, dict):
            continue
        file_ref, file_unique_ref = _file_fields(item)
        thumbnail_ref, thumbnail_unique_ref = _thumbnail_fields(item)
        return MediaRef(
            kind=kind,
            file_ref=file_ref,
            file_unique_ref=file_unique_ref,
            size_bytes=item.get("file_size"),
            width=item.get("width"),
            height=item.get("height"),
            duration_sec=item.get("duration"),
            mime_type=item.get("mime_type"),
            file_name=item.get("file_name"),
            thumbnail_ref=thumbnail_ref,
            thumbnail_unique_ref=thumbnail_unique_ref,
        )

    return None


def parse_update(raw_update: dict[str, Any], received_at: datetime) -> IncomingPost:
    """Normalize a Telegram update.  Raises ``UpdateValidationError``."""
    if not isinstance(raw_update, dict):
        raise UpdateValidationError("Update body is not an object")

    message = next(
        (raw_update[key] for key in MESSAGE_KEYS if isinstance(raw_update.get(key), dict)),
        None,
    )
    if message is None:
        raise UpdateValidationError("Update contains no message")

    message_id = message.get("message_id")
    chat_id = (message.get("chat") or {}).get("id")
    if not isinstance(message_id, int) or not isinstance(chat_id, int):
        raise UpdateValidationError("Message is missing message_id or chat.id")

    media_ref = extract_media_ref(message)
    caption = message.get("caption") or message.get("text") or None
    if media_ref is None and not caption:
        raise UpdateValidationError("Message carries neither text nor supported media")

    group_id = message.get("media_group_id")
    return IncomingPost(
        external_message_id=message_id,
        chat_id=chat_id,
        group_id=str(group_id) if group_id else None,
        caption=caption,
        media_ref=media_ref,
        received_at=received_at,
    )


class IngestionGateway:
    """Validates, deduplicates and forwards inbound updates."""

    def __init__(
        self,
        repository: MediaRepository,
        reconciler: GroupReconciler,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._reconciler = reconciler
        self._clock = clock

    def receive(self, raw_update: dict[str, Any]) -> IngestionResult:
        """Accept, deduplicate or reject one update.

        Returns once the reconciler has scheduled the media tasks; it does
        not wait for downloads or uploads.
        """
        try:
            post = parse_update(raw_update, self._clock())
        except UpdateValidationError as exc:
            logger.info(
                "update_rejected",
                extra={
                    "update_id": raw_update.get("update_id") if isinstance(raw_update, dict) else None,
                    "reason": str(exc),
                },
            )
            return IngestionResult(status=IngestionStatus.rejected, reason=str(exc))

        if not self._repository.register_post(post):
            logger.info(
                "update_duplicate",
                extra={"message_id": post.external_message_id, "chat_id": post.chat_id},
            )
            return IngestionResult(status=IngestionStatus.duplicate, post=post)

        tasks = self._reconciler.on_post(post)
        self._repository.mark_post_processed(post)

        logger.info(
            "update_accepted",
            extra={
                "message_id": post.external_message_id,
                "chat_id": post.chat_id,
                "group_id": post.group_id,
                "tasks": len(tasks),
            },
        )
        return IngestionResult(status=IngestionStatus.accepted, post=post, tasks=tasks)
