"""Pydantic models for the ``telegram_media`` table and processing tasks."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from mediasync.models.enums import MediaKind, ProcessingState
from mediasync.models.post import MediaRef
from mediasync.models.product import ProductInfo


class MediaTask(BaseModel):
    """Unit of work for the media processor.

    Carries a snapshot of the group's canonical caption at scheduling time.
    """
    model_config = ConfigDict(frozen=True)

    media_ref: MediaRef
    chat_id: int
    source_message_id: int
    group_id: str | None = None
    caption: str | None = None
    product_info: ProductInfo | None = None


class MediaRecord(BaseModel):
    """Durable media row; ``file_unique_ref`` is the primary key."""

    file_unique_ref: str
    file_ref: str
    file_kind: MediaKind
    chat_id: int
    source_message_id: int
    group_id: str | None = None
    caption: str | None = None
    product_info: ProductInfo | None = None
    storage_key: str | None = None
    public_url: str | None = None
    mime_type: str | None = None
    file_name: str | None = None
    size_bytes: int | None = None
    width: int | None = None
    height: int | None = None
    duration_sec: int | None = None
    thumbnail_ref: str | None = None
    thumbnail_unique_ref: str | None = None
    thumbnail_url: str | None = None
    processing_state: ProcessingState = ProcessingState.pending
    retry_count: int = 0
    last_error: str | None = None
    external_id: str | None = None
    deleted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def pending_from_task(cls, task: MediaTask, now: datetime) -> MediaRecord:
        ref = task.media_ref
        return cls(
            file_unique_ref=ref.file_unique_ref,
            file_ref=ref.file_ref,
            file_kind=ref.kind,
            chat_id=task.chat_id,
            source_message_id=task.source_message_id,
            group_id=task.group_id,
            caption=task.caption,
            product_info=task.product_info,
            mime_type=ref.mime_type,
            file_name=ref.file_name,
            size_bytes=ref.size_bytes,
            width=ref.width,
            height=ref.height,
            duration_sec=ref.duration_sec,
            thumbnail_ref=ref.thumbnail_ref,
            thumbnail_unique_ref=ref.thumbnail_unique_ref,
            created_at=now,
            updated_at=now,
        )

    def to_media_ref(self) -> MediaRef:
        return MediaRef(
            kind=self.file_kind,
            file_ref=self.file_ref,
            file_unique_ref=self.file_unique_ref,
            size_bytes=self.size_bytes,
            width=self.width,
            height=self.height,
            duration_sec=self.duration_sec,
            mime_type=self.mime_type,
            file_name=self.file_name,
            thumbnail_ref=self.thumbnail_ref,
            thumbnail_unique_ref=self.thumbnail_unique_ref,
        )

    def to_task(self) -> MediaTask:
        """Rebuild the task that produced this record, for resumes and requeues."""
        return MediaTask(
            media_ref=self.to_media_ref(),
            chat_id=self.chat_id,
            source_message_id=self.source_message_id,
            group_id=self.group_id,
            caption=self.caption,
            product_info=self.product_info,
        )


class ThumbnailRequest(BaseModel):
    """Body of ``POST /media/thumbnails/regenerate``."""
    fileUniqueRefs: list[str] | None = None
    limit: int = Field(default=50, ge=1, le=500)
