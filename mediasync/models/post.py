"""Pydantic models for normalized inbound Telegram posts."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from mediasync.models.enums import MediaKind


class MediaRef(BaseModel):
    """Reference to one Telegram file, as carried by a message."""
    model_config = ConfigDict(frozen=True)

    kind: MediaKind
    file_ref: str
    file_unique_ref: str
    size_bytes: int | None = None
    width: int | None = None
    height: int | None = None
    duration_sec: int | None = None
    mime_type: str | None = None
    file_name: str | None = None
    # Preview image Telegram attaches to videos, animations and documents
    thumbnail_ref: str | None = None
    thumbnail_unique_ref: str | None = None


class IncomingPost(BaseModel):
    """One inbound update, normalized.  Immutable after creation."""
    model_config = ConfigDict(frozen=True)

    external_message_id: int
    chat_id: int
    group_id: str | None = None
    caption: str | None = None
    media_ref: MediaRef | None = None
    received_at: datetime

    @property
    def dedup_key(self) -> tuple[int, int]:
        return (self.external_message_id, self.chat_id)
