"""Pydantic models for the ``glide_sync_queue`` outbox table."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from mediasync.models.enums import OutboxOperation


class OutboxEntry(BaseModel):
    """A queued change destined for Glide."""

    id: int
    entity_id: str
    operation: OutboxOperation
    payload_snapshot: dict[str, Any]
    enqueued_at: datetime
    processed_at: datetime | None = None
    error: str | None = None
    retry_count: int = 0


class SyncResult(BaseModel):
    """Aggregate counters returned by one drain cycle."""
    added: int = 0
    updated: int = 0
    deleted: int = 0
    errors: list[str] = Field(default_factory=list)


class SyncRequest(BaseModel):
    """Body of ``POST /sync``."""
    tableId: str | None = None
    recordIds: list[str] | None = None

