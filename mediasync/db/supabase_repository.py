"""``MediaRepository`` implementation on Supabase (PostgREST).

Atomic operations are expressed with PostgREST primitives:

- insert-if-absent: ``upsert(..., ignore_duplicates=True)`` then read back
- per-group serialization: optimistic ``version`` compare-and-swap
- state transitions: ``update().in_("processing_state", ...)``
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel
from supabase import Client

from mediasync.core.constants import (
    ANALYSIS_TABLE,
    GROUPS_TABLE,
    MEDIA_TABLE,
    MESSAGES_TABLE,
    OUTBOX_TABLE,
)
from mediasync.core.exceptions import ConcurrencyError
from mediasync.db.repository import GroupMutation
from mediasync.models.enums import GroupState, OutboxOperation, ProcessingState
from mediasync.models.group import MediaGroup
from mediasync.models.media import MediaRecord
from mediasync.models.outbox import OutboxEntry
from mediasync.models.post import IncomingPost
from mediasync.models.product import ProductInfo

logger = logging.getLogger(__name__)

_CAS_ATTEMPTS = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _serialize(value: Any) -> Any:
    """Convert a Python value into its JSON column representation."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _serialize_fields(fields: dict[str, Any]) -> dict[str, Any]:
    return {key: _serialize(value) for key, value in fields.items()}


def _caption_key(caption: str) -> str:
    return hashlib.sha256(caption.encode("utf-8")).hexdigest()


class SupabaseRepository:
    """Persistence on the Supabase tables listed in ``core.constants``."""

    def __init__(self, client: Client) -> None:
        self._client = client

    # -- inbound posts -----------------------------------------------------

    def register_post(self, post: IncomingPost) -> bool:
        self._client.table(MESSAGES_TABLE).upsert(
            {
                "chat_id": post.chat_id,
                "message_id": post.external_message_id,
                "media_group_id": post.group_id,
                "caption": post.caption,
                "received_at": post.received_at.isoformat(),
            },
            on_conflict="chat_id,message_id",
            ignore_duplicates=True,
        ).execute()

        result = (
            self._client.table(MESSAGES_TABLE)
            .select("processed_at")
            .eq("chat_id", post.chat_id)
            .eq("message_id", post.external_message_id)
            .limit(1)
            .execute()
        )
        return not (result.data and result.data[0].get("processed_at"))

    def mark_post_processed(self, post: IncomingPost) -> None:
        (
            self._client.table(MESSAGES_TABLE)
            .update({"processed_at": _utcnow().isoformat()})
            .eq("chat_id", post.chat_id)
            .eq("message_id", post.external_message_id)
            .execute()
        )

    # -- media groups ------------------------------------------------------

    def get_group(self, group_id: str) -> MediaGroup | None:
        result = (
            self._client.table(GROUPS_TABLE)
            .select("*")
            .eq("group_id", group_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return MediaGroup.model_validate(result.data[0])

    def update_group(self, group_id: str, mutate: GroupMutation) -> MediaGroup | None:
        for _ in range(_CAS_ATTEMPTS):
            current = self.get_group(group_id)
            updated = mutate(current)
            if updated is None:
                return current

            if current is None:
                row = updated.model_copy(update={"version": 1}).model_dump(mode="json")
                result = (
                    self._client.table(GROUPS_TABLE)
                    .upsert(row, on_conflict="group_id", ignore_duplicates=True)
                    .execute()
                )
            else:
                row = updated.model_copy(
                    update={"version": current.version + 1}
                ).model_dump(mode="json")
                result = (
                    self._client.table(GROUPS_TABLE)
                    .update(row)
                    .eq("group_id", group_id)
                    .eq("version", current.version)
                    .execute()
                )

            if result.data:
                return MediaGroup.model_validate(result.data[0])

            logger.debug("group_cas_conflict", extra={"group_id": group_id})

        raise ConcurrencyError(f"Could not update media group {group_id}")

    def list_due_groups(
        self,
        quiet_cutoff: datetime,
        stale_cutoff: datetime,
    ) -> list[MediaGroup]:
        open_result = (
            self._client.table(GROUPS_TABLE)
            .select("*")
            .eq("state", GroupState.open.value)
            .lte("last_seen_at", quiet_cutoff.isoformat())
            .execute()
        )
        stale_result = (
            self._client.table(GROUPS_TABLE)
            .select("*")
            .eq("state", GroupState.settling.value)
            .lte("settling_since", stale_cutoff.isoformat())
            .execute()
        )
        rows = (open_result.data or []) + (stale_result.data or [])
        return [MediaGroup.model_validate(row) for row in rows]

    def list_completed_groups(self, completed_before: datetime) -> list[MediaGroup]:
        result = (
            self._client.table(GROUPS_TABLE)
            .select("*")
            .eq("state", GroupState.complete.value)
            .lte("completed_at", completed_before.isoformat())
            .execute()
        )
        return [MediaGroup.model_validate(row) for row in result.data or []]

    def delete_group(self, group_id: str) -> None:
        self._client.table(GROUPS_TABLE).delete().eq("group_id", group_id).execute()

    # -- media records -----------------------------------------------------

    def get_or_create_record(self, record: MediaRecord) -> tuple[MediaRecord, bool]:
        result = (
            self._client.table(MEDIA_TABLE)
            .upsert(
                record.model_dump(mode="json"),
                on_conflict="file_unique_ref",
                ignore_duplicates=True,
            )
            .execute()
        )
        if result.data:
            return MediaRecord.model_validate(result.data[0]), True

        existing = self.get_record(record.file_unique_ref)
        if existing is None:
            raise ConcurrencyError(
                f"Media record {record.file_unique_ref} vanished during upsert"
            )
        return existing, False

    def get_record(self, file_unique_ref: str) -> MediaRecord | None:
        result = (
            self._client.table(MEDIA_TABLE)
            .select("*")
            .eq("file_unique_ref", file_unique_ref)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return MediaRecord.model_validate(result.data[0])

    def update_record(self, file_unique_ref: str, fields: dict[str, Any]) -> MediaRecord:
        payload = _serialize_fields({**fields, "updated_at": _utcnow()})
        result = (
            self._client.table(MEDIA_TABLE)
            .update(payload)
            .eq("file_unique_ref", file_unique_ref)
            .execute()
        )
        if not result.data:
            raise KeyError(file_unique_ref)
        return MediaRecord.model_validate(result.data[0])

    def transition_record(
        self,
        file_unique_ref: str,
        from_states: Iterable[ProcessingState],
        fields: dict[str, Any],
    ) -> MediaRecord | None:
        payload = _serialize_fields({**fields, "updated_at": _utcnow()})
        result = (
            self._client.table(MEDIA_TABLE)
            .update(payload)
            .eq("file_unique_ref", file_unique_ref)
            .in_("processing_state", [state.value for state in from_states])
            .execute()
        )
        if not result.data:
            return None
        return MediaRecord.model_validate(result.data[0])

    def list_records(
        self,
        *,
        group_id: str | None = None,
        states: Iterable[ProcessingState] | None = None,
        updated_before: datetime | None = None,
        limit: int | None = None,
    ) -> list[MediaRecord]:
        query = self._client.table(MEDIA_TABLE).select("*").is_("deleted_at", "null")
        if group_id is not None:
            query = query.eq("group_id", group_id)
        if states is not None:
            query = query.in_("processing_state", [state.value for state in states])
        if updated_before is not None:
            query = query.lte("updated_at", updated_before.isoformat())
        query = query.order("created_at")
        if limit is not None:
            query = query.limit(limit)
        result = query.execute()
        return [MediaRecord.model_validate(row) for row in result.data or []]

    def purge_record(self, file_unique_ref: str) -> None:
        (
            self._client.table(MEDIA_TABLE)
            .delete()
            .eq("file_unique_ref", file_unique_ref)
            .execute()
        )

    # -- caption analysis cache --------------------------------------------

    def get_cached_analysis(self, caption: str) -> tuple[bool, ProductInfo | None]:
        result = (
            self._client.table(ANALYSIS_TABLE)
            .select("product_info")
            .eq("caption_hash", _caption_key(caption))
            .limit(1)
            .execute()
        )
        if not result.data:
            return False, None
        raw = result.data[0].get("product_info")
        return True, ProductInfo.model_validate(raw) if raw else None

    def save_cached_analysis(self, caption: str, product_info: ProductInfo | None) -> None:
        self._client.table(ANALYSIS_TABLE).upsert(
            {
                "caption_hash": _caption_key(caption),
                "caption": caption,
                "product_info": _serialize(product_info),
                "analyzed_at": _utcnow().isoformat(),
            },
            on_conflict="caption_hash",
            ignore_duplicates=True,
        ).execute()

    # -- outbox ------------------------------------------------------------

    def enqueue_outbox(
        self,
        entity_id: str,
        operation: OutboxOperation,
        payload: dict[str, Any],
    ) -> OutboxEntry:
        result = (
            self._client.table(OUTBOX_TABLE)
            .insert(
                {
                    "entity_id": entity_id,
                    "operation": operation.value,
                    "payload_snapshot": payload,
                    "enqueued_at": _utcnow().isoformat(),
                    "retry_count": 0,
                }
            )
            .execute()
        )
        return OutboxEntry.model_validate(result.data[0])

    def list_pending_outbox(
        self,
        limit: int,
        entity_ids: Iterable[str] | None = None,
    ) -> list[OutboxEntry]:
        query = self._client.table(OUTBOX_TABLE).select("*").is_("processed_at", "null")
        if entity_ids is not None:
            query = query.in_("entity_id", list(entity_ids))
        result = query.order("id").limit(limit).execute()
        return [OutboxEntry.model_validate(row) for row in result.data or []]

    def update_outbox(self, entry_id: int, fields: dict[str, Any]) -> None:
        (
            self._client.table(OUTBOX_TABLE)
            .update(_serialize_fields(fields))
            .eq("id", entry_id)
            .execute()
        )

    # -- health ------------------------------------------------------------

    def ping(self) -> bool:
        result = self._client.table(GROUPS_TABLE).select("group_id").limit(1).execute()
        return result is not None
