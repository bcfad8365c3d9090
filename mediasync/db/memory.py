"""In-process ``MediaRepository`` backed by dictionaries.

Used when ``STORE_BACKEND=memory`` and by the test suite.  A single
re-entrant lock serializes every operation, which gives the same atomicity
guarantees the Supabase implementation gets from conditional updates.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

from mediasync.models.enums import GroupState, OutboxOperation, ProcessingState
from mediasync.models.group import MediaGroup
from mediasync.models.media import MediaRecord
from mediasync.models.outbox import OutboxEntry
from mediasync.models.post import IncomingPost
from mediasync.models.product import ProductInfo


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryRepository:
    """Thread-safe dictionary store."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._posts: dict[tuple[int, int], datetime | None] = {}
        self._groups: dict[str, MediaGroup] = {}
        self._records: dict[str, MediaRecord] = {}
        self._analyses: dict[str, ProductInfo | None] = {}
        self._outbox: dict[int, OutboxEntry] = {}
        self._outbox_ids = itertools.count(1)

    # -- inbound posts -----------------------------------------------------

    def register_post(self, post: IncomingPost) -> bool:
        with self._lock:
            if post.dedup_key in self._posts:
                return self._posts[post.dedup_key] is None
            self._posts[post.dedup_key] = None
            return True

    def mark_post_processed(self, post: IncomingPost) -> None:
        with self._lock:
            self._posts[post.dedup_key] = self._clock()

    # -- media groups ------------------------------------------------------

    def get_group(self, group_id: str) -> MediaGroup | None:
        with self._lock:
            return self._groups.get(group_id)

    def update_group(
        self,
        group_id: str,
        mutate: Callable[[MediaGroup | None], MediaGroup | None],
    ) -> MediaGroup | None:
        with self._lock:
            current = self._groups.get(group_id)
            updated = mutate(current)
            if updated is None:
                return current
            updated = updated.model_copy(
                update={"version": (current.version if current else 0) + 1}
            )
            self._groups[group_id] = updated
            return updated

    def list_due_groups(
        self,
        quiet_cutoff: datetime,
        stale_cutoff: datetime,
    ) -> list[MediaGroup]:
        with self._lock:
            due: list[MediaGroup] = []
            for group in self._groups.values():
                if group.state == GroupState.open and group.last_seen_at <= quiet_cutoff:
                    due.append(group)
                elif (
                    group.state == GroupState.settling
                    and group.settling_since is not None
                    and group.settling_since <= stale_cutoff
                ):
                    due.append(group)
            return due

    def list_completed_groups(self, completed_before: datetime) -> list[MediaGroup]:
        with self._lock:
            return [
                g for g in self._groups.values()
                if g.state == GroupState.complete
                and g.completed_at is not None
                and g.completed_at <= completed_before
            ]

    def delete_group(self, group_id: str) -> None:
        with self._lock:
            self._groups.pop(group_id, None)

    # -- media records -----------------------------------------------------

    def get_or_create_record(self, record: MediaRecord) -> tuple[MediaRecord, bool]:
        with self._lock:
            existing = self._records.get(record.file_unique_ref)
            if existing is not None:
                return existing, False
            self._records[record.file_unique_ref] = record
            return record, True

    def get_record(self, file_unique_ref: str) -> MediaRecord | None:
        with self._lock:
            return self._records.get(file_unique_ref)

    def update_record(self, file_unique_ref: str, fields: dict[str, Any]) -> MediaRecord:
        with self._lock:
            current = self._records.get(file_unique_ref)
            if current is None:
                raise KeyError(file_unique_ref)
            updated = current.model_copy(update={**fields, "updated_at": self._clock()})
            self._records[file_unique_ref] = updated
            return updated

    def transition_record(
        self,
        file_unique_ref: str,
        from_states: Iterable[ProcessingState],
        fields: dict[str, Any],
    ) -> MediaRecord | None:
        with self._lock:
            current = self._records.get(file_unique_ref)
            if current is None or current.processing_state not in set(from_states):
                return None
            return self.update_record(file_unique_ref, fields)

    def list_records(
        self,
        *,
        group_id: str | None = None,
        states: Iterable[ProcessingState] | None = None,
        updated_before: datetime | None = None,
        limit: int | None = None,
    ) -> list[MediaRecord]:
        wanted = set(states) if states is not None else None
        with self._lock:
            records = [
                r for r in self._records.values()
                if r.deleted_at is None
                and (group_id is None or r.group_id == group_id)
                and (wanted is None or r.processing_state in wanted)
                and (updated_before is None or r.updated_at <= updated_before)
            ]
        records.sort(key=lambda r: r.created_at)
        return records[:limit] if limit is not None else records

    def purge_record(self, file_unique_ref: str) -> None:
        with self._lock:
            self._records.pop(file_unique_ref, None)

    # -- caption analysis cache --------------------------------------------

    def get_cached_analysis(self, caption: str) -> tuple[bool, ProductInfo | None]:
        with self._lock:
            if caption in self._analyses:
                return True, self._analyses[caption]
            return False, None

    def save_cached_analysis(self, caption: str, product_info: ProductInfo | None) -> None:
        with self._lock:
            self._analyses.setdefault(caption, product_info)

    # -- outbox ------------------------------------------------------------

    def enqueue_outbox(
        self,
        entity_id: str,
        operation: OutboxOperation,
        payload: dict[str, Any],
    ) -> OutboxEntry:
        with self._lock:
            entry = OutboxEntry(
                id=next(self._outbox_ids),
                entity_id=entity_id,
                operation=operation,
                payload_snapshot=payload,
                enqueued_at=self._clock(),
            )
            self._outbox[entry.id] = entry
            return entry

    def list_pending_outbox(
        self,
        limit: int,
        entity_ids: Iterable[str] | None = None,
    ) -> list[OutboxEntry]:
        wanted = set(entity_ids) if entity_ids is not None else None
        with self._lock:
            pending = [
                e for e in sorted(self._outbox.values(), key=lambda e: e.id)
                if e.processed_at is None
                and (wanted is None or e.entity_id in wanted)
            ]
        return pending[:limit]

    def update_outbox(self, entry_id: int, fields: dict[str, Any]) -> None:
        with self._lock:
            self._outbox[entry_id] = self._outbox[entry_id].model_copy(update=fields)

    def all_outbox(self) -> list[OutboxEntry]:
        """Every entry, processed or not, in enqueue order."""
        with self._lock:
            return sorted(self._outbox.values(), key=lambda e: e.id)

    # -- health ------------------------------------------------------------

    def ping(self) -> bool:
        return True
