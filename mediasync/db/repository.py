"""Datastore boundary used by every pipeline component.

Components receive a ``MediaRepository`` at construction time.  Two
implementations exist: ``SupabaseRepository`` for production and
``InMemoryRepository`` for local runs and tests.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, Protocol

from mediasync.models.enums import OutboxOperation, ProcessingState
from mediasync.models.group import MediaGroup
from mediasync.models.media import MediaRecord
from mediasync.models.outbox import OutboxEntry
from mediasync.models.post import IncomingPost
from mediasync.models.product import ProductInfo

GroupMutation = Callable[[MediaGroup | None], MediaGroup | None]


class MediaRepository(Protocol):
    """Persistence operations required by the pipeline."""

    # -- inbound posts -----------------------------------------------------

    def register_post(self, post: IncomingPost) -> bool:
        """Insert the post if absent.

        Returns False when a post with the same ``(message_id, chat_id)``
        was already fully processed.
        """
        ...

    def mark_post_processed(self, post: IncomingPost) -> None: ...

    # -- media groups ------------------------------------------------------

    def get_group(self, group_id: str) -> MediaGroup | None: ...

    def update_group(self, group_id: str, mutate: GroupMutation) -> MediaGroup | None:
        """Atomically read, mutate and write one group.

        *mutate* receives the current group (or None) and returns the new
        value, or None to leave the group untouched.  It may be called more
        than once when a concurrent writer wins, so it must be pure.
        """
        ...

    def list_due_groups(
        self,
        quiet_cutoff: datetime,
        stale_cutoff: datetime,
    ) -> list[MediaGroup]:
        """OPEN groups quiet since *quiet_cutoff* and SETTLING groups
        claimed before *stale_cutoff*."""
        ...

    def list_completed_groups(self, completed_before: datetime) -> list[MediaGroup]: ...

    def delete_group(self, group_id: str) -> None: ...

    # -- media records -----------------------------------------------------

    def get_or_create_record(self, record: MediaRecord) -> tuple[MediaRecord, bool]:
        """Insert *record* unless its ``file_unique_ref`` exists.

        Returns ``(stored_record, created)``.
        """
        ...

    def get_record(self, file_unique_ref: str) -> MediaRecord | None: ...

    def update_record(self, file_unique_ref: str, fields: dict[str, Any]) -> MediaRecord:
        """Apply a partial update and return the record as written."""
        ...

    def transition_record(
        self,
        file_unique_ref: str,
        from_states: Iterable[ProcessingState],
        fields: dict[str, Any],
    ) -> MediaRecord | None:
        """Partial update applied only while the record is in *from_states*.

        Returns None when the condition did not hold.
        """
        ...

    def list_records(
        self,
        *,
        group_id: str | None = None,
        states: Iterable[ProcessingState] | None = None,
        updated_before: datetime | None = None,
        limit: int | None = None,
    ) -> list[MediaRecord]: ...

    def purge_record(self, file_unique_ref: str) -> None: ...

    # -- caption analysis cache --------------------------------------------

    def get_cached_analysis(self, caption: str) -> tuple[bool, ProductInfo | None]:
        """Returns ``(hit, product_info)``; a hit may carry None."""
        ...

    def save_cached_analysis(self, caption: str, product_info: ProductInfo | None) -> None: ...

    # -- outbox ------------------------------------------------------------

    def enqueue_outbox(
        self,
        entity_id: str,
        operation: OutboxOperation,
        payload: dict[str, Any],
    ) -> OutboxEntry: ...

    def list_pending_outbox(
        self,
        limit: int,
        entity_ids: Iterable[str] | None = None,
    ) -> list[OutboxEntry]:
        """Unprocessed entries in enqueue order."""
        ...

    def update_outbox(self, entry_id: int, fields: dict[str, Any]) -> None: ...

    # -- health ------------------------------------------------------------

    def ping(self) -> bool: ...
