"""Outbox drainer: applies queued media changes to Glide.

Entries are applied in enqueue order.  A failed entry keeps
``processed_at`` unset and is retried on the next cycle; later entries of
the same entity wait behind it so Glide sees changes in order.  Other
entities are not affected.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any, Protocol

from mediasync.db.repository import MediaRepository
from mediasync.models.enums import OutboxOperation
from mediasync.models.outbox import OutboxEntry, SyncResult
from mediasync.services.glide import map_record_to_glide

logger = logging.getLogger(__name__)


class GlideWriter(Protocol):
    def add_row(self, table_name: str, columns: dict[str, Any]) -> str | None: ...

    def set_columns(self, table_name: str, row_id: str, columns: dict[str, Any]) -> None: ...

    def delete_row(self, table_name: str, row_id: str) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OutboxDrainer:
    """Drains ``glide_sync_queue`` in batches."""

    def __init__(
        self,
        repository: MediaRepository,
        glide: GlideWriter,
        *,
        table_name: str = "",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._glide = glide
        self._table_name = table_name
        self._clock = clock

    def drain(
        self,
        batch_size: int = 50,
        entity_ids: Iterable[str] | None = None,
        table_name: str | None = None,
    ) -> SyncResult:
        """Apply up to *batch_size* pending entries.

        Never raises for a single entry; failures are counted in
        ``SyncResult.errors`` and recorded on the entry.
        """
        table = table_name or self._table_name
        result = SyncResult()
        blocked: set[str] = set()

        entries = self._repository.list_pending_outbox(batch_size, entity_ids)
        for entry in entries:
            if entry.entity_id in blocked:
                continue
            try:
                self._apply(entry, table, result)
                self._repository.update_outbox(
                    entry.id, {"processed_at": self._clock(), "error": None}
                )
            except Exception as exc:
                blocked.add(entry.entity_id)
                result.errors.append(f"Error processing item {entry.id}: {exc}")
                logger.error(
                    "outbox_entry_failed",
                    extra={
                        "entry_id": entry.id,
                        "entity_id": entry.entity_id,
                        "operation": entry.operation.value,
                        "retry_count": entry.retry_count + 1,
                        "error_type": type(exc).__name__,
                        "error_message": str(exc),
                    },
                )
                self._record_error(entry, exc)

        logger.info(
            "outbox_drained",
            extra={
                "entries": len(entries),
                "added": result.added,
                "updated": result.updated,
                "deleted": result.deleted,
                "errors": len(result.errors),
            },
        )
        return result

    def _record_error(self, entry: OutboxEntry, exc: Exception) -> None:
        try:
            self._repository.update_outbox(
                entry.id,
                {"error": str(exc), "retry_count": entry.retry_count + 1},
            )
        except Exception as store_exc:
            logger.error(
                "outbox_error_not_recorded",
                extra={"entry_id": entry.id, "error_message": str(store_exc)},
            )

    def _row_id(self, entry: OutboxEntry) -> str | None:
        record = self._repository.get_record(entry.entity_id)
        if record is not None and record.external_id:
            return record.external_id
        return entry.payload_snapshot.get("external_id")

    def _apply(self, entry: OutboxEntry, table: str, result: SyncResult) -> None:
        columns = map_record_to_glide(entry.payload_snapshot)
        row_id = self._row_id(entry)

        if entry.operation == OutboxOperation.delete:
            if row_id:
                self._glide.delete_row(table, row_id)
            self._repository.purge_record(entry.entity_id)
            result.deleted += 1
            return

        if row_id:
            # Re-applied INSERTs and ordinary UPDATEs both address the existing row
            self._glide.set_columns(table, row_id, columns)
            if entry.operation == OutboxOperation.insert:
                result.added += 1
            else:
                result.updated += 1
            return

        # No row yet: an UPDATE that overtook its INSERT creates the row
        new_row_id = self._glide.add_row(table, columns)
        if new_row_id and self._repository.get_record(entry.entity_id) is not None:
            self._repository.update_record(entry.entity_id, {"external_id": new_row_id})
        result.added += 1
