"""Media task processor: fetch from Telegram, upload to storage, record, enqueue.

One code path for every media kind; the kind only changes the storage
extension and content type.  State transitions on the record are
conditional so concurrent deliveries of the same file end with one stored
object and one INSERT outbox entry.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Protocol

from mediasync.core.constants import MAX_FILE_SIZE_BYTES
from mediasync.core.exceptions import (
    InvalidStateError,
    MediaValidationError,
    RecordNotFoundError,
)
from mediasync.db.repository import MediaRepository
from mediasync.models.enums import MediaKind, OutboxOperation, ProcessingState
from mediasync.models.media import MediaRecord, MediaTask
from mediasync.models.post import MediaRef
from mediasync.services.canonical import apply_canonical, outbox_payload
from mediasync.services.retry import RetryPolicy, with_retry
from mediasync.services.storage import mime_type_for, storage_key_for, thumbnail_key_for

logger = logging.getLogger(__name__)


class FileFetcher(Protocol):
    def fetch(self, file_ref: str) -> bytes: ...


class BlobStore(Protocol):
    def put(self, key: str, data: bytes, mime_type: str, *, upsert: bool = True) -> str: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_media(ref: MediaRef) -> None:
    """Raise ``MediaValidationError`` when *ref* cannot be processed."""
    if not ref.file_ref or not ref.file_unique_ref:
        raise MediaValidationError("Media has no file reference")
    if ref.kind in (MediaKind.photo, MediaKind.video) and (not ref.width or not ref.height):
        raise MediaValidationError(f"{ref.kind.value} is missing width or height")
    if ref.kind in (MediaKind.video, MediaKind.animation) and ref.duration_sec is None:
        raise MediaValidationError(f"{ref.kind.value} is missing duration")
    if ref.size_bytes is not None and ref.size_bytes > MAX_FILE_SIZE_BYTES:
        raise MediaValidationError(
            f"File is {ref.size_bytes} bytes, limit is {MAX_FILE_SIZE_BYTES}"
        )


class MediaTaskProcessor:
    """Turns a ``MediaTask`` into a STORED ``MediaRecord``."""

    def __init__(
        self,
        repository: MediaRepository,
        fetcher: FileFetcher,
        blob_store: BlobStore,
        *,
        policy: RetryPolicy | None = None,
        stale_after: timedelta = timedelta(minutes=5),
        resume_batch_size: int = 50,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._fetcher = fetcher
        self._blob_store = blob_store
        self._policy = policy or RetryPolicy()
        self._stale_after = stale_after
        self._resume_batch_size = resume_batch_size
        self._clock = clock

    # ------------------------------------------------------------------
    # Single attempt
    # ------------------------------------------------------------------

    def process(self, task: MediaTask) -> MediaRecord:
        """One attempt.  Failures are recorded on the record and re-raised."""
        ref = task.media_ref.file_unique_ref
        record, _ = self._repository.get_or_create_record(
            MediaRecord.pending_from_task(task, self._clock())
        )
        if record.deleted_at is not None:
            logger.info("media_skipped_deleted", extra={"file_unique_ref": ref})
            return record

        # A caption that improved since scheduling still reaches the record.
        record = apply_canonical(
            self._repository,
            record,
            task.caption,
            task.product_info,
            only_if_better=True,
        )

        if record.processing_state == ProcessingState.stored:
            logger.info(
                "media_already_stored",
                extra={"file_unique_ref": ref, "message_id": task.source_message_id},
            )
            return record
        if record.processing_state != ProcessingState.pending:
            logger.info(
                "media_skipped",
                extra={"file_unique_ref": ref, "state": record.processing_state.value},
            )
            return record

        try:
            validate_media(record.to_media_ref())
        except MediaValidationError as exc:
            self._record_failure(record, exc)
            raise

        claimed = self._repository.transition_record(
            ref,
            [ProcessingState.pending],
            {"processing_state": ProcessingState.processing},
        )
        if claimed is None:
            # Another worker got here first
            return self._repository.get_record(ref) or record

        media_ref = claimed.to_media_ref()
        key = storage_key_for(media_ref)
        mime_type = mime_type_for(media_ref)
        try:
            data = self._fetcher.fetch(claimed.file_ref)
            if len(data) > MAX_FILE_SIZE_BYTES:
                raise MediaValidationError(
                    f"File is {len(data)} bytes, limit is {MAX_FILE_SIZE_BYTES}"
                )
            public_url = self._blob_store.put(key, data, mime_type, upsert=True)
        except Exception as exc:
            self._record_failure(claimed, exc, release=True)
            raise

        thumbnail_url = self._store_thumbnail(media_ref)

        stored = self._repository.transition_record(
            ref,
            [ProcessingState.processing],
            {
                "processing_state": ProcessingState.stored,
                "storage_key": key,
                "public_url": public_url,
                "mime_type": mime_type,
                "size_bytes": len(data),
                "thumbnail_url": thumbnail_url,
                "last_error": None,
            },
        )
        if stored is None:
            return self._repository.get_record(ref) or claimed

        self._repository.enqueue_outbox(ref, OutboxOperation.insert, outbox_payload(stored))
        logger.info(
            "media_stored",
            extra={
                "file_unique_ref": ref,
                "group_id": stored.group_id,
                "storage_key": key,
                "bytes": len(data),
            },
        )
        return stored

    def _store_thumbnail(self, ref: MediaRef) -> str | None:
        """Upload the preview image, if any.  Failures are logged, never raised."""
        key = thumbnail_key_for(ref)
        if key is None or not ref.thumbnail_ref:
            return None
        try:
            data = self._fetcher.fetch(ref.thumbnail_ref)
            return self._blob_store.put(key, data, "image/jpeg", upsert=True)
        except Exception as exc:
            logger.warning(
                "thumbnail_store_failed",
                extra={
                    "file_unique_ref": ref.file_unique_ref,
                    "thumbnail_key": key,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
            return None

    def _record_failure(
        self,
        record: MediaRecord,
        exc: Exception,
        *,
        release: bool = False,
    ) -> None:
        fields = {
            "retry_count": record.retry_count + 1,
            "last_error": f"{type(exc).__name__}: {exc}",
        }
        if release:
            fields["processing_state"] = ProcessingState.pending
        self._repository.update_record(record.file_unique_ref, fields)

    # ------------------------------------------------------------------
    # With retry
    # ------------------------------------------------------------------

    def run(self, task: MediaTask) -> MediaRecord | None:
        """Process *task* with backoff; mark the record FAILED when out of attempts.

        Never raises: one failing file must not block its group or the batch.
        """
        ref = task.media_ref.file_unique_ref
        try:
            record, _ = self._repository.get_or_create_record(
                MediaRecord.pending_from_task(task, self._clock())
            )
            return with_retry(
                lambda: self.process(task),
                self._policy,
                start_attempt=record.retry_count,
                on_retry=lambda attempt, exc, delay: self._on_retry(ref, attempt, exc, delay),
            )
        except Exception as exc:
            return self._mark_failed(ref, exc)

    def _on_retry(self, ref: str, attempt: int, exc: BaseException, delay: float) -> None:
        logger.warning(
            "media_retry_scheduled",
            extra={
                "file_unique_ref": ref,
                "attempt": attempt,
                "delay_seconds": delay,
                "error_type": type(exc).__name__,
            },
        )

    def _mark_failed(self, ref: str, exc: Exception) -> MediaRecord | None:
        try:
            failed = self._repository.transition_record(
                ref,
                [ProcessingState.pending],
                {
                    "processing_state": ProcessingState.failed,
                    "last_error": f"{type(exc).__name__}: {exc}",
                },
            )
        except Exception as store_exc:
            logger.error(
                "media_failure_not_recorded",
                extra={
                    "file_unique_ref": ref,
                    "error_type": type(store_exc).__name__,
                    "error_message": str(store_exc),
                },
            )
            return None

        logger.error(
            "media_failed",
            extra={
                "file_unique_ref": ref,
                "retry_count": failed.retry_count if failed else None,
                "error_type": type(exc).__name__,
                "error_message": str(exc),
            },
        )
        return failed or self._repository.get_record(ref)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def resume_stale(self, now: datetime | None = None) -> int:
        """Re-run PENDING work nobody picked up and reset abandoned claims.

        FAILED records are left alone; see ``requeue``.
        """
        now = now or self._clock()
        cutoff = now - self._stale_after

        to_run: dict[str, MediaRecord] = {}
        for record in self._repository.list_records(
            states=[ProcessingState.processing], updated_before=cutoff
        ):
            reset = self._repository.transition_record(
                record.file_unique_ref,
                [ProcessingState.processing],
                {"processing_state": ProcessingState.pending},
            )
            if reset is not None:
                logger.warning(
                    "media_claim_expired",
                    extra={"file_unique_ref": record.file_unique_ref},
                )
                to_run[reset.file_unique_ref] = reset

        for record in self._repository.list_records(
            states=[ProcessingState.pending],
            updated_before=cutoff,
            limit=self._resume_batch_size,
        ):
            to_run.setdefault(record.file_unique_ref, record)

        for record in to_run.values():
            self.run(record.to_task())

        if to_run:
            logger.info("media_resumed", extra={"count": len(to_run)})
        return len(to_run)

    def requeue(self, file_unique_ref: str) -> MediaRecord:
        """Reset a FAILED record to PENDING with a fresh attempt budget."""
        record = self._repository.get_record(file_unique_ref)
        if record is None or record.deleted_at is not None:
            raise RecordNotFoundError(file_unique_ref)

        requeued = self._repository.transition_record(
            file_unique_ref,
            [ProcessingState.failed],
            {
                "processing_state": ProcessingState.pending,
                "retry_count": 0,
                "last_error": None,
            },
        )
        if requeued is None:
            raise InvalidStateError(
                f"Record is {record.processing_state.value}, only FAILED records can be requeued"
            )
        logger.info("media_requeued", extra={"file_unique_ref": file_unique_ref})
        return requeued

    def delete(self, file_unique_ref: str) -> MediaRecord:
        """Soft-delete a record and queue its removal from Glide."""
        record = self._repository.get_record(file_unique_ref)
        if record is None:
            raise RecordNotFoundError(file_unique_ref)
        if record.deleted_at is not None:
            return record

        deleted = self._repository.update_record(
            file_unique_ref, {"deleted_at": self._clock()}
        )
        self._repository.enqueue_outbox(
            file_unique_ref, OutboxOperation.delete, outbox_payload(deleted)
        )
        logger.info("media_deleted", extra={"file_unique_ref": file_unique_ref})
        return deleted

    def regenerate_thumbnails(
        self,
        file_unique_refs: list[str] | None = None,
        limit: int = 50,
    ) -> list[str]:
        """Store thumbnails that are missing on STORED records.

        Returns the refs that got one; each is re-synced to Glide.
        """
        wanted = set(file_unique_refs) if file_unique_refs else None
        candidates = [
            record
            for record in self._repository.list_records(states=[ProcessingState.stored])
            if record.thumbnail_ref
            and not record.thumbnail_url
            and (wanted is None or record.file_unique_ref in wanted)
        ][:limit]

        regenerated: list[str] = []
        for record in candidates:
            url = self._store_thumbnail(record.to_media_ref())
            if url is None:
                continue
            updated = self._repository.update_record(
                record.file_unique_ref, {"thumbnail_url": url}
            )
            if updated.processing_state == ProcessingState.stored and updated.deleted_at is None:
                self._repository.enqueue_outbox(
                    updated.file_unique_ref, OutboxOperation.update, outbox_payload(updated)
                )
            regenerated.append(updated.file_unique_ref)

        logger.info(
            "thumbnails_regenerated",
            extra={"candidates": len(candidates), "regenerated": len(regenerated)},
        )
        return regenerated
