"""Writing canonical caption fields onto media records.

Shared by the reconciler (group back-propagation) and the media processor
(caption improvements on already stored files).  Every change to a STORED
record is mirrored into the outbox as an UPDATE.
"""

from __future__ import annotations

import logging
from typing import Any

from mediasync.db.repository import MediaRepository
from mediasync.models.enums import OutboxOperation, ProcessingState
from mediasync.models.media import MediaRecord
from mediasync.models.product import ProductInfo, completeness

logger = logging.getLogger(__name__)


def outbox_payload(record: MediaRecord) -> dict[str, Any]:
    """JSON snapshot of *record* stored with each outbox entry."""
    return record.model_dump(mode="json")


def apply_canonical(
    repository: MediaRepository,
    record: MediaRecord,
    caption: str | None,
    product_info: ProductInfo | None,
    *,
    only_if_better: bool = False,
) -> MediaRecord:
    """Set *caption* / *product_info* on *record* when they differ.

    With ``only_if_better`` the write happens only when the new pair ranks
    strictly higher than what the record carries.  Returns the record as
    stored afterwards.
    """
    if record.caption == caption and record.product_info == product_info:
        return record
    if completeness(caption, product_info) == 0:
        return record
    if only_if_better and completeness(caption, product_info) <= completeness(
        record.caption, record.product_info
    ):
        return record

    updated = repository.update_record(
        record.file_unique_ref,
        {"caption": caption, "product_info": product_info},
    )
    # State is read after our write, so a concurrent STORED transition
    # either already includes these fields or is observed here.
    if updated.processing_state == ProcessingState.stored and updated.deleted_at is None:
        repository.enqueue_outbox(
            updated.file_unique_ref,
            OutboxOperation.update,
            outbox_payload(updated),
        )

    logger.debug(
        "canonical_applied",
        extra={
            "file_unique_ref": record.file_unique_ref,
            "group_id": record.group_id,
            "state": updated.processing_state.value,
        },
    )
    return updated
