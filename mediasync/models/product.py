"""Structured product fields extracted from captions, and the merge rules
that decide which caption a media group agrees on.
"""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, ConfigDict

PRODUCT_FIELDS: tuple[str, ...] = (
    "product_name",
    "product_code",
    "vendor_uid",
    "purchase_date",
    "quantity",
    "notes",
)


class ProductInfo(BaseModel):
    """Fields returned by the caption analyzer."""
    model_config = ConfigDict(frozen=True)

    product_name: str | None = None
    product_code: str | None = None
    vendor_uid: str | None = None
    purchase_date: date | None = None
    quantity: int | None = None
    notes: str | None = None

    def field_count(self) -> int:
        """Number of populated fields."""
        return sum(1 for name in PRODUCT_FIELDS if getattr(self, name) not in (None, ""))

    def is_empty(self) -> bool:
        return self.field_count() == 0


def merge_product_info(
    existing: ProductInfo | None,
    incoming: ProductInfo | None,
) -> ProductInfo | None:
    """Return whichever analysis has more populated fields.

    Ties keep *existing*, so the first arrival wins between equals.
    """
    existing_score = existing.field_count() if existing else 0
    incoming_score = incoming.field_count() if incoming else 0
    if incoming_score > existing_score:
        return incoming
    return existing if existing_score > 0 else None


def completeness(caption: str | None, product_info: ProductInfo | None) -> int:
    """Rank a caption/analysis pair.

    2 = caption with analysis, 1 = caption only, 0 = neither.
    """
    if not caption:
        return 0
    if product_info is None or product_info.is_empty():
        return 1
    return 2


def choose_canonical(
    existing_caption: str | None,
    existing_info: ProductInfo | None,
    incoming_caption: str | None,
    incoming_info: ProductInfo | None,
) -> tuple[str | None, ProductInfo | None, bool]:
    """Apply "most complete wins" to a group's canonical fields.

    Returns ``(caption, product_info, conflict)``.  ``conflict`` is True when
    both sides carry a different non-empty caption; the existing (first
    arrived) one is kept in that case.
    """
    existing_rank = completeness(existing_caption, existing_info)
    incoming_rank = completeness(incoming_caption, incoming_info)

    if incoming_rank == 0:
        return existing_caption, existing_info, False

    if existing_rank == 0:
        return incoming_caption, incoming_info, False

    if existing_caption == incoming_caption:
        return existing_caption, merge_product_info(existing_info, incoming_info), False

    if incoming_rank > existing_rank:
        return incoming_caption, incoming_info, False

    return existing_caption, existing_info, True
