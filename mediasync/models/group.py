"""Pydantic model for the ``media_groups`` table."""

from datetime import datetime

from pydantic import BaseModel

from mediasync.models.enums import GroupState
from mediasync.models.product import ProductInfo


class MediaGroup(BaseModel):
    """A Telegram album being reconciled.

    ``members`` is an ordered set of message ids.  ``version`` is bumped on
    every write and used for compare-and-swap updates.
    """

    group_id: str
    members: list[int] = []
    canonical_caption: str | None = None
    canonical_product_info: ProductInfo | None = None
    expected_size: int | None = None
    state: GroupState = GroupState.open
    has_conflict: bool = False
    last_seen_at: datetime
    settling_since: datetime | None = None
    completed_at: datetime | None = None
    version: int = 0

    @property
    def is_locked(self) -> bool:
        return self.state == GroupState.complete
