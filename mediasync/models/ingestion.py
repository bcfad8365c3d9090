"""Result model returned by the ingestion gateway."""

from pydantic import BaseModel, Field

from mediasync.models.enums import IngestionStatus
from mediasync.models.media import MediaTask
from mediasync.models.post import IncomingPost


class IngestionResult(BaseModel):
    """Outcome of ``IngestionGateway.receive``.

    ``tasks`` are the media tasks the reconciler scheduled; the caller runs
    them after acknowledging the webhook.
    """
    status: IngestionStatus
    reason: str | None = None
    post: IncomingPost | None = None
    tasks: list[MediaTask] = Field(default_factory=list)
