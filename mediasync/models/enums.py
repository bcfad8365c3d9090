"""Enum types mirroring the PostgreSQL columns used by the pipeline."""

from enum import Enum


class MediaKind(str, Enum):
    """Telegram media kinds the pipeline stores."""
    photo = "photo"
    video = "video"
    document = "document"
    animation = "animation"


class ProcessingState(str, Enum):
    """Lifecycle of a ``MediaRecord``."""
    pending = "PENDING"
    processing = "PROCESSING"
    stored = "STORED"
    failed = "FAILED"


TERMINAL_STATES: frozenset[ProcessingState] = frozenset(
    {ProcessingState.stored, ProcessingState.failed}
)


class GroupState(str, Enum):
    """Lifecycle of a ``MediaGroup``."""
    open = "OPEN"
    settling = "SETTLING"
    complete = "COMPLETE"


class OutboxOperation(str, Enum):
    """Mutation applied to the external system."""
    insert = "INSERT"
    update = "UPDATE"
    delete = "DELETE"


class IngestionStatus(str, Enum):
    """Outcome of handing an update to the ingestion gateway."""
    accepted = "accepted"
    duplicate = "duplicate"
    rejected = "rejected"
