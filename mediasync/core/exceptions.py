"""Exception hierarchy for the ingestion and sync pipeline.

Validation errors are permanent and never retried.  Transient errors are
retried with backoff by ``with_retry``.
"""

from __future__ import annotations


class MediaSyncError(Exception):
    """Base class for all pipeline errors."""


# ---------------------------------------------------------------------------
# Permanent
# ---------------------------------------------------------------------------


class PermanentError(MediaSyncError):
    """An error that will not go away by trying again."""


class UpdateValidationError(PermanentError):
    """Inbound update is malformed or carries nothing we can ingest."""


class MediaValidationError(PermanentError):
    """Media descriptor is missing required fields or exceeds limits."""


# ---------------------------------------------------------------------------
# Transient
# ---------------------------------------------------------------------------


class TransientError(MediaSyncError):
    """An infrastructure error that may succeed on a later attempt."""


class FetchError(TransientError):
    """Downloading a file from Telegram failed."""


class StorageError(TransientError):
    """Uploading to the blob store failed."""


class ExternalSyncError(TransientError):
    """The external system (Glide) rejected or failed a mutation."""


class RateLimitError(TransientError):
    """Remote service asked us to slow down."""

    def __init__(self, message: str = "rate limited", retry_after: float = 0.0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# Other
# ---------------------------------------------------------------------------


class CaptionAnalysisError(MediaSyncError):
    """Both the analyzer and the rule-based fallback failed."""


class ConcurrencyError(MediaSyncError):
    """A compare-and-swap update kept losing to concurrent writers."""


class RecordNotFoundError(MediaSyncError):
    """No media record exists for the given ``file_unique_ref``."""


class InvalidStateError(MediaSyncError):
    """The record is not in a state that allows the requested operation."""


class LLMResponseError(CaptionAnalysisError, PermanentError):
    """The LLM answered, but not with a JSON object of product fields."""
