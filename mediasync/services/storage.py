"""Blob store on Supabase Storage.

Keys are derived from ``file_unique_ref`` so repeated uploads of the same
file overwrite one object instead of creating copies.
"""

from __future__ import annotations

import logging

from supabase import Client

from mediasync.core.constants import (
    DEFAULT_EXTENSIONS,
    DEFAULT_MIME_TYPES,
    EXTENSIONS_BY_MIME_TYPE,
    MIME_TYPES_BY_EXTENSION,
)
from mediasync.core.exceptions import StorageError
from mediasync.models.enums import MediaKind
from mediasync.models.post import MediaRef

logger = logging.getLogger(__name__)


def _file_name_extension(file_name: str | None) -> str | None:
    if not file_name or "." not in file_name:
        return None
    ext = file_name.rsplit(".", 1)[1].lower()
    return ext or None


def extension_for(ref: MediaRef) -> str:
    """Pick the storage extension for a media reference."""
    if ref.kind == MediaKind.photo:
        return DEFAULT_EXTENSIONS["photo"]

    if ref.kind == MediaKind.document:
        ext = _file_name_extension(ref.file_name)
        if ext:
            return ext

    if ref.mime_type:
        ext = EXTENSIONS_BY_MIME_TYPE.get(ref.mime_type.lower())
        if ext:
            return ext

    return DEFAULT_EXTENSIONS[ref.kind.value]


def mime_type_for(ref: MediaRef) -> str:
    """Content type to upload with."""
    if ref.mime_type:
        return ref.mime_type
    ext = _file_name_extension(ref.file_name)
    if ext and ext in MIME_TYPES_BY_EXTENSION:
        return MIME_TYPES_BY_EXTENSION[ext]
    return DEFAULT_MIME_TYPES[ref.kind.value]


def storage_key_for(ref: MediaRef) -> str:
    """``<file_unique_ref>.<ext>``; stable across retries and re-deliveries."""
    return f"{ref.file_unique_ref}.{extension_for(ref)}"


def thumbnail_key_for(ref: MediaRef) -> str | None:
    """Telegram thumbnails are always JPEG; keyed by their own unique id."""
    if not ref.thumbnail_unique_ref:
        return None
    return f"{ref.thumbnail_unique_ref}.jpg"


class SupabaseBlobStore:
    """Key -> public URL storage backed by one Supabase bucket."""

    def __init__(self, client: Client, bucket: str) -> None:
        self._client = client
        self._bucket = bucket

    def _bucket_api(self):
        return self._client.storage.from_(self._bucket)

    def put(self, key: str, data: bytes, mime_type: str, *, upsert: bool = True) -> str:
        """Upload *data* under *key* and return its public URL."""
        try:
            self._bucket_api().upload(
                path=key,
                file=data,
                file_options={
                    "content-type": mime_type,
                    "cache-control": "3600",
                    "upsert": "true" if upsert else "false",
                },
            )
        except Exception as exc:
            raise StorageError(f"Upload of {key} failed: {exc}") from exc

        logger.info(
            "blob_uploaded",
            extra={"key": key, "bytes": len(data), "mime_type": mime_type},
        )
        return self.public_url(key)

    def exists(self, key: str) -> bool:
        try:
            entries = self._bucket_api().list("", {"search": key})
        except Exception as exc:
            raise StorageError(f"Listing {key} failed: {exc}") from exc
        return any(entry.get("name") == key for entry in entries or [])

    def public_url(self, key: str) -> str:
        return self._bucket_api().get_public_url(key).rstrip("?")
