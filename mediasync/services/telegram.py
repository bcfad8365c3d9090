"""Telegram Bot API file fetcher.

Resolves a ``file_id`` through ``getFile`` and downloads the bytes.  Errors
surface as ``FetchError`` / ``RateLimitError`` so the retry combinator can
decide what to do.
"""

from __future__ import annotations

import logging

import httpx

from mediasync.core.exceptions import FetchError, MediaValidationError, RateLimitError
from mediasync.services.retry import parse_retry_after

logger = logging.getLogger(__name__)


class TelegramFileFetcher:
    """Downloads files from the Bot API with per-call timeouts."""

    def __init__(
        self,
        bot_token: str,
        *,
        api_base: str = "https://api.telegram.org",
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._bot_token = bot_token
        self._api_base = api_base.rstrip("/")
        self._http = http_client or httpx.Client(timeout=timeout)

    def _check(self, response: httpx.Response, what: str) -> None:
        if response.status_code == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            try:
                payload = response.json()
            except ValueError:
                payload = None
            if isinstance(payload, dict) and isinstance(payload.get("parameters"), dict):
                retry_after = parse_retry_after(payload["parameters"].get("retry_after")) or retry_after
            raise RateLimitError(f"Telegram rate limited {what}", retry_after=retry_after)
        if response.status_code == 400:
            # Bot API answers 400 for unknown or too-big files
            raise MediaValidationError(f"Telegram rejected {what}: {response.text}")
        if response.is_error:
            raise FetchError(f"Telegram {what} failed: HTTP {response.status_code}")

    def fetch(self, file_ref: str) -> bytes:
        """Return the raw bytes of the file identified by *file_ref*."""
        if not self._bot_token:
            raise FetchError("TELEGRAM_BOT_TOKEN is not configured")

        try:
            info = self._http.get(
                f"{self._api_base}/bot{self._bot_token}/getFile",
                params={"file_id": file_ref},
            )
            self._check(info, "getFile")
            payload = info.json()
            file_path = (payload.get("result") or {}).get("file_path")
            if not payload.get("ok") or not file_path:
                raise FetchError("Telegram getFile returned no file_path")

            download = self._http.get(
                f"{self._api_base}/file/bot{self._bot_token}/{file_path}"
            )
            self._check(download, "download")
        except httpx.HTTPError as exc:
            raise FetchError(f"Telegram request failed: {exc}") from exc

        logger.debug(
            "telegram_file_fetched",
            extra={"file_path": file_path, "bytes": len(download.content)},
        )
        return download.content
