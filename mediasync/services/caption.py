"""Caption analysis: LLM primary + rule-based fallback.

Captions follow the convention ``<product name> #<VENDOR><mmDDyy> x<qty> (<notes>)``.
The LLM is asked to extract those fields; when it is not configured or
fails, ``parse_caption`` applies the same convention with regular
expressions.  Results are memoized per distinct caption, in process and in
the repository, so a caption is analyzed once no matter how often it is
delivered.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from datetime import date
from typing import Any

import httpx
from pydantic import ValidationError

from mediasync.core.constants import CAPTION_SYSTEM_PROMPT
from mediasync.core.exceptions import CaptionAnalysisError, LLMResponseError, RateLimitError
from mediasync.db.repository import MediaRepository
from mediasync.models.product import ProductInfo
from mediasync.services.retry import RetryPolicy, parse_retry_after, with_retry

logger = logging.getLogger(__name__)

_NOTES_RE = re.compile(r"\(([^)]*)\)")
_CODE_RE = re.compile(r"#\s*([A-Za-z]+)(\d{5,6})\b")
_QUANTITY_RE = re.compile(r"\bx\s*(\d+)\b", re.IGNORECASE)
_SPACES_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Rule-based extraction
# ---------------------------------------------------------------------------


def parse_purchase_date(digits: str) -> date | None:
    """Decode an ``mmDDyy`` code; five digits mean a single-digit month."""
    if len(digits) == 5:
        digits = "0" + digits
    if len(digits) != 6 or not digits.isdigit():
        return None
    month, day, year = int(digits[:2]), int(digits[2:4]), int(digits[4:])
    try:
        return date(2000 + year, month, day)
    except ValueError:
        return None


def _clean(text: str) -> str:
    return _SPACES_RE.sub(" ", text).strip(" -,;:")


def parse_caption(caption: str) -> ProductInfo | None:
    """Extract product fields from *caption* without any external service.

    Returns None when nothing could be extracted.
    """
    if not caption or not caption.strip():
        return None

    text = caption
    notes_parts = [part.strip() for part in _NOTES_RE.findall(text) if part.strip()]
    text = _NOTES_RE.sub(" ", text)

    product_code = vendor_uid = None
    purchase_date = None
    name_text = text
    code_match = _CODE_RE.search(text)
    if code_match:
        letters, digits = code_match.group(1), code_match.group(2)
        product_code = f"{letters}{digits}"
        vendor_uid = letters.upper()
        purchase_date = parse_purchase_date(digits)
        name_text = text[: code_match.start()]
        remainder = text[code_match.end():]
    else:
        remainder = ""

    quantity = None
    qty_match = _QUANTITY_RE.search(remainder)
    if qty_match:
        quantity = int(qty_match.group(1))
        remainder = remainder[: qty_match.start()] + remainder[qty_match.end():]
    else:
        qty_match = _QUANTITY_RE.search(name_text)
        if qty_match:
            quantity = int(qty_match.group(1))
            name_text = name_text[: qty_match.start()] + name_text[qty_match.end():]

    leftover = _clean(remainder)
    if leftover:
        notes_parts.append(leftover)

    info = ProductInfo(
        product_name=_clean(name_text) or None,
        product_code=product_code,
        vendor_uid=vendor_uid,
        purchase_date=purchase_date,
        quantity=quantity,
        notes="; ".join(notes_parts) or None,
    )
    return None if info.is_empty() else info


# ---------------------------------------------------------------------------
# LLM extraction
# ---------------------------------------------------------------------------


def _strip_code_fence(content: str) -> str:
    clean = content.strip()
    if clean.startswith("```"):
        lines = [line for line in clean.split("\n") if not line.strip().startswith("```")]
        clean = "\n".join(lines)
    return clean


def _decode_fields(data: Any) -> dict[str, Any]:
    """Pull the JSON object out of a chat-completions response body.

    Raises ``LLMResponseError`` for any other shape.
    """
    try:
        raw = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise LLMResponseError(f"Unexpected LLM response: {exc!r}") from exc
    if not isinstance(raw, str):
        raise LLMResponseError(f"LLM content is {type(raw).__name__}, not text")
    try:
        content = json.loads(_strip_code_fence(raw))
    except json.JSONDecodeError as exc:
        raise LLMResponseError(f"LLM content is not JSON: {exc}") from exc
    if not isinstance(content, dict):
        raise LLMResponseError(f"LLM content is {type(content).__name__}, not an object")
    return content


class LLMCaptionExtractor:
    """Extracts product fields through an OpenAI-compatible chat API."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gpt-4o-mini",
        provider: str = "openai",
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._api_url = "https://api.openai.com/v1/chat/completions"
        if provider != "openai":
            self._api_url = f"https://api.{provider}.com/v1/chat/completions"
        self._http = http_client or httpx.Client(timeout=timeout)

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    def extract(self, caption: str) -> ProductInfo | None:
        response = self._http.post(
            self._api_url,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": self._model,
                "messages": [
                    {"role": "system", "content": CAPTION_SYSTEM_PROMPT},
                    {"role": "user", "content": caption},
                ],
                "temperature": 0.1,
            },
        )
        if response.status_code == 429:
            raise RateLimitError(
                "LLM rate limited",
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        response.raise_for_status()
        content = _decode_fields(response.json())
        fields = {
            key: content.get(key)
            for key in ProductInfo.model_fields
            if content.get(key) not in (None, "")
        }
        try:
            info = ProductInfo.model_validate(fields)
        except ValidationError as exc:
            raise LLMResponseError(f"LLM fields are invalid: {exc}") from exc
        return None if info.is_empty() else info


# ---------------------------------------------------------------------------
# Memoizing analyzer
# ---------------------------------------------------------------------------


class CaptionAnalyzer:
    """``analyze(text) -> ProductInfo | None`` with caching and fallback."""

    def __init__(
        self,
        repository: MediaRepository,
        llm: LLMCaptionExtractor | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._repository = repository
        self._llm = llm
        self._retry_policy = retry_policy or RetryPolicy(max_attempts=2, base_delay=0.5)
        self._memo: dict[str, ProductInfo | None] = {}
        self._lock = threading.Lock()
        # One in-flight analysis per caption; waiters reuse its result
        self._inflight: dict[str, threading.Lock] = {}

    def analyze(self, caption: str) -> ProductInfo | None:
        """Analyze *caption* once; later calls return the cached result.

        Raises ``CaptionAnalysisError`` only when both the LLM and the
        rule-based fallback fail; such failures are not cached.
        """
        caption = caption.strip()
        if not caption:
            return None

        with self._lock:
            if caption in self._memo:
                return self._memo[caption]
            caption_lock = self._inflight.setdefault(caption, threading.Lock())

        with caption_lock:
            with self._lock:
                if caption in self._memo:
                    return self._memo[caption]
            try:
                info = self._load_or_analyze(caption)
                with self._lock:
                    self._memo[caption] = info
            finally:
                with self._lock:
                    self._inflight.pop(caption, None)
        return info

    def _load_or_analyze(self, caption: str) -> ProductInfo | None:
        hit, cached = self._repository.get_cached_analysis(caption)
        if hit:
            return cached
        info = self._analyze_uncached(caption)
        self._repository.save_cached_analysis(caption, info)
        return info

    def _analyze_uncached(self, caption: str) -> ProductInfo | None:
        if self._llm is not None and self._llm.enabled:
            try:
                info = with_retry(lambda: self._llm.extract(caption), self._retry_policy)
                logger.info(
                    "caption_analyzed",
                    extra={"method": "llm", "fields": info.field_count() if info else 0},
                )
                return info
            except (
                httpx.HTTPError,
                ValueError,
                LLMResponseError,
                RateLimitError,
            ) as exc:
                logger.warning(
                    "caption_llm_failed_falling_back",
                    extra={
                        "error_type": type(exc).__name__,
                        "error_message": str(exc),
                    },
                )

        try:
            info = parse_caption(caption)
        except (ValueError, ValidationError) as exc:
            raise CaptionAnalysisError(f"Caption could not be analyzed: {exc}") from exc

        logger.info(
            "caption_analyzed",
            extra={"method": "rules", "fields": info.field_count() if info else 0},
        )
        return info
