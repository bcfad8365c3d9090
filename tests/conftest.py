"""Shared test fixtures.

Provides an in-memory pipeline (repository, fake Telegram fetcher, fake
blob store, fake Glide client, controllable clock) and a ``test_client``
for FastAPI with the pipeline dependency overridden.
"""

import os

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-key")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("TELEGRAM_WEBHOOK_SECRET", "")

from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from fastapi.testclient import TestClient

from mediasync.core.exceptions import FetchError
from mediasync.db.memory import InMemoryRepository
from mediasync.services.caption import CaptionAnalyzer
from mediasync.services.gateway import IngestionGateway
from mediasync.services.media_processor import MediaTaskProcessor
from mediasync.services.pipeline import Pipeline, get_pipeline
from mediasync.services.reconciler import GroupReconciler
from mediasync.services.retry import RetryPolicy
from mediasync.services.sync import OutboxDrainer


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeFetcher:
    """Returns canned bytes; raises ``error`` for the next ``failures`` calls.

    A negative ``failures`` makes every call fail.
    """

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.error: Exception = FetchError("connection reset")
        self.failures = 0
        self.content = b"\xff\xd8fake-image-bytes"

    def fetch(self, file_ref: str) -> bytes:
        self.calls.append(file_ref)
        if self.failures != 0:
            if self.failures > 0:
                self.failures -= 1
            raise self.error
        return self.content


class FakeBlobStore:
    """Keeps uploads in a dict."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.puts: list[tuple[str, str, bool]] = []

    def put(self, key: str, data: bytes, mime_type: str, *, upsert: bool = True) -> str:
        self.puts.append((key, mime_type, upsert))
        self.objects[key] = data
        return f"https://storage.test/telegram-media/{key}"


class FakeGlide:
    """Records mutations; entity ids listed in ``failing`` raise."""

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str | None, dict[str, Any] | None]] = []
        self.failing: set[str] = set()
        self._next_row = 0

    def _check(self, columns: dict[str, Any] | None, row_id: str | None) -> None:
        file_id = (columns or {}).get("file_unique_id")
        if file_id in self.failing or row_id in self.failing:
            raise RuntimeError("Glide API error: 500")

    def add_row(self, table_name: str, columns: dict[str, Any]) -> str | None:
        self._check(columns, None)
        self._next_row += 1
        row_id = f"row-{self._next_row}"
        self.rows[row_id] = dict(columns)
        self.calls.append(("add", row_id, columns))
        return row_id

    def set_columns(self, table_name: str, row_id: str, columns: dict[str, Any]) -> None:
        self._check(columns, row_id)
        self.rows.setdefault(row_id, {}).update(columns)
        self.calls.append(("set", row_id, columns))

    def delete_row(self, table_name: str, row_id: str) -> None:
        self._check(None, row_id)
        self.rows.pop(row_id, None)
        self.calls.append(("delete", row_id, None))


# ---------------------------------------------------------------------------
# Pipeline fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def repository(clock: FakeClock) -> InMemoryRepository:
    return InMemoryRepository(clock=clock)


@pytest.fixture()
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture()
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture()
def glide() -> FakeGlide:
    return FakeGlide()


@pytest.fixture()
def sleeps() -> list[float]:
    """Delays requested by the retry policy (nothing actually sleeps)."""
    return []


@pytest.fixture()
def retry_policy(sleeps: list[float]) -> RetryPolicy:
    return RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=30.0, sleep=sleeps.append)


@pytest.fixture()
def analyzer(repository: InMemoryRepository) -> CaptionAnalyzer:
    return CaptionAnalyzer(repository)


@pytest.fixture()
def reconciler(
    repository: InMemoryRepository,
    analyzer: CaptionAnalyzer,
    clock: FakeClock,
) -> GroupReconciler:
    return GroupReconciler(
        repository,
        analyzer,
        quiet_window=timedelta(seconds=10),
        max_group_size=10,
        settle_timeout=timedelta(seconds=300),
        retention=timedelta(seconds=3600),
        clock=clock,
    )


@pytest.fixture()
def processor(
    repository: InMemoryRepository,
    fetcher: FakeFetcher,
    blob_store: FakeBlobStore,
    retry_policy: RetryPolicy,
    clock: FakeClock,
) -> MediaTaskProcessor:
    return MediaTaskProcessor(
        repository,
        fetcher,
        blob_store,
        policy=retry_policy,
        stale_after=timedelta(seconds=300),
        clock=clock,
    )


@pytest.fixture()
def drainer(
    repository: InMemoryRepository,
    glide: FakeGlide,
    clock: FakeClock,
) -> OutboxDrainer:
    return OutboxDrainer(repository, glide, table_name="native-table-media", clock=clock)


@pytest.fixture()
def gateway(
    repository: InMemoryRepository,
    reconciler: GroupReconciler,
    clock: FakeClock,
) -> IngestionGateway:
    return IngestionGateway(repository, reconciler, clock=clock)


@pytest.fixture()
def pipeline(
    repository: InMemoryRepository,
    gateway: IngestionGateway,
    reconciler: GroupReconciler,
    processor: MediaTaskProcessor,
    drainer: OutboxDrainer,
) -> Pipeline:
    return Pipeline(
        repository=repository,
        gateway=gateway,
        reconciler=reconciler,
        processor=processor,
        drainer=drainer,
    )


# ---------------------------------------------------------------------------
# Telegram payloads
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_update() -> Callable[..., dict[str, Any]]:
    """Build a Telegram ``message`` update carrying one photo."""

    def _make(
        message_id: int,
        *,
        chat_id: int = -100123,
        file_unique_id: str | None = None,
        caption: str | None = None,
        media_group_id: str | None = None,
        update_id: int | None = None,
    ) -> dict[str, Any]:
        unique = file_unique_id or f"uniq-{message_id}"
        message: dict[str, Any] = {
            "message_id": message_id,
            "date": 1714564800,
            "chat": {"id": chat_id, "type": "channel"},
            "photo": [
                {"file_id": f"small-{unique}", "file_unique_id": f"s-{unique}",
                 "file_size": 1200, "width": 90, "height": 90},
                {"file_id": f"file-{unique}", "file_unique_id": unique,
                 "file_size": 84000, "width": 1280, "height": 960},
            ],
        }
        if caption is not None:
            message["caption"] = caption
        if media_group_id is not None:
            message["media_group_id"] = media_group_id
        return {"update_id": update_id or 900000 + message_id, "message": message}

    return _make


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_client(pipeline: Pipeline) -> Generator[TestClient, None, None]:
    """Provide a FastAPI TestClient wired to the in-memory pipeline."""
    from mediasync.main import app

    app.dependency_overrides[get_pipeline] = lambda: pipeline
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
