"""Endpoint tests: webhook, sync, media management, groups and health."""

from __future__ import annotations

from typing import Any, Callable
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient

from mediasync.core.config import settings
from mediasync.db.memory import InMemoryRepository
from mediasync.models.enums import GroupState, OutboxOperation, ProcessingState
from mediasync.services.pipeline import Pipeline


class TestWebhook:
    def test_accepts_update_and_processes_in_background(
        self,
        test_client: TestClient,
        repository: InMemoryRepository,
        make_update: Callable[..., dict[str, Any]],
    ) -> None:
        response = test_client.post("/webhook", json=make_update(1, caption="Hat x2"))

        assert response.status_code == 200
        assert response.json() == {"ok": True, "status": "accepted"}
        record = repository.get_record("uniq-1")
        assert record.processing_state == ProcessingState.stored
        assert record.product_info.quantity == 2

    def test_duplicate_delivery(
        self,
        test_client: TestClient,
        repository: InMemoryRepository,
        make_update: Callable[..., dict[str, Any]],
    ) -> None:
        update = make_update(1)
        test_client.post("/webhook", json=update)
        response = test_client.post("/webhook", json=update)

        assert response.json() == {"ok": True, "status": "duplicate"}
        assert len(repository.all_outbox()) == 1

    def test_rejected_update_still_200(self, test_client: TestClient) -> None:
        response = test_client.post("/webhook", json={"update_id": 1, "poll": {}})

        assert response.status_code == 200
        assert response.json() == {
            "ok": True,
            "status": "rejected",
            "reason": "Update contains no message",
        }

    def test_undecodable_body_is_acknowledged(self, test_client: TestClient) -> None:
        for body in (b"not json", b"", b"\xc3\x28"):
            response = test_client.post(
                "/webhook", content=body, headers={"Content-Type": "application/json"}
            )

            assert response.status_code == 200
            assert response.json() == {
                "ok": True,
                "status": "rejected",
                "reason": "Update body is not an object",
            }

    def test_wrong_secret_is_403(
        self, test_client: TestClient, make_update: Callable[..., dict[str, Any]]
    ) -> None:
        with patch.object(settings, "TELEGRAM_WEBHOOK_SECRET", "s3cret"):
            missing = test_client.post("/webhook", json=make_update(1))
            wrong = test_client.post(
                "/webhook",
                json=make_update(1),
                headers={"X-Telegram-Bot-Api-Secret-Token": "nope"},
            )
            right = test_client.post(
                "/webhook",
                json=make_update(1),
                headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"},
            )

        assert missing.status_code == 403
        assert wrong.status_code == 403
        assert right.status_code == 200

    def test_internal_failure_is_500(
        self,
        test_client: TestClient,
        pipeline: Pipeline,
        make_update: Callable[..., dict[str, Any]],
    ) -> None:
        with patch.object(
            pipeline.gateway, "receive", side_effect=RuntimeError("datastore down")
        ):
            response = test_client.post("/webhook", json=make_update(1))

        assert response.status_code == 500
        assert "datastore" not in response.text

    def test_media_group_scenario(
        self,
        test_client: TestClient,
        repository: InMemoryRepository,
        make_update: Callable[..., dict[str, Any]],
        clock,
    ) -> None:
        test_client.post("/webhook", json=make_update(1, media_group_id="g1"))
        test_client.post("/webhook", json=make_update(2, media_group_id="g1"))
        test_client.post(
            "/webhook",
            json=make_update(3, media_group_id="g1", caption="WidgetX #AB12345 x3 (blue)"),
        )

        records = repository.list_records(group_id="g1")
        assert len(records) == 3
        for record in records:
            info = record.product_info
            assert record.processing_state == ProcessingState.stored
            assert (info.product_name, info.product_code, info.vendor_uid) == (
                "WidgetX", "AB12345", "AB",
            )
            assert (info.quantity, info.notes) == (3, "blue")

        inserts = [e for e in repository.all_outbox() if e.operation == OutboxOperation.insert]
        assert sorted(e.entity_id for e in inserts) == ["uniq-1", "uniq-2", "uniq-3"]

        clock.advance(11)
        settled = test_client.post("/groups/settle")
        assert settled.json() == {"settled": ["g1"], "count": 1}
        assert repository.get_group("g1").state == GroupState.complete


class TestSyncEndpoint:
    def test_sync_returns_counters(
        self,
        test_client: TestClient,
        glide,
        make_update: Callable[..., dict[str, Any]],
    ) -> None:
        test_client.post("/webhook", json=make_update(1))
        test_client.post("/webhook", json=make_update(2))

        response = test_client.post("/sync", json={"tableId": "native-table-x"})

        assert response.status_code == 200
        assert response.json() == {"added": 2, "updated": 0, "deleted": 0, "errors": []}
        assert len(glide.rows) == 2

    def test_sync_limited_to_record_ids(
        self,
        test_client: TestClient,
        repository: InMemoryRepository,
        make_update: Callable[..., dict[str, Any]],
    ) -> None:
        test_client.post("/webhook", json=make_update(1))
        test_client.post("/webhook", json=make_update(2))

        response = test_client.post("/sync", json={"recordIds": ["uniq-2"]})

        assert response.json()["added"] == 1
        assert [e.entity_id for e in repository.list_pending_outbox(10)] == ["uniq-1"]

    def test_sync_conflict_while_drain_running(self, test_client: TestClient) -> None:
        with patch("mediasync.routers.sync.acquire_job_lock", return_value=False):
            response = test_client.post("/sync", json={})
        assert response.status_code == 409


class TestMediaEndpoints:
    def test_list_filters_by_state(
        self,
        test_client: TestClient,
        fetcher,
        make_update: Callable[..., dict[str, Any]],
    ) -> None:
        test_client.post("/webhook", json=make_update(1))
        fetcher.failures = -1
        test_client.post("/webhook", json=make_update(2))

        failed = test_client.get("/media", params={"state": "FAILED"}).json()
        everything = test_client.get("/media").json()

        assert [r["file_unique_ref"] for r in failed] == ["uniq-2"]
        assert "FetchError" in failed[0]["last_error"]
        assert len(everything) == 2

    def test_requeue(
        self,
        test_client: TestClient,
        repository: InMemoryRepository,
        fetcher,
        make_update: Callable[..., dict[str, Any]],
    ) -> None:
        fetcher.failures = -1
        test_client.post("/webhook", json=make_update(1))
        fetcher.failures = 0

        response = test_client.post("/media/uniq-1/requeue")

        assert response.status_code == 202
        assert response.json()["processing_state"] == "PENDING"
        assert repository.get_record("uniq-1").processing_state == ProcessingState.stored

    def test_requeue_errors(
        self, test_client: TestClient, make_update: Callable[..., dict[str, Any]]
    ) -> None:
        assert test_client.post("/media/nope/requeue").status_code == 404

        test_client.post("/webhook", json=make_update(1))
        assert test_client.post("/media/uniq-1/requeue").status_code == 409

    def test_delete(
        self,
        test_client: TestClient,
        repository: InMemoryRepository,
        make_update: Callable[..., dict[str, Any]],
    ) -> None:
        test_client.post("/webhook", json=make_update(1))

        response = test_client.delete("/media/uniq-1")

        assert response.status_code == 200
        assert response.json()["ok"] is True
        assert repository.all_outbox()[-1].operation == OutboxOperation.delete
        assert test_client.delete("/media/missing").status_code == 404

    def test_regenerate_thumbnails(
        self,
        test_client: TestClient,
        repository: InMemoryRepository,
        make_update: Callable[..., dict[str, Any]],
    ) -> None:
        test_client.post("/webhook", json=make_update(1))
        repository.update_record(
            "uniq-1", {"thumbnail_ref": "thumb-1", "thumbnail_unique_ref": "t-1"}
        )

        response = test_client.post(
            "/media/thumbnails/regenerate", json={"fileUniqueRefs": ["uniq-1"]}
        )
        empty_body = test_client.post("/media/thumbnails/regenerate")

        assert response.status_code == 200
        assert response.json() == {"regenerated": ["uniq-1"], "count": 1}
        assert repository.get_record("uniq-1").thumbnail_url.endswith("/t-1.jpg")
        assert empty_body.json() == {"regenerated": [], "count": 0}


class TestHealthEndpoint:
    def test_health_ok(self, test_client: TestClient) -> None:
        response = test_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "database": "connected",
            "scheduler": "stopped",
        }

    def test_health_db_down_returns_503(
        self, test_client: TestClient, pipeline: Pipeline
    ) -> None:
        with patch.object(
            pipeline.repository, "ping", side_effect=Exception("Connection refused")
        ):
            response = test_client.get("/health")

        assert response.status_code == 503
        assert response.json()["database"] == "disconnected"
        assert response.json()["status"] == "degraded"

    def test_health_running_scheduler(self, test_client: TestClient) -> None:
        with patch("mediasync.routers.health.is_scheduler_running", return_value=True):
            response = test_client.get("/health")
        assert response.json()["scheduler"] == "running"
