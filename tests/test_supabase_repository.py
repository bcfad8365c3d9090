"""Unit tests for the Supabase-backed repository, with a mocked client."""

from __future__ import annotations

import itertools
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from mediasync.core.exceptions import ConcurrencyError
from mediasync.db.supabase_repository import SupabaseRepository
from mediasync.models.enums import MediaKind, OutboxOperation, ProcessingState
from mediasync.models.group import MediaGroup
from mediasync.models.media import MediaRecord
from mediasync.models.post import IncomingPost
from mediasync.models.product import ProductInfo

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _chainable_table_mock() -> MagicMock:
    """Return a mock that supports fluent chaining."""
    m = MagicMock()
    for method in (
        "select", "insert", "upsert", "update", "delete", "eq", "lte",
        "limit", "in_", "is_", "order",
    ):
        getattr(m, method).return_value = m
    return m


def _repo(*results: list | None) -> tuple[SupabaseRepository, MagicMock, MagicMock]:
    client = MagicMock()
    table = _chainable_table_mock()
    client.table.return_value = table
    table.execute.side_effect = [MagicMock(data=data) for data in results]
    return SupabaseRepository(client), client, table


def _group_row(version: int, members: list[int]) -> dict:
    return {
        "group_id": "g1",
        "members": members,
        "state": "OPEN",
        "last_seen_at": NOW.isoformat(),
        "version": version,
    }


def _record_row(**overrides) -> dict:
    row = {
        "file_unique_ref": "u1",
        "file_ref": "f1",
        "file_kind": "photo",
        "chat_id": -100,
        "source_message_id": 1,
        "processing_state": "PENDING",
        "created_at": NOW.isoformat(),
        "updated_at": NOW.isoformat(),
    }
    row.update(overrides)
    return row


def _add_member(message_id: int):
    def mutate(current: MediaGroup | None) -> MediaGroup:
        assert current is not None
        return current.model_copy(update={"members": [*current.members, message_id]})

    return mutate


class TestRegisterPost:
    def _post(self) -> IncomingPost:
        return IncomingPost(external_message_id=7, chat_id=-100, received_at=NOW)

    def test_new_post(self) -> None:
        repo, client, table = _repo([], [{"processed_at": None}])

        assert repo.register_post(self._post()) is True
        client.table.assert_any_call("telegram_messages")
        assert table.upsert.call_args.kwargs == {
            "on_conflict": "chat_id,message_id",
            "ignore_duplicates": True,
        }

    def test_already_processed_is_duplicate(self) -> None:
        repo, _, _ = _repo([], [{"processed_at": NOW.isoformat()}])
        assert repo.register_post(self._post()) is False


class TestGroups:
    def test_get_missing_group(self) -> None:
        repo, _, _ = _repo([])
        assert repo.get_group("g1") is None

    def test_update_group_retries_lost_cas(self) -> None:
        repo, _, table = _repo(
            [_group_row(1, [1])],
            [],
            [_group_row(2, [1, 2])],
            [_group_row(3, [1, 2, 3])],
        )

        group = repo.update_group("g1", _add_member(3))

        assert group.members == [1, 2, 3]
        assert group.version == 3
        version_filters = [
            c.args for c in table.eq.call_args_list if c.args[0] == "version"
        ]
        assert version_filters == [("version", 1), ("version", 2)]

    def test_update_group_gives_up(self) -> None:
        client = MagicMock()
        table = _chainable_table_mock()
        client.table.return_value = table
        table.execute.side_effect = itertools.cycle(
            [MagicMock(data=[_group_row(1, [1])]), MagicMock(data=[])]
        )

        with pytest.raises(ConcurrencyError):
            SupabaseRepository(client).update_group("g1", _add_member(2))

    def test_update_group_noop_mutation(self) -> None:
        repo, _, table = _repo([_group_row(1, [1])])

        group = repo.update_group("g1", lambda current: None)

        assert group.version == 1
        table.update.assert_not_called()

    def test_create_group_inserts_first_version(self) -> None:
        repo, _, table = _repo([], [_group_row(1, [1])])

        group = repo.update_group(
            "g1",
            lambda current: MediaGroup(group_id="g1", members=[1], last_seen_at=NOW),
        )

        assert group.version == 1
        row = table.upsert.call_args.args[0]
        assert row["version"] == 1
        assert table.upsert.call_args.kwargs["ignore_duplicates"] is True


class TestRecords:
    def _record(self) -> MediaRecord:
        return MediaRecord(
            file_unique_ref="u1",
            file_ref="f1",
            file_kind=MediaKind.photo,
            chat_id=-100,
            source_message_id=1,
            created_at=NOW,
            updated_at=NOW,
        )

    def test_get_or_create_inserts(self) -> None:
        repo, _, _ = _repo([_record_row()])

        record, created = repo.get_or_create_record(self._record())

        assert created is True
        assert record.processing_state == ProcessingState.pending

    def test_get_or_create_returns_existing(self) -> None:
        repo, _, _ = _repo([], [_record_row(processing_state="STORED")])

        record, created = repo.get_or_create_record(self._record())

        assert created is False
        assert record.processing_state == ProcessingState.stored

    def test_transition_filters_on_states(self) -> None:
        repo, _, table = _repo([])

        result = repo.transition_record(
            "u1", [ProcessingState.pending], {"processing_state": ProcessingState.processing}
        )

        assert result is None
        table.in_.assert_called_with("processing_state", ["PENDING"])
        assert table.update.call_args.args[0]["processing_state"] == "PROCESSING"

    def test_update_record_serializes_models(self) -> None:
        repo, _, table = _repo([_record_row(caption="Hat")])

        repo.update_record("u1", {"product_info": ProductInfo(product_name="Hat")})

        payload = table.update.call_args.args[0]
        assert payload["product_info"]["product_name"] == "Hat"
        assert isinstance(payload["updated_at"], str)

    def test_update_missing_record(self) -> None:
        repo, _, _ = _repo([])
        with pytest.raises(KeyError):
            repo.update_record("nope", {"caption": "x"})

    def test_list_records_excludes_deleted(self) -> None:
        repo, _, table = _repo([_record_row()])

        records = repo.list_records(states=[ProcessingState.failed], limit=5)

        assert len(records) == 1
        table.is_.assert_called_with("deleted_at", "null")
        table.limit.assert_called_with(5)


class TestAnalysisCache:
    def test_miss(self) -> None:
        repo, _, _ = _repo([])
        assert repo.get_cached_analysis("Hat") == (False, None)

    def test_hit(self) -> None:
        repo, _, _ = _repo([{"product_info": {"product_name": "Hat"}}])

        hit, info = repo.get_cached_analysis("Hat")

        assert hit is True
        assert info == ProductInfo(product_name="Hat")

    def test_cached_empty_result(self) -> None:
        repo, _, _ = _repo([{"product_info": None}])
        assert repo.get_cached_analysis("???") == (True, None)


class TestOutbox:
    def test_enqueue(self) -> None:
        repo, _, table = _repo(
            [
                {
                    "id": 4,
                    "entity_id": "u1",
                    "operation": "INSERT",
                    "payload_snapshot": {"file_unique_ref": "u1"},
                    "enqueued_at": NOW.isoformat(),
                }
            ]
        )

        entry = repo.enqueue_outbox("u1", OutboxOperation.insert, {"file_unique_ref": "u1"})

        assert entry.id == 4
        assert table.insert.call_args.args[0]["operation"] == "INSERT"

    def test_list_pending_in_id_order(self) -> None:
        repo, _, table = _repo([])

        assert repo.list_pending_outbox(20, entity_ids=["u1"]) == []
        table.is_.assert_called_with("processed_at", "null")
        table.in_.assert_called_with("entity_id", ["u1"])
        table.order.assert_called_with("id")
        table.limit.assert_called_with(20)
