"""Unit tests for configuration, the Supabase client, logging and wiring."""

import logging
from unittest.mock import MagicMock, patch

from mediasync.db.memory import InMemoryRepository


class TestSettings:
    def test_settings_loads_required_fields(self) -> None:
        env_overrides = {
            "SUPABASE_URL": "https://test.supabase.co",
            "SUPABASE_KEY": "test-key-123",
            "TELEGRAM_BOT_TOKEN": "123:abc",
            "GLIDE_APP_ID": "app-1",
            "MEDIA_GROUP_QUIET_SECONDS": "2.5",
        }
        with patch.dict("os.environ", env_overrides, clear=False):
            from mediasync.core.config import Settings

            s = Settings()  # type: ignore[call-arg]
            assert s.SUPABASE_URL == "https://test.supabase.co"
            assert s.SUPABASE_KEY == "test-key-123"
            assert s.TELEGRAM_BOT_TOKEN == "123:abc"
            assert s.GLIDE_APP_ID == "app-1"
            assert s.MEDIA_GROUP_QUIET_SECONDS == 2.5

    def test_settings_defaults(self) -> None:
        env_overrides = {
            "SUPABASE_URL": "https://test.supabase.co",
            "SUPABASE_KEY": "test-key",
        }
        with patch.dict("os.environ", env_overrides, clear=False):
            from mediasync.core.config import Settings

            s = Settings(_env_file=None)  # type: ignore[call-arg]
            assert s.STORAGE_BUCKET == "telegram-media"
            assert s.MEDIA_GROUP_MAX_SIZE == 10
            assert s.MAX_RETRY_ATTEMPTS == 5
            assert s.RETRY_BACKOFF_BASE_MS == 1000
            assert s.RETRY_BACKOFF_CAP_MS == 30000
            assert s.LLM_MODEL == "gpt-4o-mini"
            assert s.ALLOWED_ORIGINS == "*"
            assert s.LOG_LEVEL == "INFO"


class TestSupabaseClient:
    def test_get_supabase_returns_client(self) -> None:
        mock_client = MagicMock()
        with patch(
            "mediasync.db.supabase.create_client", return_value=mock_client
        ) as mock_create:
            import mediasync.db.supabase as supa_mod

            supa_mod._client = None
            client = supa_mod.get_supabase()
            assert client is mock_client
            options = mock_create.call_args.kwargs["options"]
            assert options.postgrest_client_timeout == 30
            supa_mod._client = None

    def test_get_supabase_is_singleton(self) -> None:
        mock_client = MagicMock()
        with patch("mediasync.db.supabase.create_client", return_value=mock_client) as mock_create:
            import mediasync.db.supabase as supa_mod

            supa_mod._client = None
            first = supa_mod.get_supabase()
            second = supa_mod.get_supabase()
            assert first is second
            mock_create.assert_called_once()
            supa_mod._client = None


class TestLogging:
    def test_setup_logging_configures_root(self) -> None:
        from mediasync.core.logging import setup_logging

        setup_logging()

        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_extra_fields_are_rendered(self) -> None:
        from mediasync.core.logging import EventFormatter

        record = logging.LogRecord(
            "mediasync.test", logging.INFO, __file__, 1, "media_stored", None, None
        )
        record.file_unique_ref = "u1"
        record.bytes = 12

        line = EventFormatter(fmt="%(levelname)s %(message)s").format(record)

        assert line == "INFO media_stored | bytes=12 file_unique_ref='u1'"


class TestBuildPipeline:
    def test_memory_backend_with_fakes(self) -> None:
        from mediasync.core.config import settings
        from mediasync.services.pipeline import build_pipeline

        with patch.object(settings, "STORE_BACKEND", "memory"):
            pipeline = build_pipeline(
                settings,
                fetcher=MagicMock(),
                blob_store=MagicMock(),
                glide=MagicMock(),
            )

        assert isinstance(pipeline.repository, InMemoryRepository)
        assert pipeline.gateway is not None
        assert pipeline.drainer is not None

    def test_supabase_backend_uses_shared_client(self) -> None:
        from mediasync.core.config import settings
        from mediasync.db.supabase_repository import SupabaseRepository
        from mediasync.services.pipeline import build_pipeline

        with patch.object(settings, "STORE_BACKEND", "supabase"), patch(
            "mediasync.services.pipeline.get_supabase", return_value=MagicMock()
        ) as mock_get:
            pipeline = build_pipeline(settings, fetcher=MagicMock(), glide=MagicMock())

        assert isinstance(pipeline.repository, SupabaseRepository)
        assert mock_get.call_count == 2

    def test_get_pipeline_is_singleton(self) -> None:
        import mediasync.services.pipeline as pipeline_mod

        sentinel = MagicMock()
        with patch.object(pipeline_mod, "build_pipeline", return_value=sentinel) as mock_build:
            pipeline_mod._pipeline = None
            assert pipeline_mod.get_pipeline() is sentinel
            assert pipeline_mod.get_pipeline() is sentinel
            mock_build.assert_called_once()
            pipeline_mod._pipeline = None
