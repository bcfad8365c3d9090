"""Pipeline wiring.

``build_pipeline`` is the one place where concrete collaborators are
chosen; every component receives its dependencies through its
constructor.  ``get_pipeline`` returns the process-wide instance used by
the routers and the scheduler.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from mediasync.core.config import Settings, settings
from mediasync.db.memory import InMemoryRepository
from mediasync.db.repository import MediaRepository
from mediasync.db.supabase import get_supabase
from mediasync.db.supabase_repository import SupabaseRepository
from mediasync.services.caption import CaptionAnalyzer, LLMCaptionExtractor
from mediasync.services.gateway import IngestionGateway
from mediasync.services.glide import GlideClient
from mediasync.services.media_processor import BlobStore, FileFetcher, MediaTaskProcessor
from mediasync.services.reconciler import GroupReconciler
from mediasync.services.retry import RetryPolicy
from mediasync.services.storage import SupabaseBlobStore
from mediasync.services.sync import GlideWriter, OutboxDrainer
from mediasync.services.telegram import TelegramFileFetcher

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    repository: MediaRepository
    gateway: IngestionGateway
    reconciler: GroupReconciler
    processor: MediaTaskProcessor
    drainer: OutboxDrainer


def build_pipeline(
    config: Settings = settings,
    *,
    repository: MediaRepository | None = None,
    fetcher: FileFetcher | None = None,
    blob_store: BlobStore | None = None,
    glide: GlideWriter | None = None,
    llm: LLMCaptionExtractor | None = None,
    retry_policy: RetryPolicy | None = None,
) -> Pipeline:
    """Assemble the pipeline from *config*; explicit arguments win."""
    if repository is None:
        if config.STORE_BACKEND == "memory":
            repository = InMemoryRepository()
        else:
            repository = SupabaseRepository(get_supabase())

    policy = retry_policy or RetryPolicy.from_settings()

    if fetcher is None:
        fetcher = TelegramFileFetcher(
            config.TELEGRAM_BOT_TOKEN,
            api_base=config.TELEGRAM_API_BASE,
            timeout=config.HTTP_TIMEOUT_SECONDS,
        )
    if blob_store is None:
        blob_store = SupabaseBlobStore(get_supabase(), config.STORAGE_BUCKET)
    if glide is None:
        glide = GlideClient(
            config.GLIDE_API_TOKEN,
            config.GLIDE_APP_ID,
            timeout=config.HTTP_TIMEOUT_SECONDS,
            retry_policy=RetryPolicy(
                max_attempts=3,
                base_delay=policy.base_delay,
                max_delay=policy.max_delay,
                sleep=policy.sleep,
            ),
        )
    if llm is None and config.LLM_API_KEY:
        llm = LLMCaptionExtractor(
            config.LLM_API_KEY,
            model=config.LLM_MODEL,
            provider=config.LLM_PROVIDER,
            timeout=config.HTTP_TIMEOUT_SECONDS,
        )

    analyzer = CaptionAnalyzer(repository, llm)
    reconciler = GroupReconciler(
        repository,
        analyzer,
        quiet_window=timedelta(seconds=config.MEDIA_GROUP_QUIET_SECONDS),
        max_group_size=config.MEDIA_GROUP_MAX_SIZE,
        settle_timeout=timedelta(seconds=config.GROUP_SETTLE_TIMEOUT_SECONDS),
        retention=timedelta(seconds=config.GROUP_RETENTION_SECONDS),
    )
    processor = MediaTaskProcessor(
        repository,
        fetcher,
        blob_store,
        policy=policy,
        stale_after=timedelta(seconds=config.PENDING_STALE_SECONDS),
        resume_batch_size=config.SYNC_BATCH_SIZE,
    )
    drainer = OutboxDrainer(repository, glide, table_name=config.GLIDE_TABLE_NAME)
    gateway = IngestionGateway(repository, reconciler)

    logger.info(
        "pipeline_built",
        extra={
            "store_backend": type(repository).__name__,
            "llm_enabled": llm is not None,
        },
    )
    return Pipeline(
        repository=repository,
        gateway=gateway,
        reconciler=reconciler,
        processor=processor,
        drainer=drainer,
    )


_pipeline: Pipeline | None = None


def get_pipeline() -> Pipeline:
    """Return the singleton pipeline, building it on first call."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline()
    return _pipeline
