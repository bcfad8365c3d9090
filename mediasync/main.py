"""FastAPI application entry point.

Configures CORS, structured logging, lifespan events (including APScheduler),
and router registration.
"""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mediasync.core.config import settings
from mediasync.core.logging import setup_logging
from mediasync.routers import groups, health, media, sync, webhook
from mediasync.scheduler.jobs import shutdown_scheduler, start_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: startup and shutdown hooks."""
    setup_logging()
    logger.info("Application starting up")
    if not settings.TELEGRAM_WEBHOOK_SECRET:
        logger.warning("webhook_secret_not_configured")
    if settings.SCHEDULER_ENABLED:
        start_scheduler()
    yield
    shutdown_scheduler()
    logger.info("Application shutting down")


app = FastAPI(
    title="Telegram Media Sync API",
    description="Ingests Telegram media posts, stores files in Supabase and mirrors records to Glide",
    version="0.1.0",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# CORS Configuration
# ---------------------------------------------------------------------------
_raw_origins = settings.ALLOWED_ORIGINS.strip()
if _raw_origins == "*":
    _allowed_origins: list[str] = ["*"]
else:
    _allowed_origins = [o.strip() for o in _raw_origins.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Router Registration
# ---------------------------------------------------------------------------
app.include_router(health.router, tags=["Health"])
app.include_router(webhook.router, tags=["Webhook"])
app.include_router(sync.router, tags=["Sync"])
app.include_router(media.router, tags=["Media"])
app.include_router(groups.router, tags=["Groups"])
