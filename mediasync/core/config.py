"""Application configuration via pydantic-settings.

Loads all settings from environment variables with sensible defaults.
A global `settings` singleton is available for import throughout the app.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict

from mediasync.core.constants import TELEGRAM_MAX_GROUP_SIZE


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Supabase
    SUPABASE_URL: str
    SUPABASE_KEY: str
    STORAGE_BUCKET: str = "telegram-media"

    # "supabase" for production, "memory" for local runs without a database
    STORE_BACKEND: str = "supabase"

    # Telegram
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_WEBHOOK_SECRET: str = ""
    TELEGRAM_API_BASE: str = "https://api.telegram.org"

    # Glide
    GLIDE_API_TOKEN: str = ""
    GLIDE_APP_ID: str = ""
    GLIDE_TABLE_NAME: str = ""

    # LLM caption analysis
    LLM_PROVIDER: str = "openai"
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_API_KEY: str = ""

    # Media groups
    MEDIA_GROUP_QUIET_SECONDS: float = 10.0
    MEDIA_GROUP_MAX_SIZE: int = TELEGRAM_MAX_GROUP_SIZE
    GROUP_SETTLE_TIMEOUT_SECONDS: float = 300.0
    GROUP_RETENTION_SECONDS: float = 3600.0

    # Retry / backoff
    MAX_RETRY_ATTEMPTS: int = 5
    RETRY_BACKOFF_BASE_MS: int = 1000
    RETRY_BACKOFF_CAP_MS: int = 30000
    HTTP_TIMEOUT_SECONDS: float = 30.0
    PENDING_STALE_SECONDS: float = 300.0

    # Outbox / scheduler
    SYNC_BATCH_SIZE: int = 50
    SYNC_INTERVAL_SECONDS: int = 60
    SWEEP_INTERVAL_SECONDS: int = 5
    SCHEDULER_ENABLED: bool = True

    # CORS
    ALLOWED_ORIGINS: str = "*"

    # Logging
    LOG_LEVEL: str = "INFO"


settings = Settings()  # type: ignore[call-arg]
