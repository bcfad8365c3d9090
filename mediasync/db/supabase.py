"""Shared Supabase client.

One client serves both the PostgREST tables and the storage bucket.
Timeouts come from ``settings.HTTP_TIMEOUT_SECONDS``.
"""

from supabase import Client, ClientOptions, create_client

from mediasync.core.config import settings

_client: Client | None = None


def get_supabase() -> Client:
    global _client
    if _client is None:
        timeout = int(settings.HTTP_TIMEOUT_SECONDS)
        _client = create_client(
            settings.SUPABASE_URL,
            settings.SUPABASE_KEY,
            options=ClientOptions(
                postgrest_client_timeout=timeout,
                storage_client_timeout=timeout,
            ),
        )
    return _client
