"""Glide ``mutateTables`` client and record -> row mapping.

Glide rows are addressed by the ``rowID`` returned from ``add-row-to-table``;
the drainer stores it on the media record as ``external_id``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from mediasync.core.constants import GLIDE_COLUMNS, GLIDE_MUTATE_URL, GLIDE_PRODUCT_COLUMNS
from mediasync.core.exceptions import ExternalSyncError, PermanentError, RateLimitError
from mediasync.services.retry import RetryPolicy, parse_retry_after, with_retry

logger = logging.getLogger(__name__)


def map_record_to_glide(snapshot: dict[str, Any]) -> dict[str, Any]:
    """Rename a ``MediaRecord`` JSON snapshot to Glide column names.

    Field renaming only.  Product fields are flattened into the row.
    """
    columns = {
        column: snapshot.get(field)
        for field, column in GLIDE_COLUMNS.items()
        if field in snapshot
    }
    product = snapshot.get("product_info") or {}
    for field, column in GLIDE_PRODUCT_COLUMNS.items():
        columns[column] = product.get(field)
    return columns


class GlideClient:
    """Thin wrapper over the Glide mutation endpoint."""

    def __init__(
        self,
        api_token: str,
        app_id: str,
        *,
        timeout: float = 30.0,
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._api_token = api_token
        self._app_id = app_id
        self._retry_policy = retry_policy or RetryPolicy(max_attempts=3)
        self._http = http_client or httpx.Client(timeout=timeout)

    @property
    def configured(self) -> bool:
        return bool(self._api_token and self._app_id)

    def _post_mutation(self, mutation: dict[str, Any]) -> list[Any]:
        try:
            response = self._http.post(
                GLIDE_MUTATE_URL,
                headers={
                    "Authorization": f"Bearer {self._api_token}",
                    "Content-Type": "application/json",
                },
                json={"appID": self._app_id, "mutations": [mutation]},
            )
        except httpx.HTTPError as exc:
            raise ExternalSyncError(f"Glide request failed: {exc}") from exc

        if response.status_code == 429:
            raise RateLimitError(
                "Glide rate limited",
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        if response.status_code in (400, 401, 403, 404):
            raise PermanentError(f"Glide API error: {response.status_code} {response.text}")
        if response.is_error:
            raise ExternalSyncError(f"Glide API error: {response.status_code} {response.text}")

        data = response.json()
        return data if isinstance(data, list) else [data]

    def _mutate(self, mutation: dict[str, Any]) -> list[Any]:
        if not self.configured:
            raise ExternalSyncError("GLIDE_API_TOKEN / GLIDE_APP_ID are not configured")
        logger.debug(
            "glide_mutation",
            extra={"kind": mutation["kind"], "table": mutation["tableName"]},
        )
        return with_retry(lambda: self._post_mutation(mutation), self._retry_policy)

    def add_row(self, table_name: str, columns: dict[str, Any]) -> str | None:
        """Append a row and return its ``rowID``."""
        results = self._mutate(
            {
                "kind": "add-row-to-table",
                "tableName": table_name,
                "columnValues": columns,
            }
        )
        first = results[0] if results else None
        return first.get("rowID") if isinstance(first, dict) else None

    def set_columns(self, table_name: str, row_id: str, columns: dict[str, Any]) -> None:
        self._mutate(
            {
                "kind": "set-columns-in-row",
                "tableName": table_name,
                "rowID": row_id,
                "columnValues": columns,
            }
        )

    def delete_row(self, table_name: str, row_id: str) -> None:
        self._mutate(
            {
                "kind": "delete-row",
                "tableName": table_name,
                "rowID": row_id,
            }
        )
