"""Cloudflare D1 database client.

Runs parameterized SQL against a D1 database through the Cloudflare REST
query endpoint. Both the transcription job table and the shared lectures
table live in D1; the typed stores in this package build their statements
on top of query().
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any

import httpx

from lecture_transcriber.utils.errors import PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.cloudflare.com/client/v4"


@dataclass
class D1Result:
    """Rows and write counters returned for one SQL statement."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    changes: int = 0
    last_row_id: int | None = None

    def first(self) -> dict[str, Any] | None:
        """Return the first row, or None when the statement returned nothing."""
        return self.rows[0] if self.rows else None


class D1Client:
    """Client for SQL statements via the Cloudflare D1 query API.

    Reads configuration from environment variables:
        CF_API_BASE_URL, CF_ACCOUNT_ID, D1_DATABASE_ID, CF_API_TOKEN

    An httpx.AsyncClient may be injected; otherwise one is created and
    owned by this instance until close().
    """

    def __init__(
        self,
        account_id: str | None = None,
        database_id: str | None = None,
        api_token: str | None = None,
        api_base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.api_base_url = (
            api_base_url
            or os.environ.get("CF_API_BASE_URL", "")
            or DEFAULT_API_BASE_URL
        ).rstrip("/")
        self.account_id = account_id or os.environ.get("CF_ACCOUNT_ID", "")
        self.database_id = database_id or os.environ.get("D1_DATABASE_ID", "")
        self.api_token = api_token or os.environ.get("CF_API_TOKEN", "")

        if not self.account_id:
            raise PersistenceError("CF_ACCOUNT_ID is required", operation="init")
        if not self.database_id:
            raise PersistenceError("D1_DATABASE_ID is required", operation="init")
        if not self.api_token:
            raise PersistenceError("CF_API_TOKEN is required", operation="init")

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def query_url(self) -> str:
        return (
            f"{self.api_base_url}/accounts/{self.account_id}"
            f"/d1/database/{self.database_id}/query"
        )

    def _headers(self) -> dict[str, str]:
        """Build authentication headers for the Cloudflare API."""
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def query(
        self,
        sql: str,
        params: list[Any] | None = None,
        operation: str = "query",
    ) -> D1Result:
        """Execute a single SQL statement.

        Args:
            sql: SQL text with ``?`` placeholders.
            params: Positional parameter values.
            operation: Name recorded on PersistenceError for diagnostics.

        Returns:
            D1Result with returned rows and the number of changed rows.

        Raises:
            PersistenceError: On transport failure, non-2xx status, or an
                unsuccessful D1 result envelope.
        """
        payload: dict[str, Any] = {"sql": sql, "params": list(params or [])}
        try:
            response = await self._client.post(
                self.query_url,
                headers=self._headers(),
                json=payload,
            )
        except httpx.RequestError as exc:
            raise PersistenceError(
                f"D1 {operation} failed: {exc}", operation=operation
            ) from exc

        if response.status_code >= 400:
            raise PersistenceError(
                f"D1 {operation} failed: HTTP {response.status_code}"
                f"{_error_suffix(response)}",
                operation=operation,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise PersistenceError(
                f"D1 {operation} returned a non-JSON body", operation=operation
            ) from exc

        if not isinstance(body, dict) or not body.get("success", False):
            body = body if isinstance(body, dict) else {}
            raise PersistenceError(
                f"D1 {operation} failed{_format_errors(body.get('errors'))}",
                operation=operation,
            )

        results = body.get("result") or []
        if not results:
            return D1Result()

        statement = results[0]
        if statement.get("success") is False:
            raise PersistenceError(
                f"D1 {operation} failed{_format_errors(statement.get('errors'))}",
                operation=operation,
            )

        meta = statement.get("meta") or {}
        return D1Result(
            rows=list(statement.get("results") or []),
            changes=int(meta.get("changes") or 0),
            last_row_id=meta.get("last_row_id"),
        )


def _format_errors(errors: Any) -> str:
    if not errors:
        return ""
    messages = [
        str(err.get("message", err)) if isinstance(err, dict) else str(err)
        for err in errors
    ]
    return ": " + "; ".join(messages)


def _error_suffix(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return ""
    if not isinstance(body, dict):
        return ""
    return _format_errors(body.get("errors"))
