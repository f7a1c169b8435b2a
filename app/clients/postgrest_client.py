"""
Supabase / PostgREST Client.

Translates TableQuery objects into PostgREST REST calls over httpx.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from ..config import get_settings
from .store import BaseStore, InMemoryStore, StoreError, TableQuery

logger = logging.getLogger(__name__)


def _format_value(value: Any) -> str:
    """Render a Python value as a PostgREST filter operand."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _format_array(values: List[Any]) -> str:
    """Render a list as a Postgres array literal for cs. filters."""
    escaped = []
    for value in values:
        text = _format_value(value).replace("\\", "\\\\").replace('"', '\\"')
        escaped.append(f'"{text}"')
    return "{" + ",".join(escaped) + "}"


class PostgRESTStore(BaseStore):
    """Async store backed by a Supabase project's REST endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 10.0,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout_seconds
        self._client_factory = client_factory
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            if self._client_factory is not None:
                self._client = self._client_factory()
            else:
                self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def build_params(self, query: TableQuery, include_select: bool = True) -> List[Tuple[str, str]]:
        """Translate filters, ordering and range into query parameters."""
        params: List[Tuple[str, str]] = []

        if include_select:
            params.append(("select", "".join(query.columns.split())))

        for flt in query.filters:
            if flt.op == "eq":
                if flt.value is None:
                    params.append((flt.column, "is.null"))
                else:
                    params.append((flt.column, f"eq.{_format_value(flt.value)}"))
            elif flt.op == "contains":
                params.append((flt.column, f"cs.{_format_array(flt.value)}"))
            elif flt.op == "ilike":
                # PostgREST accepts * as the URL-safe wildcard
                params.append((flt.column, f"ilike.{flt.value.replace('%', '*')}"))
            elif flt.op == "lt":
                params.append((flt.column, f"lt.{_format_value(flt.value)}"))
            elif flt.op == "not_null":
                params.append((flt.column, "not.is.null"))
            else:
                raise StoreError(f"Unsupported filter operator: {flt.op}")

        if query.ordering:
            order = ",".join(
                f"{column}.{'desc' if desc else 'asc'}" for column, desc in query.ordering
            )
            params.append(("order", order))

        if query.row_range is not None:
            start, end = query.row_range
            params.append(("offset", str(start)))
            params.append(("limit", str(end - start + 1)))

        return params

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[List[Tuple[str, str]]] = None,
        json: Optional[Dict[str, Any]] = None,
        prefer: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        client = await self._get_client()
        url = f"{self._base_url}/{table}"

        try:
            response = await client.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(prefer),
            )
        except httpx.HTTPError as e:
            logger.error(f"Store request failed ({method} {table}): {e}")
            raise StoreError(f"Store unreachable: {e}") from e

        if response.status_code >= 400:
            code = None
            message = f"HTTP {response.status_code}"
            try:
                body = response.json()
                code = body.get("code")
                message = body.get("message") or message
            except ValueError:
                pass
            logger.error(f"Store error ({method} {table}): {response.status_code} {message}")
            raise StoreError(message, code=code, status_code=response.status_code)

        if not response.content:
            return []

        try:
            data = response.json()
        except ValueError as e:
            raise StoreError(f"Invalid JSON from store: {e}") from e

        if isinstance(data, dict):
            return [data]
        return data

    async def fetch(self, query: TableQuery) -> List[Dict[str, Any]]:
        return await self._request("GET", query.table, params=self.build_params(query))

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request(
            "POST", table, json=row, prefer="return=representation",
        )
        if not rows:
            raise StoreError(f"Insert into '{table}' returned no row")
        return rows[0]

    async def upsert(self, table: str, row: Dict[str, Any], on_conflict: str = "id") -> Dict[str, Any]:
        rows = await self._request(
            "POST",
            table,
            params=[("on_conflict", on_conflict)],
            json=row,
            prefer="resolution=merge-duplicates,return=representation",
        )
        return rows[0] if rows else row

    async def update(self, query: TableQuery, values: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await self._request(
            "PATCH",
            query.table,
            params=self.build_params(query, include_select=False),
            json=values,
            prefer="return=representation",
        )

    async def delete(self, query: TableQuery) -> List[Dict[str, Any]]:
        return await self._request(
            "DELETE",
            query.table,
            params=self.build_params(query, include_select=False),
            prefer="return=representation",
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


# Singleton instance
_store_instance: Optional[BaseStore] = None


def get_store() -> BaseStore:
    """
    Get the singleton store instance.

    Uses Supabase when configured; otherwise falls back to an in-memory
    store so the API can run locally without a database.
    """
    global _store_instance
    if _store_instance is None:
        settings = get_settings()
        if settings.supabase_configured:
            _store_instance = PostgRESTStore(
                f"{settings.supabase_url.rstrip('/')}/rest/v1",
                settings.supabase_service_key or settings.supabase_anon_key,
                timeout_seconds=settings.store_timeout_seconds,
            )
            logger.info("Using Supabase store")
        else:
            logger.warning("Supabase not configured - using in-memory store")
            _store_instance = InMemoryStore()
    return _store_instance
