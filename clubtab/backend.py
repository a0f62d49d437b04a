"""
Backend data service seam.

``OrderBackend`` is what the engine needs from the hosted store: whole-table
reads, per-row writes and an optional change-notification channel whose
events carry no trusted payload. ``RestOrderBackend`` implements it against a
PostgREST endpoint over ``httpx``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Protocol

import httpx

from clubtab.config import BACKEND_KEY, BACKEND_TIMEOUT_SECONDS, BACKEND_URL, ORDERS_TABLE
from clubtab.errors import TransientBackendError, error_for_status

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[], Awaitable[None]]
Unsubscribe = Callable[[], None]

# Matches every row; PostgREST refuses an unfiltered DELETE.
_NIL_UUID = "00000000-0000-0000-0000-000000000000"
_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class OrderBackend(Protocol):
    async def fetch_all(self) -> list[dict[str, Any]]: ...

    async def fetch_completed_between(self, start: datetime, end: datetime) -> list[dict[str, Any]]: ...

    async def insert(self, row: dict[str, Any]) -> None: ...

    async def update(self, order_id: str, values: dict[str, Any]) -> None: ...

    async def delete(self, order_id: str) -> None: ...

    async def delete_all(self) -> None: ...

    def subscribe(self, callback: ChangeCallback) -> Unsubscribe | None:
        """Register for change events; None means this backend has no push channel."""
        ...

    async def invalidate_cache(self) -> None: ...


class RestOrderBackend:
    """Orders table over PostgREST. No push channel; the engine polls instead."""

    def __init__(
        self,
        base_url: str = BACKEND_URL,
        api_key: str = BACKEND_KEY,
        *,
        table: str = ORDERS_TABLE,
        timeout: float = BACKEND_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("backend base_url is required (set CLUBTAB_BACKEND_URL)")
        self._base_url = base_url.rstrip("/") + "/rest/v1"
        self._api_key = api_key
        self._table = table
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {
                "Cache-Control": "no-cache, no-store, must-revalidate",
                "Pragma": "no-cache",
            }
            if self._api_key:
                headers["apikey"] = self._api_key
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def _request(
        self,
        method: str,
        *,
        params: Any = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        headers = {"Prefer": prefer} if prefer else None
        try:
            response = await self._get_client().request(
                method, f"/{self._table}", params=params, json=json, headers=headers
            )
        except httpx.TimeoutException as exc:
            raise TransientBackendError(f"{method} {self._table} timed out") from exc
        except httpx.TransportError as exc:
            raise TransientBackendError(f"{method} {self._table} failed: {exc}") from exc

        if response.is_error:
            message, code = _error_details(response)
            raise error_for_status(response.status_code, f"{method} {self._table}: {message}", code)
        return response

    async def fetch_all(self) -> list[dict[str, Any]]:
        response = await self._request("GET", params={"select": "*"})
        return _rows(response)

    async def fetch_completed_between(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        params = [
            ("select", "*"),
            ("status", "eq.completed"),
            ("created_at", f"gte.{start.strftime(_TIMESTAMP_FORMAT)}"),
            ("created_at", f"lt.{end.strftime(_TIMESTAMP_FORMAT)}"),
        ]
        response = await self._request("GET", params=params)
        return _rows(response)

    async def insert(self, row: dict[str, Any]) -> None:
        await self._request("POST", json=[row], prefer="return=minimal")

    async def update(self, order_id: str, values: dict[str, Any]) -> None:
        await self._request("PATCH", params={"id": f"eq.{order_id}"}, json=values, prefer="return=minimal")

    async def delete(self, order_id: str) -> None:
        await self._request("DELETE", params={"id": f"eq.{order_id}"})

    async def delete_all(self) -> None:
        await self._request("DELETE", params={"id": f"neq.{_NIL_UUID}"})

    def subscribe(self, callback: ChangeCallback) -> Unsubscribe | None:
        return None

    async def invalidate_cache(self) -> None:
        """Drop pooled connections so the next call starts from a fresh client."""
        client, self._client = self._client, None
        if client is not None:
            logger.debug("Discarding HTTP client for %s", self._base_url)
            await client.aclose()

    async def aclose(self) -> None:
        await self.invalidate_cache()


def _rows(response: httpx.Response) -> list[dict[str, Any]]:
    try:
        data = response.json()
    except ValueError as exc:
        raise TransientBackendError(f"unreadable response body: {exc}") from exc
    if not isinstance(data, list):
        raise TransientBackendError(f"expected a list of rows, got {type(data).__name__}")
    return [row for row in data if isinstance(row, dict)]


def _error_details(response: httpx.Response) -> tuple[str, str | None]:
    try:
        body = response.json()
    except ValueError:
        return (response.text or response.reason_phrase, None)
    if isinstance(body, dict):
        return (str(body.get("message") or response.reason_phrase), body.get("code"))
    return (response.reason_phrase, None)
