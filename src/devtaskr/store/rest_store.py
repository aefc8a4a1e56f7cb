# src/devtaskr/store/rest_store.py

from __future__ import annotations

"""
Hosted backend over HTTP (PostgREST conventions, as exposed under /rest/v1).

Push updates are not available over plain HTTP, so subscriptions are served by
a PollingChangeFeed per table that diffs (id, updated_at) snapshots.
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from ..core.errors import RemoteError
from ..core.ports import ChangeCallback, ChangeType, Join, Row, Subscription
from .change_feed import ChangeFeedHub, PollingChangeFeed, Snapshot

logger = logging.getLogger(__name__)


def error_message(resp: httpx.Response) -> str:
    """Best human-readable message from an error response."""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error_description", "msg", "error"):
            val = body.get(key)
            if isinstance(val, str) and val.strip():
                return val.strip()
    text = (resp.text or "").strip()
    return text[:200] if text else f"HTTP {resp.status_code}"


def make_timeout(seconds: float) -> httpx.Timeout:
    return httpx.Timeout(connect=min(5.0, seconds), read=seconds, write=seconds, pool=min(5.0, seconds))


class RestRemoteStore:
    def __init__(
            self,
            base_url: str,
            api_key: str,
            *,
            access_token: str | None = None,
            client: httpx.AsyncClient | None = None,
            timeout_seconds: float = 10.0,
            poll_interval_seconds: float = 5.0,
    ) -> None:
        if not base_url.strip():
            raise ValueError("base_url is required")
        self._rest_url = base_url.rstrip("/") + "/rest/v1"
        self._api_key = api_key
        self._access_token = access_token
        self._client = client or httpx.AsyncClient(timeout=make_timeout(timeout_seconds))
        self._owns_client = client is None
        self._poll_interval = poll_interval_seconds
        self._hub = ChangeFeedHub()
        self._feeds: dict[str, PollingChangeFeed] = {}

    def set_access_token(self, token: str | None) -> None:
        """Use the signed-in user's token (row-level policies apply to it); None -> anon key."""
        self._access_token = token

    async def aclose(self) -> None:
        for table in list(self._feeds):
            await self._stop_feed(table)
        if self._owns_client:
            await self._client.aclose()

    # ---- HTTP ----

    def _headers(self, *, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token or self._api_key}",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
            self,
            method: str,
            table: str,
            *,
            params: Mapping[str, str] | None = None,
            json: Any = None,
            prefer: str | None = None,
    ) -> Any:
        url = f"{self._rest_url}/{table}"
        try:
            resp = await self._client.request(method, url, params=params, json=json, headers=self._headers(prefer=prefer))
        except httpx.HTTPError as e:
            raise RemoteError(f"Network error talking to the task store: {e.__class__.__name__}") from e

        if resp.status_code >= 400:
            msg = error_message(resp)
            logger.debug("%s %s -> %s %s", method, table, resp.status_code, msg)
            raise RemoteError(msg, status_code=resp.status_code)

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteError(f"Invalid response from the task store ({table})") from e

    @staticmethod
    def _select_expr(columns: Sequence[str] | None, join: Join | None) -> str:
        parts = list(columns) if columns else ["*"]
        if join is not None:
            parts.append(f"{join.column}:{join.table}({','.join(join.columns)})")
        return ",".join(parts)

    @staticmethod
    def _eq(value: Any) -> str:
        return f"eq.{value}"

    @staticmethod
    def _single(data: Any, what: str) -> Row:
        if isinstance(data, list):
            if not data:
                raise RemoteError(f"No row returned for {what}", status_code=404)
            data = data[0]
        if not isinstance(data, dict):
            raise RemoteError(f"Unexpected response for {what}")
        return data

    # ---- RemoteStore port ----

    async def select(
            self,
            table: str,
            *,
            filters: Mapping[str, Any] | None = None,
            columns: Sequence[str] | None = None,
            join: Join | None = None,
            order_by: str | None = None,
            descending: bool = False,
    ) -> list[Row]:
        params: dict[str, str] = {"select": self._select_expr(columns, join)}
        for key, value in (filters or {}).items():
            params[key] = self._eq(value)
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        data = await self._request("GET", table, params=params)
        if not isinstance(data, list):
            raise RemoteError(f"Unexpected response for select {table}")
        return data

    async def insert(self, table: str, record: Mapping[str, Any]) -> Row:
        data = await self._request("POST", table, json=dict(record), prefer="return=representation")
        return self._single(data, f"insert into {table}")

    async def update(self, table: str, row_id: str, record: Mapping[str, Any]) -> Row:
        data = await self._request(
            "PATCH",
            table,
            params={"id": self._eq(row_id)},
            json=dict(record),
            prefer="return=representation",
        )
        return self._single(data, f"update {table} id={row_id}")

    async def delete(self, table: str, row_id: str) -> None:
        await self._request("DELETE", table, params={"id": self._eq(row_id)})

    async def subscribe(
            self,
            table: str,
            events: frozenset[ChangeType],
            callback: ChangeCallback,
    ) -> Subscription:
        sub = self._hub.add(table, events, callback)
        if table not in self._feeds:
            feed = PollingChangeFeed(
                table,
                lambda: self._snapshot(table),
                self._hub.publish,
                interval_seconds=self._poll_interval,
            )
            self._feeds[table] = feed
            await feed.start()
        return sub

    async def unsubscribe(self, subscription: Subscription) -> None:
        self._hub.remove(subscription)
        if self._hub.count(subscription.table) == 0:
            await self._stop_feed(subscription.table)

    async def _stop_feed(self, table: str) -> None:
        feed = self._feeds.pop(table, None)
        if feed is not None:
            await feed.stop()

    async def _snapshot(self, table: str) -> Snapshot:
        rows = await self.select(table, columns=("id", "updated_at"))
        return {str(r["id"]): str(r.get("updated_at") or "") for r in rows}
