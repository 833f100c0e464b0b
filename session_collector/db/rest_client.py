"""Blocking client for a PostgREST-style upsert API.

Rows are POSTed as a JSON array with ``on_conflict=<column>`` and a
``Prefer: resolution=merge-duplicates`` directive, so the same payload can be
resubmitted any number of times.
"""
from __future__ import annotations

import logging
from typing import Any

import requests

from session_collector import config
from session_collector.db.errors import StoreSchemaError, StoreTransportError

logger = logging.getLogger("session_collector.store")

_MISSING_TABLE_MARKERS = ("42P01", "PGRST205")


def _looks_like_missing_table(body: str) -> bool:
    if any(marker in body for marker in _MISSING_TABLE_MARKERS):
        return True
    return "relation" in body and "does not exist" in body


class RestStoreClient:
    """Thin wrapper over ``requests.Session`` with store auth headers."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ):
        if not base_url:
            raise ValueError("REST store requires a base URL (COLLECTOR_STORE_URL)")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else config.HTTP_TIMEOUT_SECONDS
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )

    def _url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    def _raise_for_response(self, table: str, response: requests.Response) -> None:
        if response.ok:
            return
        body = (response.text or "")[:500]
        if _looks_like_missing_table(body):
            raise StoreSchemaError(
                f"Table {table} does not exist on the store: {body[:200]}",
                status_code=response.status_code,
            )
        raise StoreTransportError(
            f"Store rejected request for {table} ({response.status_code}): {body[:200]}",
            status_code=response.status_code,
        )

    def upsert(self, table: str, rows: list[dict], on_conflict: str) -> None:
        if not rows:
            return
        try:
            response = self.session.post(
                self._url(table),
                params={"on_conflict": on_conflict},
                json=rows,
                headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise StoreTransportError(f"Store unreachable while writing {table}: {exc}") from exc
        self._raise_for_response(table, response)
        logger.debug("Upserted %d row(s) into %s", len(rows), table)

    def select(self, table: str, columns: str = "*", filters: dict[str, str] | None = None) -> list[dict[str, Any]]:
        params = {"select": columns}
        params.update(filters or {})
        try:
            response = self.session.get(self._url(table), params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise StoreTransportError(f"Store unreachable while reading {table}: {exc}") from exc
        self._raise_for_response(table, response)
        try:
            payload = response.json()
        except ValueError as exc:
            raise StoreTransportError(f"Store returned invalid JSON for {table}") from exc
        return payload if isinstance(payload, list) else []

    def close(self) -> None:
        self.session.close()
