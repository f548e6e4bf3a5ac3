"""
Typed synchronous client for the durable snapshot store.

    GET  /snapshot/{name}  -> {"data": Snapshot} | 404
    POST /snapshot         <- {"name": ..., "data": Snapshot} -> {"message": ...}
"""

from __future__ import annotations

import logging
from typing import Optional

import backoff
import httpx
from pydantic import ValidationError

from api.schemas import Snapshot
from config import settings
from snapshot.errors import StoreUnavailable

log = logging.getLogger("snapshot_store_client")


def _is_permanent(exc: Exception) -> bool:
    """4xx answers are not worth retrying; transport errors and 5xx are."""
    return (
        isinstance(exc, httpx.HTTPStatusError)
        and exc.response.status_code < 500
    )


class SnapshotStoreClient:
    """
    Minimal wrapper around httpx.Client with bounded automatic retries.

    ``read`` returns ``None`` for a snapshot that was never written; every
    transport‑level failure surfaces as :class:`StoreUnavailable`.
    """

    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        max_tries: int | None = None,
        backoff_factor: float = 2,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url: str = str(base_url or settings.S3_API_URL).rstrip("/")
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.max_tries = int(max_tries or settings.STORE_MAX_TRIES)
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"x-api-key": api_key if api_key is not None else settings.S3_API_KEY},
            transport=transport,
        )
        self._send = backoff.on_exception(
            backoff.expo,
            httpx.HTTPError,
            max_tries=self.max_tries,
            giveup=_is_permanent,
            jitter=None,
            factor=backoff_factor,
        )(self._send_once)

    # ────────────────────────────────────────────────────────
    # Public endpoints
    # ────────────────────────────────────────────────────────
    def read(self, name: str) -> Optional[Snapshot]:
        """
        Fetch the snapshot stored under ``name`` (a ``YYYY-MM-DD`` date).
        """
        try:
            response = self._send("GET", f"/snapshot/{name}")
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                log.info("Snapshot %s not found in store", name)
                return None
            raise StoreUnavailable(f"read {name}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"read {name}: {exc}") from exc

        try:
            data = response.json().get("data")
        except (ValueError, AttributeError) as exc:
            raise StoreUnavailable(f"read {name}: invalid JSON body") from exc
        if not data:
            log.info("Snapshot %s not found in store", name)
            return None

        try:
            snapshot = Snapshot.model_validate(data)
        except ValidationError as exc:
            raise StoreUnavailable(f"read {name}: malformed snapshot: {exc}") from exc
        log.debug("Fetched snapshot %s with %d records", name, len(snapshot.records))
        return snapshot

    def write(self, snapshot: Snapshot) -> str:
        """Whole‑snapshot upsert; returns the store's message."""
        payload = {
            "name": snapshot.name,
            "data": snapshot.model_dump(mode="json", by_alias=True),
        }
        try:
            response = self._send("POST", "/snapshot", json=payload)
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"write {snapshot.name}: {exc}") from exc

        try:
            message = response.json().get("message", "")
        except (ValueError, AttributeError):
            message = ""
        log.info("Stored snapshot %s: %s", snapshot.name, message)
        return message

    # ────────────────────────────────────────────────────────
    # Transport
    # ────────────────────────────────────────────────────────
    def _send_once(self, method: str, url: str, **kwargs) -> httpx.Response:
        response = self._client.request(method, url, **kwargs)
        response.raise_for_status()
        return response

    # ────────────────────────────────────────────────────────
    # Context manager helpers
    # ────────────────────────────────────────────────────────
    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "SnapshotStoreClient":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:  # noqa: D401
        self.close()
