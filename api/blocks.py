"""
Resolves a calendar date to the block height every read of a run is pinned to.
"""
from __future__ import annotations

import datetime as _dt
import logging
from typing import Optional

import httpx

from config import settings
from snapshot.errors import UnresolvedBlock

log = logging.getLogger(__name__)


def date_to_timestamp(date: str) -> int:
    """UTC midnight of ``YYYY-MM-DD`` as UNIX seconds."""
    day = _dt.date.fromisoformat(date)
    midnight = _dt.datetime(day.year, day.month, day.day, tzinfo=_dt.timezone.utc)
    return int(midnight.timestamp())


class BlockResolver:
    """
    Thin client over a ``/block/{chain}/{timestamp}`` service that answers
    ``{"height": int, "timestamp": int}`` for the last block at or before
    the given timestamp.
    """

    def __init__(
        self,
        base_url: str | None = None,
        chain: str | None = None,
        timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url: str = str(base_url or settings.BLOCK_API_URL).rstrip("/")
        self.chain = chain or settings.CHAIN_NAME
        self.timeout = timeout or settings.HTTP_TIMEOUT
        self._client = httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=transport
        )

    async def resolve(self, timestamp: int, chain: str | None = None) -> int:
        chain = chain or self.chain
        try:
            response = await self._client.get(f"/block/{chain}/{int(timestamp)}")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UnresolvedBlock(f"block lookup failed for {chain}@{timestamp}: {exc}") from exc

        height = data.get("height") if isinstance(data, dict) else None
        if height is None:
            raise UnresolvedBlock(f"no block height for {chain}@{timestamp}")

        log.info("[BlockResolver] %s@%d → block %s", chain, timestamp, height)
        return int(height)

    async def resolve_date(self, date: str, chain: str | None = None) -> int:
        return await self.resolve(date_to_timestamp(date), chain)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BlockResolver":
        return self

    async def __aexit__(self, exc_type, exc_value, traceback) -> None:
        await self.aclose()
