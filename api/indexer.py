"""
Paginated client over the indexing service (a GraphQL subgraph).

Stateless and retry‑free: a failed page raises :class:`UpstreamQueryFailed`
and an item of the wrong shape raises :class:`MalformedUpstreamData`; the
orchestrator owns the retry policy.
"""
from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Set

import httpx

from api.schemas import TokenRecord, normalize_address
from config import settings
from snapshot.errors import MalformedUpstreamData, UpstreamQueryFailed

log = logging.getLogger(__name__)

PARTICIPANTS_QUERY = """
query ($first: Int!, $skip: Int!, $block: Int!) {
  accounts(first: $first, skip: $skip, block: { number: $block }) {
    address
  }
}
"""

TOKENS_QUERY = """
query ($first: Int!, $skip: Int!, $block: Int!, $owner: Bytes!, $pool: String!) {
  nfts(first: $first, skip: $skip, block: { number: $block }, where: { owner: $owner, pool: $pool }) {
    tokenId
    active
  }
}
"""


class HoldingsSource:
    """
    Exposes the two logical queries the snapshot needs:

        list_participants(block)              -> {address, …}
        list_token_records(pool, addr, block) -> [TokenRecord, …]

    Both paginate with a fixed page size and an increasing offset until a
    page returns fewer than ``page_size`` items.
    """

    def __init__(
        self,
        endpoint: str | None = None,
        page_size: int | None = None,
        timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = str(endpoint or settings.SUBGRAPH_ENDPOINT)
        self.page_size = int(page_size or settings.PAGE_SIZE)
        self.timeout = timeout or settings.HTTP_TIMEOUT
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    # ────────────────────────────────────────────────────────
    # Public queries
    # ────────────────────────────────────────────────────────
    async def list_participants(self, block_height: int) -> Set[str]:
        users: Set[str] = set()
        async for item in self._paginate(
            PARTICIPANTS_QUERY, "accounts", {"block": int(block_height)}
        ):
            try:
                users.add(normalize_address(item["address"]))
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                raise MalformedUpstreamData(f"malformed account item {item!r}") from exc
        log.info("[HoldingsSource] %d participants at block %d", len(users), block_height)
        return users

    async def list_token_records(
        self, pool: str, address: str, block_height: int
    ) -> List[TokenRecord]:
        variables = {
            "block": int(block_height),
            "owner": normalize_address(address),
            "pool": pool,
        }
        records: List[TokenRecord] = []
        async for item in self._paginate(TOKENS_QUERY, "nfts", variables):
            try:
                records.append(
                    TokenRecord(token_id=int(item["tokenId"]), active=bool(item["active"]))
                )
            except (KeyError, TypeError, ValueError) as exc:
                raise MalformedUpstreamData(f"malformed nft item {item!r}") from exc
        log.debug(
            "[HoldingsSource] %s in %s: %d token(s)", address, pool, len(records)
        )
        return records

    # ────────────────────────────────────────────────────────
    # Pagination
    # ────────────────────────────────────────────────────────
    async def _paginate(
        self, query: str, field: str, variables: Dict[str, Any]
    ) -> AsyncIterator[Dict[str, Any]]:
        skip = 0
        while True:
            page = await self._query_page(
                query, field, {**variables, "first": self.page_size, "skip": skip}
            )
            for item in page:
                yield item
            if len(page) < self.page_size:
                break
            skip += self.page_size

    async def _query_page(
        self, query: str, field: str, variables: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        try:
            response = await self._client.post(
                self.endpoint, json={"query": query, "variables": variables}
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamQueryFailed(f"{field} page (skip={variables.get('skip')}) failed: {exc}") from exc

        if not isinstance(body, dict):
            raise UpstreamQueryFailed(f"{field}: expected JSON object, got {type(body).__name__}")
        if body.get("errors"):
            raise UpstreamQueryFailed(f"{field}: {body['errors']}")

        page = (body.get("data") or {}).get(field)
        if not isinstance(page, list):
            raise UpstreamQueryFailed(f"{field}: missing list in response")
        return page

    # ────────────────────────────────────────────────────────
    # Context manager helpers
    # ────────────────────────────────────────────────────────
    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HoldingsSource":
        return self

    async def __aexit__(self, exc_type, exc_value, traceback) -> None:
        await self.aclose()
