"""
Builds the full set of :class:`SnapshotRecord` for one calendar date.

All reads are pinned to the block resolved from the date. Participants are
processed in fixed‑size batches: inside a batch every participant is fetched
concurrently (each one walking the pools sequentially); batches run strictly
one after another with a cooldown in between to spare the indexer.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from api.blocks import BlockResolver
from api.indexer import HoldingsSource
from api.schemas import SnapshotRecord
from config import settings
from snapshot.errors import (
    NoParticipants,
    SnapshotBuildFailed,
    UnresolvedBlock,
    UpstreamQueryFailed,
)
from snapshot.retry import Err, retry_async
from storage.models import ParticipantHoldings, PoolHoldings

log = logging.getLogger(__name__)

BatchHook = Callable[[List[SnapshotRecord]], None]


class SnapshotBuilder:
    """
    Orchestrates resolve → list participants → batched per‑pool fetches →
    per‑participant aggregation.

    Any participant whose fetch still fails after ``fetch_max_tries``
    attempts aborts the whole build; no partial result is returned.
    """

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #
    def __init__(
        self,
        *,
        source: HoldingsSource,
        resolver: BlockResolver,
        pools: Optional[Sequence[str]] = None,
        batch_size: Optional[int] = None,
        cooldown_seconds: Optional[float] = None,
        fetch_max_tries: Optional[int] = None,
        fetch_retry_seconds: Optional[float] = None,
        on_batch: Optional[BatchHook] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._source = source
        self._resolver = resolver
        self.pools: List[str] = list(pools if pools is not None else settings.pool_list)
        self.batch_size = int(batch_size or settings.BATCH_SIZE)
        self.cooldown_seconds = float(
            settings.BATCH_COOLDOWN_SECONDS if cooldown_seconds is None else cooldown_seconds
        )
        self.fetch_max_tries = int(fetch_max_tries or settings.FETCH_MAX_TRIES)
        self.fetch_retry_seconds = float(
            settings.FETCH_RETRY_SECONDS if fetch_retry_seconds is None else fetch_retry_seconds
        )
        self._on_batch = on_batch
        self._sleep = sleep

        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if not self.pools:
            raise ValueError("at least one pool is required")

    # ------------------------------------------------------------------ #
    # PUBLIC – async entry‑points                                        #
    # ------------------------------------------------------------------ #
    async def resolve_block(self, date: str) -> int:
        outcome = await retry_async(
            self._resolver.resolve_date,
            date,
            label=f"resolve block for {date}",
            max_tries=self.fetch_max_tries,
            interval=self.fetch_retry_seconds,
            exceptions=UnresolvedBlock,
        )
        if isinstance(outcome, Err):
            raise outcome.error
        return outcome.value

    async def build(self, date: str) -> List[SnapshotRecord]:
        block_height = await self.resolve_block(date)
        log.info("[SnapshotBuilder] %s pinned to block %d", date, block_height)
        return await self.build_at_block(block_height)

    async def build_at_block(self, block_height: int) -> List[SnapshotRecord]:
        # 1️⃣  Participants -----------------------------------------------
        outcome = await retry_async(
            self._source.list_participants,
            block_height,
            label="list participants",
            max_tries=self.fetch_max_tries,
            interval=self.fetch_retry_seconds,
            exceptions=UpstreamQueryFailed,
        )
        if isinstance(outcome, Err):
            raise SnapshotBuildFailed(
                f"participant listing failed after {outcome.attempts} attempt(s)"
            ) from outcome.error

        participants = sorted(outcome.value)
        if not participants:
            raise NoParticipants(f"no participants at block {block_height}")

        log.info(
            "[SnapshotBuilder] %d participants, %d pools, batch size %d",
            len(participants), len(self.pools), self.batch_size,
        )

        # 2️⃣  Batches ----------------------------------------------------
        records: List[SnapshotRecord] = []
        for start in range(0, len(participants), self.batch_size):
            if start:
                log.debug("[SnapshotBuilder] Cooling down %.1fs", self.cooldown_seconds)
                await self._sleep(self.cooldown_seconds)

            batch = participants[start:start + self.batch_size]
            batch_records = await self._run_batch(batch, block_height)
            records.extend(batch_records)

            if self._on_batch is not None:
                self._on_batch(batch_records)

            log.info(
                "[SnapshotBuilder] %d/%d participants done",
                len(records), len(participants),
            )

        return records

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    async def _run_batch(self, batch: Sequence[str], block_height: int) -> List[SnapshotRecord]:
        results = await asyncio.gather(
            *(self._fetch_participant(addr, block_height) for addr in batch),
            return_exceptions=True,
        )
        for res in results:
            if isinstance(res, BaseException):
                raise res
        return [holdings.to_record() for holdings in results]

    async def _fetch_participant(self, address: str, block_height: int) -> ParticipantHoldings:
        holdings = ParticipantHoldings(address=address)
        for pool in self.pools:
            outcome = await retry_async(
                self._source.list_token_records,
                pool,
                address,
                block_height,
                label=f"{pool} tokens of {address}",
                max_tries=self.fetch_max_tries,
                interval=self.fetch_retry_seconds,
                exceptions=UpstreamQueryFailed,
            )
            if isinstance(outcome, Err):
                raise SnapshotBuildFailed(
                    f"{pool} tokens of {address} failed after {outcome.attempts} attempt(s)"
                ) from outcome.error
            holdings.pools[pool] = PoolHoldings.from_records(pool, outcome.value)

        log.debug(
            "[SnapshotBuilder] %s staked=%d unstaked=%d",
            address, holdings.staked, holdings.unstaked,
        )
        return holdings
