"""
Makes the ledger's recorded root equal to the snapshot's root.

    read latest root ──► equal? ──yes──► no‑op
          │ (failure = unknown)   │no
          └───────────────────────┴────► updateMerkleRoot(timestamp, root)
                                              └──► wait for receipt

Each of the three ledger calls gets its own bounded retry budget; reverts
and missing configuration fail on the first attempt.
Assumes a single writer; the read‑compare‑write is not atomic.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

from config import settings
from snapshot.errors import LedgerMisconfigured, LedgerTxReverted, RootSyncFailed
from snapshot.retry import Err, RetryResult, retry_async

log = logging.getLogger(__name__)


class Ledger(Protocol):
    def get_latest_merkle_root(self) -> str: ...

    def update_merkle_root(self, timestamp: int, root: str) -> str: ...

    def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]: ...


@dataclass(frozen=True)
class SyncResult:
    updated: bool
    previous_root: Optional[str]
    root: str
    tx_hash: Optional[str] = None
    receipt: Optional[Dict[str, Any]] = None


def _same_root(a: Optional[str], b: str) -> bool:
    return a is not None and a.lower() == b.lower()


def _is_permanent(exc: Exception) -> bool:
    """A revert or a missing key comes back the same on every attempt."""
    return isinstance(exc, (LedgerTxReverted, LedgerMisconfigured))


class RootSync:
    def __init__(
        self,
        *,
        ledger: Ledger,
        max_tries: Optional[int] = None,
        retry_seconds: Optional[float] = None,
    ) -> None:
        self._ledger = ledger
        self.max_tries = int(max_tries or settings.SYNC_MAX_TRIES)
        self.retry_seconds = float(
            settings.SYNC_RETRY_SECONDS if retry_seconds is None else retry_seconds
        )

    async def _call(self, label: str, fn: Callable[..., Any], *args: Any) -> RetryResult[Any]:
        # ledger clients are synchronous; keep the event loop free
        return await retry_async(
            asyncio.to_thread,
            fn,
            *args,
            label=label,
            max_tries=self.max_tries,
            interval=self.retry_seconds,
            giveup=_is_permanent,
        )

    async def latest_root(self) -> Optional[str]:
        """Ledger's current root, or ``None`` when it cannot be read."""
        outcome = await self._call("getLatestMerkleRoot", self._ledger.get_latest_merkle_root)
        if isinstance(outcome, Err):
            log.warning("[RootSync] Latest root unknown: %s", outcome.error)
            return None
        return outcome.value

    async def sync(self, root: str, timestamp: int) -> SyncResult:
        previous = await self.latest_root()

        if _same_root(previous, root):
            log.info("[RootSync] Merkle root is up to date (%s)", root)
            return SyncResult(updated=False, previous_root=previous, root=root)

        log.info(
            "[RootSync] Updating merkle root %s → %s (timestamp %d)",
            previous, root, timestamp,
        )
        sent = await self._call(
            "updateMerkleRoot", self._ledger.update_merkle_root, int(timestamp), root
        )
        if isinstance(sent, Err):
            raise RootSyncFailed("updateMerkleRoot", sent.attempts, sent.error)

        mined = await self._call("wait for receipt", self._ledger.wait_for_receipt, sent.value)
        if isinstance(mined, Err):
            raise RootSyncFailed("wait for receipt", mined.attempts, mined.error)

        log.info("[RootSync] Merkle root updated in %s", sent.value)
        return SyncResult(
            updated=True,
            previous_root=previous,
            root=root,
            tx_hash=sent.value,
            receipt=mined.value,
        )
