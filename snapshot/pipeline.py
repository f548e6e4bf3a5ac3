"""
Snapshot pipeline executed once per calendar date.

    store.read(date) ──hit──────────────────────────────┐
          │ miss                                         ▼
          └─► builder.build(date) ─► Merkle root ─► store.write ─► root sync

A snapshot that already exists is never rebuilt or rewritten. Any failure
before ``store.write`` leaves nothing persisted, skips the optional export
and skips the root sync.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Sequence

from api.blocks import date_to_timestamp
from api.schemas import Snapshot, SnapshotRecord
from snapshot.builder import SnapshotBuilder
from snapshot.merkle import attach_proofs, build_tree
from snapshot.root_sync import RootSync, SyncResult

log = logging.getLogger(__name__)


class SnapshotStore(Protocol):
    def read(self, name: str) -> Optional[Snapshot]: ...

    def write(self, snapshot: Snapshot) -> str: ...


@dataclass(frozen=True)
class PipelineResult:
    snapshot: Snapshot
    built: bool
    sync: SyncResult


def make_snapshot(
    name: str, records: Sequence[SnapshotRecord], *, with_proofs: bool = True
) -> Snapshot:
    """Root the records; insertion order of ``records`` is kept as is."""
    tree = build_tree(records)
    if with_proofs:
        records = attach_proofs(records, tree)
    log.info(
        "[pipeline] %s: %d leaves, depth %d, root %s",
        name, tree.leaf_count, tree.depth, tree.hex_root,
    )
    return Snapshot(name=name, root=tree.hex_root, records=list(records))


class SnapshotPipeline:
    def __init__(
        self,
        *,
        builder: SnapshotBuilder,
        store: SnapshotStore,
        root_sync: RootSync,
        with_proofs: bool = True,
        exporter: Optional[Callable[[Sequence[SnapshotRecord]], Any]] = None,
    ) -> None:
        self._builder = builder
        self._store = store
        self._root_sync = root_sync
        self.with_proofs = with_proofs
        self._exporter = exporter

    async def load_or_build(self, date: str) -> tuple[Snapshot, bool]:
        # store client is synchronous
        existing = await asyncio.to_thread(self._store.read, date)
        if existing is not None:
            log.info("[pipeline] Snapshot %s already exists (root %s)", date, existing.root)
            return existing, False

        log.info("[pipeline] Generating new snapshot for %s", date)
        records = await self._builder.build(date)
        snapshot = make_snapshot(date, records, with_proofs=self.with_proofs)

        log.info("[pipeline] Saving snapshot %s", date)
        await asyncio.to_thread(self._store.write, snapshot)

        if self._exporter is not None:
            self._exporter(snapshot.records)
        return snapshot, True

    async def run(self, date: str) -> PipelineResult:
        snapshot, built = await self.load_or_build(date)
        sync = await self._root_sync.sync(snapshot.root, date_to_timestamp(date))
        return PipelineResult(snapshot=snapshot, built=built, sync=sync)
