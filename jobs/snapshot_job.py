#!/usr/bin/env python3
"""
Daily referral snapshot job.

    run       build (or reuse) the snapshot for a date and sync its root
    schedule  run once a day at SCHEDULE_HOUR_UTC, forever
    root      print the Merkle root of a stored snapshot
    proof     print the inclusion proof of (address, factor) in a stored snapshot
"""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import datetime as _dt
import json
import logging
import sys
import traceback
from typing import List, Optional

from api.blocks import BlockResolver
from api.client import SnapshotStoreClient
from api.indexer import HoldingsSource
from config import settings
from ledger.contract import ReferralLedger
from snapshot.builder import SnapshotBuilder
from snapshot.errors import SnapshotPipelineError
from snapshot.merkle import MerkleTree
from snapshot.pipeline import PipelineResult, SnapshotPipeline
from snapshot.root_sync import RootSync
from storage.csv_export import CsvSnapshotExport
from utils.logger import configure_logging

log = logging.getLogger("jobs.snapshot_job")


def today_utc() -> str:
    return _dt.datetime.now(_dt.timezone.utc).date().isoformat()


def seconds_until(hour_utc: int, now: Optional[_dt.datetime] = None) -> float:
    """Seconds from ``now`` to the next ``hour_utc:00`` UTC (strictly in the future)."""
    now = now or _dt.datetime.now(_dt.timezone.utc)
    target = now.replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if target <= now:
        target += _dt.timedelta(days=1)
    return (target - now).total_seconds()


# ──────────────────────────────────────────────────────────────────────────
# Commands
# ──────────────────────────────────────────────────────────────────────────
async def run_once(date: str) -> PipelineResult:
    """Construct every collaborator explicitly and run the pipeline for ``date``."""
    async with contextlib.AsyncExitStack() as stack:
        resolver = await stack.enter_async_context(BlockResolver())
        source = await stack.enter_async_context(HoldingsSource())
        store = stack.enter_context(SnapshotStoreClient())

        export = CsvSnapshotExport.for_date(settings.EXPORT_DIR, date) if settings.EXPORT_CSV else None
        pipeline = SnapshotPipeline(
            builder=SnapshotBuilder(source=source, resolver=resolver),
            store=store,
            root_sync=RootSync(ledger=ReferralLedger()),
            exporter=export.add if export else None,
        )
        return await pipeline.run(date)


async def schedule_forever() -> None:
    while True:
        sleep_s = seconds_until(settings.SCHEDULE_HOUR_UTC)
        hours, rem = divmod(int(sleep_s), 3600)
        log.info(f"[sleep] Next run in {hours}h {rem // 60:02d}m")
        await asyncio.sleep(sleep_s)

        date = today_utc()
        log.info(f"Running snapshot job for {date}")
        try:
            await run_once(date)
        except SnapshotPipelineError as err:
            # the next day's run starts from scratch; today's date stays unpersisted
            log.error(f"Snapshot job for {date} failed: {err}")
            log.debug("".join(traceback.format_exception(err)))


def stored_tree(date: str) -> MerkleTree:
    with SnapshotStoreClient() as store:
        snapshot = store.read(date)
    if snapshot is None:
        raise SnapshotPipelineError(f"snapshot {date} not found")

    tree = MerkleTree.from_records(snapshot.records)
    if tree.hex_root != snapshot.root:
        log.warning(f"Stored root {snapshot.root} differs from recomputed {tree.hex_root}")
    return tree


# ──────────────────────────────────────────────────────────────────────────
# Entrypoint
# ──────────────────────────────────────────────────────────────────────────
def _iso_date(value: str) -> str:
    try:
        return _dt.date.fromisoformat(value).isoformat()
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a YYYY-MM-DD date: {value!r}") from None


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="referral-snapshot", description=__doc__.split("\n")[1])
    sub = parser.add_subparsers(dest="command", required=True)

    p_run = sub.add_parser("run", help="build or reuse a snapshot and sync its root")
    p_run.add_argument("--date", default=None, type=_iso_date, help="YYYY-MM-DD (default: today, UTC)")

    sub.add_parser("schedule", help="run daily at SCHEDULE_HOUR_UTC")

    p_root = sub.add_parser("root", help="print a stored snapshot's Merkle root")
    p_root.add_argument("--date", required=True, type=_iso_date)

    p_proof = sub.add_parser("proof", help="print an inclusion proof")
    p_proof.add_argument("--date", required=True, type=_iso_date)
    p_proof.add_argument("--address", required=True)
    p_proof.add_argument("--factor", required=True, type=int)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _parser().parse_args(argv)
    configure_logging(settings.LOG_LEVEL, settings.JSON_LOGS)

    try:
        if args.command == "run":
            result = asyncio.run(run_once(args.date or today_utc()))
            log.info(
                f"Snapshot {result.snapshot.name}: root={result.snapshot.root} "
                f"built={result.built} root_updated={result.sync.updated}"
            )
        elif args.command == "schedule":
            asyncio.run(schedule_forever())
        elif args.command == "root":
            print(stored_tree(args.date).hex_root)
        elif args.command == "proof":
            print(json.dumps(stored_tree(args.date).proof(args.address, args.factor)))
    except SnapshotPipelineError as err:
        log.error(f"{type(err).__name__}: {err}")
        return 1
    except KeyboardInterrupt:
        log.warning("Snapshot job stopped by keyboard interrupt.")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
