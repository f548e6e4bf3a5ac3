"""
Optional local export: one CSV per snapshot date, written once the snapshot is stored.

The export is a convenience copy; the snapshot store stays the system of
record and nothing reads these files back.
"""
from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Iterable, Sequence

from api.schemas import SnapshotRecord
from config import EXPORT_HEADERS

log = logging.getLogger(__name__)


class CsvSnapshotExport:
    """
    The first :meth:`add` truncates the file and writes the header; every
    later call appends rows only.
    """

    def __init__(self, path: Path | str, headers: Sequence[str] = EXPORT_HEADERS):
        self.path = Path(path)
        self.headers = list(headers)
        self._first = True

    @classmethod
    def for_date(cls, export_dir: Path | str, date: str) -> "CsvSnapshotExport":
        return cls(Path(export_dir) / f"{date}.csv")

    def add(self, records: Iterable[SnapshotRecord]) -> int:
        rows = [
            {
                "user": r.address,
                "staked": r.staked,
                "unstaked": r.unstaked,
                "total": r.total,
                "factor": r.factor,
            }
            for r in records
        ]

        self.path.parent.mkdir(parents=True, exist_ok=True)
        mode = "w" if self._first else "a"
        with self.path.open(mode, newline="", encoding="utf-8") as fh:
            writer = csv.DictWriter(fh, fieldnames=self.headers, extrasaction="ignore")
            if self._first:
                writer.writeheader()
            writer.writerows(rows)

        self._first = False
        log.debug("[CsvSnapshotExport] %d row(s) → %s", len(rows), self.path)
        return len(rows)
