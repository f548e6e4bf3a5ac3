import csv

from api.schemas import SnapshotRecord
from storage.csv_export import CsvSnapshotExport
from tests.helpers.fakes import addr


def test_header_once_then_append(tmp_path):
    export = CsvSnapshotExport.for_date(tmp_path / "snapshots", "2023-08-18")
    export.add([SnapshotRecord.from_counts(addr(1), 3, 2)])
    export.add([SnapshotRecord.from_counts(addr(2), 0, 0), SnapshotRecord.from_counts(addr(3), 1, 0)])

    lines = export.path.read_text().splitlines()
    assert lines[0] == "user,staked,unstaked,total,factor"
    assert sum(1 for line in lines if line.startswith("user,")) == 1

    with export.path.open() as fh:
        rows = list(csv.DictReader(fh))
    assert [r["user"] for r in rows] == [addr(1), addr(2), addr(3)]
    assert rows[0]["factor"] == "60"


def test_new_export_truncates_previous_file(tmp_path):
    path = tmp_path / "2023-08-18.csv"
    path.write_text("stale\n")

    CsvSnapshotExport(path).add([SnapshotRecord.from_counts(addr(1), 1, 0)])

    assert "stale" not in path.read_text()
    assert len(path.read_text().splitlines()) == 2
