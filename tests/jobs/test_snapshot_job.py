import datetime as dt
import json

import pytest

from api.schemas import Snapshot, SnapshotRecord
from jobs import snapshot_job
from snapshot.merkle import MerkleTree
from tests.helpers.fakes import InMemoryStore, addr


def test_seconds_until_next_run():
    now = dt.datetime(2023, 8, 18, 22, 30, tzinfo=dt.timezone.utc)
    assert snapshot_job.seconds_until(0, now) == 90 * 60
    assert snapshot_job.seconds_until(23, now) == 30 * 60
    midnight = dt.datetime(2023, 8, 18, 0, 0, tzinfo=dt.timezone.utc)
    assert snapshot_job.seconds_until(0, midnight) == 24 * 3600


def _store_with_snapshot(monkeypatch):
    records = [SnapshotRecord.from_counts(addr(i), i, 1) for i in range(1, 5)]
    tree = MerkleTree.from_records(records)
    store = InMemoryStore()
    store.write(Snapshot(name="2023-08-18", root=tree.hex_root, records=records))

    class _Client:
        def __enter__(self):
            return store

        def __exit__(self, *exc):
            return None

    monkeypatch.setattr(snapshot_job, "SnapshotStoreClient", _Client)
    return tree, records


def test_root_and_proof_commands(monkeypatch, capsys):
    tree, records = _store_with_snapshot(monkeypatch)

    assert snapshot_job.main(["root", "--date", "2023-08-18"]) == 0
    assert capsys.readouterr().out.strip() == tree.hex_root

    rec = records[2]
    argv = ["proof", "--date", "2023-08-18", "--address", rec.address, "--factor", str(rec.factor)]
    assert snapshot_job.main(argv) == 0
    assert json.loads(capsys.readouterr().out) == tree.proof(rec.address, rec.factor)


def test_unknown_leaf_or_snapshot_exits_non_zero(monkeypatch):
    _, records = _store_with_snapshot(monkeypatch)

    argv = ["proof", "--date", "2023-08-18", "--address", records[0].address, "--factor", "99"]
    assert snapshot_job.main(argv) == 1
    assert snapshot_job.main(["root", "--date", "2023-08-19"]) == 1


@pytest.mark.parametrize(
    "argv",
    [
        ["run", "--date", "2023-13-01"],
        ["root", "--date", "18/08/2023"],
        ["proof", "--date", "2023-02-30", "--address", addr(1), "--factor", "1"],
    ],
)
def test_invalid_date_is_a_usage_error(argv, capsys):
    with pytest.raises(SystemExit) as exc_info:
        snapshot_job.main(argv)

    assert exc_info.value.code == 2
    assert "not a YYYY-MM-DD date" in capsys.readouterr().err


def test_unconfigured_ledger_exits_non_zero(monkeypatch):
    monkeypatch.setattr(snapshot_job.settings, "REFERRAL_CONTRACT_ADDRESS", None)
    monkeypatch.setattr(snapshot_job.settings, "EXPORT_CSV", False)

    assert snapshot_job.main(["run", "--date", "2023-08-18"]) == 1
