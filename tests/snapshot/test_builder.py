from __future__ import annotations

import pytest

from snapshot.builder import SnapshotBuilder
from snapshot.errors import MalformedUpstreamData, NoParticipants, SnapshotBuildFailed, UnresolvedBlock
from tests.helpers.fakes import BLOCK, FakeHoldingsSource, FakeResolver, addr, tokens

POOLS = ["land", "transport", "avatar", "bonus"]


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _builder(source, **kwargs) -> SnapshotBuilder:
    kwargs.setdefault("resolver", FakeResolver())
    kwargs.setdefault("batch_size", 50)
    kwargs.setdefault("cooldown_seconds", 0)
    kwargs.setdefault("fetch_max_tries", 3)
    kwargs.setdefault("fetch_retry_seconds", 0)
    return SnapshotBuilder(source=source, pools=POOLS, **kwargs)


@pytest.mark.asyncio
async def test_aggregates_across_pools(snapshot_date):
    source = FakeHoldingsSource({
        addr(1): {"land": tokens(2, 1), "transport": tokens(1, 0, start=10), "bonus": tokens(0, 1, start=20)},
        addr(2): {},
    })
    resolver = FakeResolver()
    records = await _builder(source, resolver=resolver).build(snapshot_date)

    by_addr = {r.address: r for r in records}
    assert (by_addr[addr(1)].staked, by_addr[addr(1)].unstaked) == (3, 2)
    assert (by_addr[addr(1)].total, by_addr[addr(1)].factor) == (5, 60)
    assert (by_addr[addr(2)].total, by_addr[addr(2)].factor) == (0, 0)

    assert resolver.calls == [snapshot_date]
    assert {call[2] for call in source.token_calls} == {BLOCK}
    assert len(source.token_calls) == 2 * len(POOLS)


@pytest.mark.asyncio
async def test_batches_are_bounded_and_cooled_down():
    source = FakeHoldingsSource({addr(i): {"land": tokens(1, 0)} for i in range(1, 8)})
    sleep = RecordingSleep()
    batches = []

    records = await _builder(
        source, batch_size=3, cooldown_seconds=10, sleep=sleep, on_batch=batches.append
    ).build_at_block(BLOCK)

    assert len(records) == 7
    assert [len(b) for b in batches] == [3, 3, 1]
    assert sleep.calls == [10, 10]
    assert 1 < source.max_in_flight <= 3
    assert [r.address for r in records] == sorted(addr(i) for i in range(1, 8))


@pytest.mark.asyncio
async def test_transient_failures_are_retried():
    source = FakeHoldingsSource({addr(1): {"land": tokens(1, 1)}}, failing={addr(1): 2})
    records = await _builder(source).build_at_block(BLOCK)

    assert records[0].total == 2
    land_calls = [c for c in source.token_calls if c[0] == "land"]
    assert len(land_calls) == 3


@pytest.mark.asyncio
async def test_exhausted_retries_abort_the_build():
    source = FakeHoldingsSource(
        {addr(1): {"land": tokens(1, 0)}, addr(2): {"land": tokens(1, 0)}},
        failing={addr(2): 100},
    )
    batches = []
    with pytest.raises(SnapshotBuildFailed):
        await _builder(source, on_batch=batches.append).build_at_block(BLOCK)

    assert batches == []
    failed = [c for c in source.token_calls if c[1] == addr(2)]
    assert len(failed) == 3


@pytest.mark.asyncio
async def test_malformed_data_is_not_retried():
    source = FakeHoldingsSource({addr(1): {"land": tokens(1, 0)}}, malformed={addr(1)})
    with pytest.raises(MalformedUpstreamData):
        await _builder(source).build_at_block(BLOCK)

    assert len(source.token_calls) == 1


@pytest.mark.asyncio
async def test_empty_participant_set_is_fatal():
    with pytest.raises(NoParticipants):
        await _builder(FakeHoldingsSource({})).build_at_block(BLOCK)


@pytest.mark.asyncio
async def test_unresolved_block_is_retried_then_raised(snapshot_date):
    class DownResolver(FakeResolver):
        async def resolve_date(self, date, chain=None):
            self.calls.append(date)
            raise UnresolvedBlock("down")

    resolver = DownResolver()
    source = FakeHoldingsSource({addr(1): {}})
    with pytest.raises(UnresolvedBlock):
        await _builder(source, resolver=resolver).build(snapshot_date)

    assert len(resolver.calls) == 3
    assert source.participant_calls == 0


def test_rejects_empty_pool_list():
    with pytest.raises(ValueError):
        SnapshotBuilder(source=FakeHoldingsSource({}), resolver=FakeResolver(), pools=[])
