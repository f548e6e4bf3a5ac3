"""
Lightweight in‑memory aggregate types used while a snapshot is being built.

Plain dataclasses, never persisted directly: the persisted shape is
:class:`api.schemas.SnapshotRecord`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable

from api.schemas import SnapshotRecord, TokenRecord

__all__ = ["PoolHoldings", "ParticipantHoldings"]


# ──────────────────────────────────────────────────────────────
# Dataclasses (no persistence)
# ──────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class PoolHoldings:
    """
    One participant's holdings in one pool.  ``total = staked + unstaked``.
    """
    pool: str
    staked: int
    unstaked: int
    token_ids: FrozenSet[int] = field(default_factory=frozenset)

    @property
    def total(self) -> int:
        return self.staked + self.unstaked

    @classmethod
    def from_records(cls, pool: str, records: Iterable[TokenRecord]) -> "PoolHoldings":
        """Partition on ``active``; a token id seen twice counts once."""
        by_id: Dict[int, TokenRecord] = {}
        for rec in records:
            by_id.setdefault(rec.token_id, rec)

        staked = sum(1 for r in by_id.values() if r.active)
        return cls(
            pool=pool,
            staked=staked,
            unstaked=len(by_id) - staked,
            token_ids=frozenset(by_id),
        )


@dataclass
class ParticipantHoldings:
    """All pools for one participant at the resolved block."""
    address: str
    pools: Dict[str, PoolHoldings] = field(default_factory=dict)

    @property
    def staked(self) -> int:
        return sum(p.staked for p in self.pools.values())

    @property
    def unstaked(self) -> int:
        return sum(p.unstaked for p in self.pools.values())

    def to_record(self) -> SnapshotRecord:
        return SnapshotRecord.from_counts(self.address, self.staked, self.unstaked)
