"""
Wire types shared by the indexer client, the snapshot store and the CLI.
"""
from __future__ import annotations

import datetime as _dt
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def normalize_address(address: str) -> str:
    """Lower‑case ``0x``‑prefixed 20‑byte hex address."""
    addr = address.strip().lower()
    if not addr.startswith("0x"):
        addr = "0x" + addr
    if len(addr) != 42:
        raise ValueError(f"address must be 20 bytes of hex, got {address!r}")
    int(addr[2:], 16)  # raises ValueError on non‑hex
    return addr


class TokenRecord(BaseModel):
    """One token held by a participant in one pool at the resolved block."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    token_id: int = Field(alias="tokenId")
    active: bool


class SnapshotRecord(BaseModel):
    """Cross‑pool aggregate for one participant."""

    model_config = ConfigDict(populate_by_name=True)

    address: str = Field(alias="user")
    staked: int = Field(ge=0)
    unstaked: int = Field(ge=0)
    total: int = Field(ge=0)
    factor: int = Field(ge=0, le=100)
    proof: Optional[List[str]] = None

    @field_validator("address")
    @classmethod
    def _normalize(cls, v: str) -> str:
        return normalize_address(v)

    @model_validator(mode="after")
    def _check_totals(self) -> "SnapshotRecord":
        if self.staked + self.unstaked != self.total:
            raise ValueError("staked + unstaked must equal total")
        return self

    @classmethod
    def from_counts(cls, address: str, staked: int, unstaked: int) -> "SnapshotRecord":
        total = staked + unstaked
        return cls(
            address=address,
            staked=staked,
            unstaked=unstaked,
            total=total,
            factor=staking_factor(staked, total),
        )


class Snapshot(BaseModel):
    """Dated, immutable record set plus its Merkle root."""

    model_config = ConfigDict(frozen=True)

    name: str
    root: str
    records: List[SnapshotRecord]

    @field_validator("name")
    @classmethod
    def _check_date(cls, v: str) -> str:
        _dt.date.fromisoformat(v)
        return v


def staking_factor(staked: int, total: int) -> int:
    """``floor(staked / total * 100)``, or 0 for an empty holding."""
    if total <= 0:
        return 0
    return (staked * 100) // total
