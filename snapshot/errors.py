"""
Error taxonomy for the snapshot pipeline.

Transient upstream failures are retried by the caller and only surface here
once the retry budget is spent. Structural errors are never retried.
"""
from __future__ import annotations


class SnapshotPipelineError(Exception):
    """Base class – the CLI maps any subclass to a non‑zero exit."""


class UnresolvedBlock(SnapshotPipelineError):
    """The block service was unreachable or returned no height."""


class UpstreamQueryFailed(SnapshotPipelineError):
    """A page request against the indexing service failed."""


class NoParticipants(SnapshotPipelineError):
    """The participant listing came back empty."""


class EmptySnapshot(SnapshotPipelineError):
    """A Merkle tree was requested over zero records."""


class LeafNotFound(SnapshotPipelineError):
    """No leaf matches the requested (address, factor) pair."""

    def __init__(self, address: str, factor: int) -> None:
        super().__init__(f"no leaf for address={address} factor={factor}")
        self.address = address
        self.factor = factor


class SnapshotBuildFailed(SnapshotPipelineError):
    """A participant fetch exhausted its retry budget; nothing was persisted."""


class StoreUnavailable(SnapshotPipelineError):
    """Transport failure talking to the snapshot store."""


class RootSyncFailed(SnapshotPipelineError):
    """A ledger call exhausted its retry budget."""

    def __init__(self, step: str, attempts: int, cause: BaseException | None = None) -> None:
        super().__init__(f"{step} failed after {attempts} attempt(s): {cause}")
        self.step = step
        self.attempts = attempts
        self.cause = cause


class MalformedUpstreamData(SnapshotPipelineError):
    """The indexer answered, but an item does not have the expected shape."""


class LedgerMisconfigured(SnapshotPipelineError, ValueError):
    """Contract address or signer key is missing."""


class LedgerTxReverted(SnapshotPipelineError):
    """The update transaction was mined but reverted."""
