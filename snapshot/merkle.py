"""
Canonical Merkle tree over ``(address, factor)`` pairs.

Leaf  = keccak256(abi.encodePacked(address, uint256 factor))
Node  = keccak256(min(a, b) ‖ max(a, b))          (sorted‑pair hashing)

Leaves are sorted before the first level is built and an unpaired node is
promoted unchanged, so the root depends only on the multiset of pairs and a
proof is verified without left/right flags, exactly like OpenZeppelin's
``MerkleProof.verify``.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Sequence, Tuple, Union

from eth_abi.packed import encode_packed
from eth_utils import decode_hex, encode_hex, keccak, to_canonical_address

from api.schemas import SnapshotRecord
from snapshot.errors import EmptySnapshot, LeafNotFound

HashLike = Union[bytes, str]


def _as_bytes(value: HashLike) -> bytes:
    return decode_hex(value) if isinstance(value, str) else bytes(value)


def leaf_hash(address: str, factor: int) -> bytes:
    encoded = encode_packed(
        ["address", "uint256"], [to_canonical_address(address), int(factor)]
    )
    return keccak(encoded)


def hash_pair(a: bytes, b: bytes) -> bytes:
    return keccak(a + b) if a <= b else keccak(b + a)


class MerkleTree:
    """Immutable once built."""

    def __init__(self, leaves: Iterable[bytes]):
        level = sorted(leaves)
        if not level:
            raise EmptySnapshot("cannot build a Merkle tree over zero leaves")

        self._layers: List[List[bytes]] = [level]
        while len(level) > 1:
            level = [
                hash_pair(level[i], level[i + 1]) if i + 1 < len(level) else level[i]
                for i in range(0, len(level), 2)
            ]
            self._layers.append(level)

        self._positions: Dict[bytes, int] = {}
        for idx, leaf in enumerate(self._layers[0]):
            self._positions.setdefault(leaf, idx)

    # ------------------------------------------------------------------ #
    # Construction helpers
    # ------------------------------------------------------------------ #
    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[str, int]]) -> "MerkleTree":
        return cls(leaf_hash(addr, factor) for addr, factor in pairs)

    @classmethod
    def from_records(cls, records: Iterable[SnapshotRecord]) -> "MerkleTree":
        return cls.from_pairs((r.address, r.factor) for r in records)

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    @property
    def root(self) -> bytes:
        return self._layers[-1][0]

    @property
    def hex_root(self) -> str:
        return encode_hex(self.root)

    @property
    def leaf_count(self) -> int:
        return len(self._layers[0])

    @property
    def depth(self) -> int:
        return len(self._layers) - 1

    def proof_for_leaf(self, leaf: bytes) -> List[bytes]:
        idx = self._positions.get(leaf)
        if idx is None:
            raise KeyError(leaf)

        proof: List[bytes] = []
        for layer in self._layers[:-1]:
            sibling = idx ^ 1
            if sibling < len(layer):
                proof.append(layer[sibling])
            idx //= 2
        return proof

    def proof(self, address: str, factor: int) -> List[str]:
        """Hex sibling hashes from the leaf for ``(address, factor)`` up to the root."""
        try:
            path = self.proof_for_leaf(leaf_hash(address, factor))
        except KeyError:
            raise LeafNotFound(address, factor) from None
        return [encode_hex(h) for h in path]


def build_tree(records: Sequence[SnapshotRecord]) -> MerkleTree:
    if not records:
        raise EmptySnapshot("snapshot has no records")
    return MerkleTree.from_records(records)


def verify(leaf: HashLike, proof: Iterable[HashLike], root: HashLike) -> bool:
    computed = _as_bytes(leaf)
    for sibling in proof:
        computed = hash_pair(computed, _as_bytes(sibling))
    return computed == _as_bytes(root)


def verify_pair(address: str, factor: int, proof: Iterable[HashLike], root: HashLike) -> bool:
    return verify(leaf_hash(address, factor), proof, root)


def attach_proofs(records: Sequence[SnapshotRecord], tree: MerkleTree) -> List[SnapshotRecord]:
    """Copies of ``records`` each carrying its own inclusion proof."""
    return [
        r.model_copy(update={"proof": tree.proof(r.address, r.factor)}) for r in records
    ]
