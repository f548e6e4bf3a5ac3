from __future__ import annotations

import random

import pytest
from eth_utils import encode_hex, keccak

from api.schemas import SnapshotRecord
from snapshot.errors import EmptySnapshot, LeafNotFound
from snapshot.merkle import (
    MerkleTree,
    attach_proofs,
    build_tree,
    hash_pair,
    leaf_hash,
    verify,
    verify_pair,
)
from tests.helpers.fakes import addr


def _pairs(n: int):
    return [(addr(i + 1), (i * 37) % 101) for i in range(n)]


def _flip_bit(data: bytes, bit: int = 0) -> bytes:
    return bytes([data[0] ^ (1 << bit)]) + data[1:]


def test_leaf_encoding_is_packed_address_and_uint256():
    address = "0xffb8c9ec9951b1d22ae0676a8965de43412ceb7d"
    expected = keccak(bytes.fromhex(address[2:]) + (100).to_bytes(32, "big"))
    assert leaf_hash(address, 100) == expected


def test_leaf_hash_ignores_address_case():
    lower = "0xffb8c9ec9951b1d22ae0676a8965de43412ceb7d"
    assert leaf_hash(lower, 7) == leaf_hash(lower.upper().replace("0X", "0x"), 7)


def test_single_leaf_root_is_the_leaf():
    tree = MerkleTree.from_pairs([(addr(1), 50)])
    assert tree.root == leaf_hash(addr(1), 50)
    assert tree.proof(addr(1), 50) == []


def test_two_leaf_root_uses_sorted_pair():
    a, b = leaf_hash(addr(1), 10), leaf_hash(addr(2), 20)
    lo, hi = sorted([a, b])
    tree = MerkleTree([a, b])
    assert tree.root == keccak(lo + hi)
    assert hash_pair(a, b) == hash_pair(b, a)


@pytest.mark.parametrize("n", [2, 3, 5, 8, 13])
def test_root_is_invariant_under_permutation(n):
    pairs = _pairs(n)
    expected = MerkleTree.from_pairs(pairs).hex_root

    rng = random.Random(n)
    for _ in range(5):
        shuffled = pairs[:]
        rng.shuffle(shuffled)
        assert MerkleTree.from_pairs(shuffled).hex_root == expected


@pytest.mark.parametrize("n", [1, 2, 3, 4, 7, 9, 16])
def test_every_leaf_proof_verifies(n):
    pairs = _pairs(n)
    tree = MerkleTree.from_pairs(pairs)
    for address, factor in pairs:
        proof = tree.proof(address, factor)
        assert verify_pair(address, factor, proof, tree.hex_root)
        assert verify(leaf_hash(address, factor), proof, tree.root)


def test_mutated_leaf_or_proof_fails_verification():
    pairs = _pairs(7)
    tree = MerkleTree.from_pairs(pairs)
    address, factor = pairs[3]
    leaf = leaf_hash(address, factor)
    proof = tree.proof_for_leaf(leaf)
    assert proof

    for bit in range(8):
        assert not verify(_flip_bit(leaf, bit), proof, tree.root)

    for i in range(len(proof)):
        broken = list(proof)
        broken[i] = _flip_bit(broken[i])
        assert not verify(leaf, broken, tree.root)

    assert not verify_pair(address, factor + 1, proof, tree.root)


def test_stale_factor_is_not_found():
    tree = MerkleTree.from_pairs(_pairs(4))
    address, factor = _pairs(4)[0]
    with pytest.raises(LeafNotFound) as exc:
        tree.proof(address, factor + 1)
    assert exc.value.address == address


def test_empty_tree_is_rejected():
    with pytest.raises(EmptySnapshot):
        MerkleTree([])
    with pytest.raises(EmptySnapshot):
        build_tree([])


def test_build_tree_and_attach_proofs_from_records():
    records = [
        SnapshotRecord.from_counts(addr(1), 3, 2),
        SnapshotRecord.from_counts(addr(2), 0, 0),
        SnapshotRecord.from_counts(addr(3), 1, 0),
    ]
    tree = build_tree(records)
    with_proofs = attach_proofs(records, tree)

    assert [r.address for r in with_proofs] == [r.address for r in records]
    assert all(r.proof is None for r in records)
    for rec in with_proofs:
        assert verify_pair(rec.address, rec.factor, rec.proof, tree.hex_root)

    assert tree.hex_root == encode_hex(tree.root)
    assert tree.leaf_count == 3
    assert tree.depth == 2
