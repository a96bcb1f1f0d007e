"""
Tests for Merkle batch roots and inclusion proofs.
"""

import hashlib

import pytest

from errors import ProofNotFoundError
from fingerprint import ZERO_DIGEST, hash_bytes
from merkle import (
    MerkleProof,
    build_levels,
    build_proof,
    build_proof_for_leaf,
    build_root,
    combine,
    verify_proof,
)


def leaves_of(n):
    return [hash_bytes(f"doc-{i}") for i in range(n)]


def sorted_pair(a, b):
    lo, hi = sorted([bytes.fromhex(a), bytes.fromhex(b)])
    return hashlib.sha256(lo + hi).hexdigest()


class TestBuildRoot:
    def test_empty_batch(self):
        assert build_root([]) == ZERO_DIGEST

    def test_single_leaf_is_root(self):
        leaf = hash_bytes(b"only")
        assert build_root([leaf]) == leaf

    def test_two_leaves(self):
        a, b = leaves_of(2)
        assert build_root([a, b]) == sorted_pair(a, b)

    def test_odd_node_promoted(self):
        a, b, c = leaves_of(3)
        assert build_root([a, b, c]) == sorted_pair(sorted_pair(a, b), c)

    def test_swap_within_pair_keeps_root(self):
        a, b, c, d = leaves_of(4)
        assert build_root([a, b, c, d]) == build_root([b, a, c, d])

    def test_swap_across_pairs_changes_root(self):
        a, b, c, d = leaves_of(4)
        assert build_root([a, b, c, d]) != build_root([a, c, b, d])

    def test_combine_is_order_independent(self):
        a, b = leaves_of(2)
        assert combine(a, b) == combine(b, a)

    def test_prefixed_and_upper_case_leaves(self):
        leaves = leaves_of(3)
        assert build_root(["0x" + leaf.upper() for leaf in leaves]) == build_root(leaves)

    def test_levels(self):
        levels = build_levels(leaves_of(5))
        assert [len(level) for level in levels] == [5, 3, 2, 1]


class TestProofs:
    @pytest.mark.parametrize("n", [1, 2, 3, 4, 5, 7, 8, 13])
    def test_every_leaf_verifies(self, n):
        leaves = leaves_of(n)
        root = build_root(leaves)
        for i, leaf in enumerate(leaves):
            proof = build_proof(leaves, i)
            assert proof.root == root
            assert verify_proof(leaf, proof, root)

    def test_single_leaf_proof_is_empty(self):
        leaves = leaves_of(1)
        assert build_proof(leaves, 0).steps == []

    def test_wrong_leaf_fails(self):
        leaves = leaves_of(4)
        proof = build_proof(leaves, 1)
        assert not verify_proof(leaves[2], proof, build_root(leaves))

    def test_wrong_root_fails(self):
        leaves = leaves_of(4)
        proof = build_proof(leaves, 0)
        assert not verify_proof(leaves[0], proof, hash_bytes(b"other"))

    def test_plain_sibling_list(self):
        leaves = leaves_of(6)
        proof = build_proof(leaves, 4)
        assert verify_proof(leaves[4], proof.siblings, build_root(leaves))

    def test_malformed_digest_is_false(self):
        leaves = leaves_of(2)
        assert not verify_proof("not-hex", [leaves[1]], build_root(leaves))
        assert not verify_proof(leaves[0], ["zz"], build_root(leaves))

    def test_index_out_of_range(self):
        with pytest.raises(ProofNotFoundError):
            build_proof(leaves_of(3), 3)
        with pytest.raises(ProofNotFoundError):
            build_proof([], 0)

    def test_proof_for_absent_leaf(self):
        with pytest.raises(ProofNotFoundError):
            build_proof_for_leaf(leaves_of(3), hash_bytes(b"absent"))

    def test_duplicate_leaves_use_first_position(self):
        a, b = leaves_of(2)
        proof = build_proof_for_leaf([a, b, a], a)
        assert proof.leaf_index == 0
        assert build_proof([a, b, a], 2).leaf_index == 2

    def test_proof_dict_round_trip(self):
        leaves = leaves_of(5)
        proof = build_proof(leaves, 3)
        restored = MerkleProof.from_dict(proof.to_dict())
        assert restored.verify()
        assert restored.leaf_count == 5
