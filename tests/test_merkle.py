"""Tests for Merkle tree, proofs and document digests."""

import hashlib
import json
from pathlib import Path

import pytest

from batchledger.crypto.digest import canonical_hash, canonical_hash_text, hash_document
from batchledger.crypto.merkle import MerkleTree, compute_root, verify_proof
from batchledger.models.values import ZERO_BYTES32


A = "0x" + "a" * 64
B = "0x" + "b" * 64
C = "0x" + "c" * 64


class TestMerkleTree:
    def test_empty_tree_has_zero_root(self) -> None:
        assert MerkleTree().compute_root() == ZERO_BYTES32

    def test_single_leaf_is_root(self) -> None:
        tree = MerkleTree()
        tree.add_leaf(A)
        assert tree.compute_root() == A

    def test_deterministic(self) -> None:
        """Same leaves produce same root regardless of insertion order."""
        assert compute_root([A, B, C]) == compute_root([C, A, B])

    def test_different_leaves_different_roots(self) -> None:
        assert compute_root([A, B]) != compute_root([A, C])

    def test_pair_hashes_raw_bytes(self) -> None:
        expected = "0x" + hashlib.sha256(bytes.fromhex("a" * 64 + "b" * 64)).hexdigest()
        assert compute_root([B, A]) == expected

    def test_odd_leaf_paired_with_itself(self) -> None:
        ab = compute_root([A, B])
        cc = compute_root([C, C])
        tree = MerkleTree()
        for leaf in (A, B, C):
            tree.add_leaf(leaf)
        root = tree.compute_root()
        top = "0x" + hashlib.sha256(
            bytes.fromhex(ab[2:]) + bytes.fromhex(cc[2:])
        ).hexdigest()
        assert root == top

    def test_accepts_sha256_prefixed_leaves(self) -> None:
        assert compute_root(["sha256:" + "a" * 64]) == A

    def test_cannot_add_after_compute(self) -> None:
        tree = MerkleTree()
        tree.add_leaf(A)
        tree.compute_root()
        with pytest.raises(RuntimeError):
            tree.add_leaf(B)

    def test_add_data(self) -> None:
        tree = MerkleTree()
        tree.add_data(b"lot 42")
        assert tree.leaf_count == 1
        assert tree.compute_root() == "0x" + hashlib.sha256(b"lot 42").hexdigest()


class TestInclusionProof:
    def test_every_leaf_proves(self) -> None:
        leaves = ["0x" + f"{n:064x}" for n in range(1, 8)]
        tree = MerkleTree()
        for leaf in leaves:
            tree.add_leaf(leaf)
        root = tree.compute_root()
        for leaf in leaves:
            proof = tree.inclusion_proof(leaf)
            assert proof is not None
            assert proof.root == root
            assert proof.verify()

    def test_unknown_leaf(self) -> None:
        tree = MerkleTree()
        tree.add_leaf(A)
        tree.compute_root()
        assert tree.inclusion_proof(B) is None

    def test_proof_before_compute(self) -> None:
        tree = MerkleTree()
        tree.add_leaf(A)
        with pytest.raises(RuntimeError):
            tree.inclusion_proof(A)

    def test_wrong_root_fails(self) -> None:
        tree = MerkleTree()
        for leaf in (A, B, C):
            tree.add_leaf(leaf)
        tree.compute_root()
        proof = tree.inclusion_proof(A)
        assert not verify_proof(A, proof.path, B)


class TestDocumentDigest:
    def test_json_is_canonical(self, tmp_path: Path) -> None:
        first = tmp_path / "a.json"
        second = tmp_path / "b.json"
        first.write_text(json.dumps({"lot": 1, "origin": "NZ"}), encoding="utf-8")
        second.write_text('{\n  "origin": "NZ",\n  "lot": 1\n}', encoding="utf-8")
        assert canonical_hash(first) == canonical_hash(second)
        assert hash_document(first) == canonical_hash(first)

    def test_other_files_hash_raw_bytes(self, tmp_path: Path) -> None:
        doc = tmp_path / "coa.txt"
        doc.write_bytes(b"certificate of analysis")
        expected = "0x" + hashlib.sha256(b"certificate of analysis").hexdigest()
        assert canonical_hash_text(doc) == expected
        assert hash_document(doc) == expected
