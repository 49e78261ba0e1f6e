"""Merkle tree over bytes32 leaves, for deriving anchors and roots.

Uses SHA-256 as the hash function. Leaves are sorted before tree
construction so that the root does not depend on insertion order.
An odd node at any level is paired with itself.

Leaves and the root are bytes32 values (0x-prefixed hex). Parent nodes
hash the concatenated 32-byte children, not their hex text.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

from batchledger.models.values import ZERO_BYTES32, to_bytes32


@dataclass(frozen=True)
class MerkleProof:
    """An inclusion proof for a single leaf."""
    leaf_hash: str
    path: list[tuple[str, str]]  # (sibling_hash, position: "L" | "R")
    root: str

    def verify(self) -> bool:
        return verify_proof(self.leaf_hash, self.path, self.root)


class MerkleTree:
    """A deterministic Merkle tree using SHA-256.

    Usage:
        tree = MerkleTree()
        tree.add_leaf("0xabc1...")
        tree.add_leaf("0xdef4...")
        root = tree.compute_root()
        proof = tree.inclusion_proof("0xabc1...")
    """

    def __init__(self) -> None:
        self._leaves: list[str] = []
        self._tree: list[list[str]] = []
        self._computed = False

    def add_leaf(self, leaf_hash: str) -> None:
        """Add a leaf hash. Must be called before compute_root."""
        if self._computed:
            raise RuntimeError("Tree already computed. Create a new tree.")
        self._leaves.append(to_bytes32(leaf_hash))

    def add_data(self, data: bytes) -> None:
        """Hash raw data and add it as a leaf."""
        self.add_leaf("0x" + hashlib.sha256(data).hexdigest())

    @property
    def leaf_count(self) -> int:
        return len(self._leaves)

    def compute_root(self) -> str:
        """Compute the Merkle root.

        An empty tree has the zero root, which the root store refuses,
        so an empty document set can never be anchored by accident.
        """
        if not self._leaves:
            self._computed = True
            self._tree = [[]]
            return ZERO_BYTES32

        current_level = sorted(self._leaves)
        self._tree = [current_level]
        while len(current_level) > 1:
            next_level: list[str] = []
            for i in range(0, len(current_level), 2):
                left = current_level[i]
                right = current_level[i + 1] if i + 1 < len(current_level) else left
                next_level.append(_hash_pair(left, right))
            self._tree.append(next_level)
            current_level = next_level

        self._computed = True
        return current_level[0]

    def inclusion_proof(self, leaf_hash: str) -> MerkleProof | None:
        """Generate an inclusion proof for a leaf.

        Returns None if the leaf is not in the tree.
        Must call compute_root first.
        """
        if not self._computed:
            raise RuntimeError("Must call compute_root before generating proofs")

        leaf = to_bytes32(leaf_hash)
        sorted_leaves = self._tree[0]
        if leaf not in sorted_leaves:
            return None

        path: list[tuple[str, str]] = []
        current_idx = sorted_leaves.index(leaf)
        for level in self._tree[:-1]:
            if current_idx % 2 == 0:
                sibling_idx = current_idx + 1
                if sibling_idx < len(level):
                    path.append((level[sibling_idx], "R"))
                else:
                    path.append((level[current_idx], "R"))  # duplicate
            else:
                path.append((level[current_idx - 1], "L"))
            current_idx //= 2

        return MerkleProof(leaf_hash=leaf, path=path, root=self._tree[-1][0])


def compute_root(leaves: list[str]) -> str:
    """Convenience wrapper: root of a fresh tree over the given leaves."""
    tree = MerkleTree()
    for leaf in leaves:
        tree.add_leaf(leaf)
    return tree.compute_root()


def verify_proof(leaf_hash: str, path: list[tuple[str, str]], root: str) -> bool:
    """Recompute the root from a leaf and its path and compare."""
    current = to_bytes32(leaf_hash)
    for sibling, position in path:
        sibling = to_bytes32(sibling)
        if position == "L":
            current = _hash_pair(sibling, current)
        else:
            current = _hash_pair(current, sibling)
    return current == to_bytes32(root)


def _hash_pair(left: str, right: str) -> str:
    combined = bytes.fromhex(left[2:]) + bytes.fromhex(right[2:])
    return "0x" + hashlib.sha256(combined).hexdigest()
