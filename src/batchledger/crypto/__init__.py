"""Cryptographic primitives: Merkle trees and document digests."""

from batchledger.crypto.digest import canonical_hash, canonical_hash_text, hash_document
from batchledger.crypto.merkle import MerkleProof, MerkleTree, compute_root, verify_proof

__all__ = [
    "MerkleProof",
    "MerkleTree",
    "canonical_hash",
    "canonical_hash_text",
    "compute_root",
    "hash_document",
    "verify_proof",
]
