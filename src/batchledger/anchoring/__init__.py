"""Root anchoring: the open per-batch integrity root store."""

from batchledger.anchoring.merkle_anchor import MerkleAnchor

__all__ = ["MerkleAnchor"]
