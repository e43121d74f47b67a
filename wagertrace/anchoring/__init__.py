from wagertrace.anchoring.merkle import (
    MerkleAnchoring,
    build_tree,
    fold_proof,
    hash_pair,
    leaf_hash,
    merkle_root,
)

__all__ = [
    "MerkleAnchoring",
    "build_tree",
    "fold_proof",
    "hash_pair",
    "leaf_hash",
    "merkle_root",
]
