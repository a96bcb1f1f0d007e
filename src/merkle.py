"""
DocVerify - Merkle Anchor

Builds Merkle roots over batches of document digests and constructs /
verifies inclusion proofs, so a whole batch can be anchored with a single
ledger write.

Tree rules:
1. Empty batch -> ZERO_DIGEST
2. Single leaf -> the leaf itself
3. Pairs combine as sha256(min(a, b) || max(a, b)) over the raw 32 bytes,
   so a proof never needs to know which side its sibling sits on
4. An odd node at the end of a level is promoted unchanged (no duplicate)

Duplicate leaves are ordinary distinct positions.
"""

import hashlib
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from errors import ProofNotFoundError, ValidationError
from fingerprint import ZERO_DIGEST, normalize_digest

MERKLE_HASH_ALGORITHM = "sha256"


@dataclass
class ProofStep:
    """One sibling on the path from a leaf to the root."""

    hash: str
    position: str  # "left" | "right", side the sibling occupies

    def to_dict(self) -> dict[str, str]:
        return {"hash": self.hash, "position": self.position}


@dataclass
class MerkleProof:
    """Inclusion proof for a leaf in a batch."""

    leaf: str
    leaf_index: int
    leaf_count: int
    root: str
    steps: list[ProofStep] = field(default_factory=list)

    @property
    def siblings(self) -> list[str]:
        return [step.hash for step in self.steps]

    def to_dict(self) -> dict[str, Any]:
        return {
            "leaf": self.leaf,
            "leaf_index": self.leaf_index,
            "leaf_count": self.leaf_count,
            "root": self.root,
            "proof": [step.to_dict() for step in self.steps],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MerkleProof":
        steps = []
        for raw in data.get("proof", []):
            if isinstance(raw, str):
                steps.append(ProofStep(hash=normalize_digest(raw), position="unknown"))
            else:
                steps.append(
                    ProofStep(
                        hash=normalize_digest(raw["hash"]),
                        position=raw.get("position", "unknown"),
                    )
                )
        return cls(
            leaf=normalize_digest(data["leaf"]),
            leaf_index=int(data.get("leaf_index", 0)),
            leaf_count=int(data.get("leaf_count", 0)),
            root=normalize_digest(data["root"]),
            steps=steps,
        )

    def verify(self) -> bool:
        """Verify this proof against its own root."""
        return verify_proof(self.leaf, self, self.root)


def combine(a: str, b: str) -> str:
    """Sorted-pair parent hash of two hex digests."""
    left, right = bytes.fromhex(a), bytes.fromhex(b)
    if right < left:
        left, right = right, left
    return hashlib.sha256(left + right).hexdigest()


def _normalize_leaves(leaves: Sequence[str]) -> list[str]:
    if isinstance(leaves, (str, bytes)):
        raise ValidationError("Leaves must be a list of digests")
    return [normalize_digest(leaf) for leaf in leaves]


def build_levels(leaves: Sequence[str]) -> list[list[str]]:
    """
    Fold a leaf list into every level of the tree.

    Returns:
        Levels from leaves (index 0) up to the root level (a single digest).
        An empty input yields an empty list.
    """
    level = _normalize_leaves(leaves)
    if not level:
        return []

    levels = [level]
    while len(level) > 1:
        next_level = []
        for i in range(0, len(level), 2):
            if i + 1 < len(level):
                next_level.append(combine(level[i], level[i + 1]))
            else:
                next_level.append(level[i])
        levels.append(next_level)
        level = next_level
    return levels


def build_root(leaves: Sequence[str]) -> str:
    """
    Compute the Merkle root of an ordered digest list.

    Args:
        leaves: Hex digests in batch order

    Returns:
        Root digest (ZERO_DIGEST for an empty batch)
    """
    levels = build_levels(leaves)
    if not levels:
        return ZERO_DIGEST
    return levels[-1][0]


def build_proof(leaves: Sequence[str], leaf_index: int) -> MerkleProof:
    """
    Build the inclusion proof for the leaf at ``leaf_index``.

    Raises:
        ProofNotFoundError: if the index is outside the batch
    """
    levels = build_levels(leaves)
    if not levels or not 0 <= leaf_index < len(levels[0]):
        raise ProofNotFoundError("Leaf not found in batch")

    steps = []
    index = leaf_index
    for level in levels[:-1]:
        if index % 2 == 0:
            sibling_index, position = index + 1, "right"
        else:
            sibling_index, position = index - 1, "left"

        # Promoted odd node: nothing to combine at this level
        if sibling_index < len(level):
            steps.append(ProofStep(hash=level[sibling_index], position=position))

        index //= 2

    return MerkleProof(
        leaf=levels[0][leaf_index],
        leaf_index=leaf_index,
        leaf_count=len(levels[0]),
        root=levels[-1][0],
        steps=steps,
    )


def find_leaf_index(leaves: Sequence[str], leaf: str) -> int | None:
    """Index of the first occurrence of ``leaf``, or None."""
    target = normalize_digest(leaf)
    for i, candidate in enumerate(_normalize_leaves(leaves)):
        if candidate == target:
            return i
    return None


def build_proof_for_leaf(leaves: Sequence[str], leaf: str) -> MerkleProof:
    """
    Build the inclusion proof for a leaf digest.

    Raises:
        ProofNotFoundError: if the leaf is not in the batch
    """
    index = find_leaf_index(leaves, leaf)
    if index is None:
        raise ProofNotFoundError("Leaf not found in batch")
    return build_proof(leaves, index)


def verify_proof(leaf: str, proof: MerkleProof | Sequence[str], root: str) -> bool:
    """
    Recompute the root from a leaf and its proof.

    Args:
        leaf: Leaf digest
        proof: MerkleProof or a plain ordered list of sibling digests
        root: Expected root digest

    Returns:
        True if the recomputed root equals ``root``
    """
    siblings = proof.siblings if isinstance(proof, MerkleProof) else list(proof)
    try:
        current = normalize_digest(leaf)
        for sibling in siblings:
            current = combine(current, normalize_digest(sibling))
        return current == normalize_digest(root)
    except ValidationError:
        return False
