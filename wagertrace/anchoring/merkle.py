"""
wagertrace/anchoring/merkle.py

Merkle Anchoring: batches of bets committed under one root.

CONTRACT 1 — Leaf
    leaf_hash(bet) = SHA-256(JCS(bet.leaf_fields()))

CONTRACT 2 — Pair
    parent = SHA-256(left_hex || right_hex), in supplied order, never sorted

CONTRACT 3 — Odd levels
    a level with an odd count duplicates its last hash once
    a single-leaf tree's root is that leaf

CONTRACT 4 — Proof
    proofs[i] = [[sibling_hex, "left" | "right"], ...] from leaf to root
    verify() folds the proof from the bet's CURRENT leaf, so any change to
    a committed field breaks inclusion

A commit is all-or-nothing: every bet is resolved before anything is written.
"""

import logging
import uuid
from typing import List, Optional, Sequence, Tuple

from wagertrace.betting.book import BettingCollaborator
from wagertrace.core.canonical import canonical_hash, sha256_hex
from wagertrace.core.exceptions import CommitNotFoundError, EmptyBatchError
from wagertrace.core.models import Bet, InclusionResult, MerkleCommit
from wagertrace.core.time import Clock, SystemClock
from wagertrace.ledger.ledger import AuditLedger
from wagertrace.ledger.records import Tables
from wagertrace.ledger.table import Table

logger = logging.getLogger(__name__)

LEFT  = "left"
RIGHT = "right"

Proof = List[List[str]]


# ── Tree construction (pure) ──────────────────────────────────

def leaf_hash(bet: Bet) -> str:
    return canonical_hash(bet.leaf_fields())


def hash_pair(left: str, right: str) -> str:
    return sha256_hex(left + right)


def build_tree(leaves: Sequence[str]) -> Tuple[str, List[Proof]]:
    """Return (root, proof per leaf)."""
    if not leaves:
        raise EmptyBatchError("Cannot build a Merkle tree from no leaves")

    level     = list(leaves)
    positions = list(range(len(leaves)))
    proofs: List[Proof] = [[] for _ in leaves]

    while len(level) > 1:
        if len(level) % 2 == 1:
            level.append(level[-1])
        for i, pos in enumerate(positions):
            if pos % 2 == 0:
                proofs[i].append([level[pos + 1], RIGHT])
            else:
                proofs[i].append([level[pos - 1], LEFT])
            positions[i] = pos // 2
        level = [hash_pair(level[j], level[j + 1]) for j in range(0, len(level), 2)]

    return level[0], proofs


def merkle_root(leaves: Sequence[str]) -> str:
    return build_tree(leaves)[0]


def fold_proof(leaf: str, proof: Proof) -> str:
    current = leaf
    for sibling, side in proof:
        if side == LEFT:
            current = hash_pair(sibling, current)
        else:
            current = hash_pair(current, sibling)
    return current


# ── Anchoring service ─────────────────────────────────────────

class MerkleAnchoring:

    def __init__(self, ledger: AuditLedger, betting: BettingCollaborator, clock: Clock = None):
        self.betting = betting
        self.clock   = clock or SystemClock()
        self.commits: Table[MerkleCommit] = Table(
            Tables.MERKLE_COMMITS, ledger, MerkleCommit, "commit_id"
        )

    def commit(self, batch_id: str, bet_ids: Sequence[str]) -> MerkleCommit:
        """
        Anchor an ordered batch of bets.

        Raises:
            EmptyBatchError:  bet_ids is empty
            BetNotFoundError: any id is unknown; nothing is written
        """
        bet_ids = list(bet_ids)
        if not bet_ids:
            raise EmptyBatchError("Merkle commit needs at least one bet", details={"batch_id": batch_id})

        bets   = [self.betting.get_bet(bet_id) for bet_id in bet_ids]
        leaves = [leaf_hash(bet) for bet in bets]
        root, proofs = build_tree(leaves)

        commit = MerkleCommit(
            commit_id=        f"commit-{uuid.uuid4()}",
            batch_id=         batch_id,
            bet_ids=          bet_ids,
            root=             root,
            ledger_reference= f"anchor-{uuid.uuid4().hex}",
            created_at=       self.clock.now(),
            leaf_hashes=      leaves,
            proofs=           proofs,
        )
        self.commits.insert(commit)

        for bet_id in bet_ids:
            self.betting.set_bet_anchor(bet_id, root)

        logger.info(
            "Committed batch %s: %d bets, root %s", batch_id, len(bet_ids), root[:16]
        )
        return commit

    def verify(self, bet_id: str, expected_root: Optional[str] = None) -> InclusionResult:
        """
        Check a bet's inclusion by folding its stored proof path.

        Without expected_root, the bet's own anchor stamp selects the commit.
        """
        bet     = self.betting.get_bet(bet_id)
        current = leaf_hash(bet)
        root    = expected_root or bet.anchor_proof
        if root is None:
            return InclusionResult(verified=False, root=None, bet_hash=current)

        commit = self._commit_containing(bet_id, root)
        if commit is None:
            return InclusionResult(verified=False, root=root, bet_hash=current)

        proof    = commit.proof_for(bet_id)
        verified = proof is not None and fold_proof(current, proof) == commit.root
        if not verified:
            logger.warning("Inclusion check failed for %s under %s", bet_id, root[:16])
        return InclusionResult(
            verified=  verified,
            root=      commit.root,
            bet_hash=  current,
            commit_id= commit.commit_id,
        )

    # ── Reads ─────────────────────────────────────────────────

    def commits_for(self, batch_id: str) -> List[MerkleCommit]:
        """Newest first."""
        rows = self.commits.select(lambda c: c.batch_id == batch_id)
        return list(reversed(rows))

    def commit_by_root(self, root: str) -> Optional[MerkleCommit]:
        for commit in reversed(self.commits.select()):
            if commit.root == root:
                return commit
        return None

    def get_commit(self, commit_id: str) -> MerkleCommit:
        commit = self.commits.get(commit_id)
        if commit is None:
            raise CommitNotFoundError(
                f"Commit not found: {commit_id}", details={"commit_id": commit_id}
            )
        return commit

    def proof_for(self, bet_id: str, root: Optional[str] = None) -> Optional[Proof]:
        if root is None:
            root = self.betting.get_bet(bet_id).anchor_proof
        if root is None:
            return None
        commit = self._commit_containing(bet_id, root)
        return commit.proof_for(bet_id) if commit else None

    def _commit_containing(self, bet_id: str, root: str) -> Optional[MerkleCommit]:
        for commit in reversed(self.commits.select()):
            if commit.root == root and bet_id in commit.bet_ids:
                return commit
        return None
