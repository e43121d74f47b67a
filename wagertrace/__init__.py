"""
wagertrace/__init__.py

wagertrace: payment-settlement orchestration with a signed audit trail.

Payment intents and their fiat settlement are recorded as traces, bet
outcomes are gated behind PROVISIONAL → FULL access grants, bet batches
are anchored under Merkle roots, and disputes are re-evaluated into
signed verdicts. Every state change lands in one hash-chained,
Ed25519-signed JSONL ledger.
"""

__version__        = "0.3.0"
__ledger_version__ = "1.0"

from wagertrace.core.config import Settings
from wagertrace.core.crypto import Ed25519KeyManager, Signer
from wagertrace.core.exceptions import WagerTraceError
from wagertrace.core.models import (
    AccessLevel,
    Bet,
    BetStatus,
    Market,
    MarketStatus,
    PaymentIntent,
    SettlementStatus,
    Subject,
    Verdict,
)
from wagertrace.ledger import AuditLedger, verify_ledger_file
from wagertrace.access import AccessControl, ExpiryScheduler
from wagertrace.anchoring import MerkleAnchoring
from wagertrace.betting import InMemoryBetBook
from wagertrace.disputes import DisputeResolver
from wagertrace.metrics import batch_metrics
from wagertrace.registry import ReputationRegistry, TraceRegistry
from wagertrace.runtime import RuntimeContext
from wagertrace.settlement import SettlementOrchestrator

__all__ = [
    # Components
    "AccessControl",
    "AuditLedger",
    "DisputeResolver",
    "ExpiryScheduler",
    "InMemoryBetBook",
    "MerkleAnchoring",
    "ReputationRegistry",
    "RuntimeContext",
    "SettlementOrchestrator",
    "TraceRegistry",
    # Model
    "AccessLevel",
    "Bet",
    "BetStatus",
    "Market",
    "MarketStatus",
    "PaymentIntent",
    "SettlementStatus",
    "Subject",
    "Verdict",
    # Signing / config
    "Ed25519KeyManager",
    "Settings",
    "Signer",
    # Errors
    "WagerTraceError",
    # Helpers
    "batch_metrics",
    "verify_ledger_file",
]
