"""
wagertrace/core/models.py

Data Model

Every persisted row type has a to_dict() / from_dict() pair. to_dict()
produces JSON-primitive values only (timestamps in wire format, money as
decimal strings) so rows can be canonicalized, signed and chained by the
ledger without a custom encoder.

Row types (one ledger table each):
    PaymentTrace      — traces
    AccessGrant       — access_grants
    ValidationRecord  — validations
    FeedbackRecord    — feedback
    MerkleCommit      — merkle_commits
    Dispute           — disputes

External entities (owned by the betting collaborator, read and stamped here):
    Subject, Market, Bet

Inputs / results:
    PaymentIntent, Reputation, ValidationResult, SettlementOutcome,
    IntentReceipt, SettlementReceipt, InclusionResult
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from wagertrace.core.time import format_timestamp, ms_between, parse_timestamp


# ─────────────────────────────────────────────────────────────
# Vocabulary
# ─────────────────────────────────────────────────────────────

class SettlementStatus(str, Enum):
    PENDING   = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED    = "FAILED"


class AccessLevel(str, Enum):
    PROVISIONAL = "PROVISIONAL"
    FULL        = "FULL"
    REVOKED     = "REVOKED"


class GrantStatus(str, Enum):
    ACTIVE  = "ACTIVE"
    REVOKED = "REVOKED"


class BetStatus(str, Enum):
    PENDING  = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WON      = "won"
    LOST     = "lost"


class MarketStatus(str, Enum):
    OPEN    = "open"
    CLOSED  = "closed"
    SETTLED = "settled"


class Verdict(str, Enum):
    CORRECT   = "CORRECT"
    INCORRECT = "INCORRECT"


class DisputeStatus(str, Enum):
    PENDING  = "pending"
    RESOLVED = "resolved"


class ValidationType:
    """Validation registry type tags."""
    PAYMENT_INTENT = "PAYMENT_INTENT"


class FeedbackType:
    """Reputation registry feedback tags."""
    SUCCESS = "PAYMENT_SETTLEMENT_SUCCESS"
    FAILURE = "PAYMENT_SETTLEMENT_FAILED"
    DISPUTE = "DISPUTE_FILED"


# ─────────────────────────────────────────────────────────────
# Field helpers
# ─────────────────────────────────────────────────────────────

def _ts(value: Optional[datetime]) -> Optional[str]:
    return format_timestamp(value) if value is not None else None


def _dt(value: Optional[str]) -> Optional[datetime]:
    return parse_timestamp(value) if value else None


def money(value: Any) -> Decimal:
    """Coerce an amount to Decimal without passing through float rounding."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# ─────────────────────────────────────────────────────────────
# Ledger rows
# ─────────────────────────────────────────────────────────────

@dataclass
class PaymentTrace:
    """
    A payment intent paired with its eventual settlement outcome.

    Invariant: settled_at is set iff status is CONFIRMED or FAILED.
    intent_at never changes after creation.
    """
    trace_id:            str
    payer:               str
    payee:               str
    amount:              Decimal
    currency:            str
    intent_at:           datetime
    ledger_reference:    str
    status:              SettlementStatus = SettlementStatus.PENDING
    settled_at:          Optional[datetime] = None
    fiat_reference_hash: Optional[str] = None
    validation_id:       Optional[str] = None
    feedback_id:         Optional[str] = None
    failure_reason:      Optional[str] = None

    @property
    def is_settled(self) -> bool:
        return self.status != SettlementStatus.PENDING

    @property
    def latency_ms(self) -> Optional[int]:
        if self.settled_at is None:
            return None
        return ms_between(self.intent_at, self.settled_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace_id":            self.trace_id,
            "payer":               self.payer,
            "payee":               self.payee,
            "amount":              str(self.amount),
            "currency":            self.currency,
            "intent_at":           _ts(self.intent_at),
            "ledger_reference":    self.ledger_reference,
            "status":              self.status.value,
            "settled_at":          _ts(self.settled_at),
            "fiat_reference_hash": self.fiat_reference_hash,
            "validation_id":       self.validation_id,
            "feedback_id":         self.feedback_id,
            "failure_reason":      self.failure_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaymentTrace":
        return cls(
            trace_id=            data["trace_id"],
            payer=               data["payer"],
            payee=               data["payee"],
            amount=              money(data["amount"]),
            currency=            data["currency"],
            intent_at=           _dt(data["intent_at"]),
            ledger_reference=    data["ledger_reference"],
            status=              SettlementStatus(data["status"]),
            settled_at=          _dt(data.get("settled_at")),
            fiat_reference_hash= data.get("fiat_reference_hash"),
            validation_id=       data.get("validation_id"),
            feedback_id=         data.get("feedback_id"),
            failure_reason=      data.get("failure_reason"),
        )


@dataclass
class AccessGrant:
    """
    Time-bounded access to a bet's outcome, tied to one trace.

    PROVISIONAL grants always carry expires_at. FULL grants never expire.
    stake is the amount debited at intent time, and the exact refund on revoke.
    """
    grant_id:    str
    subject_id:  str
    trace_id:    str
    bet_id:      str
    stake:       Decimal
    level:       AccessLevel
    status:      GrantStatus
    granted_at:  datetime
    expires_at:  Optional[datetime] = None
    upgraded_at: Optional[datetime] = None
    revoked_at:  Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == GrantStatus.ACTIVE

    def is_expired(self, now: datetime) -> bool:
        return (
            self.is_active
            and self.level == AccessLevel.PROVISIONAL
            and self.expires_at is not None
            and self.expires_at <= now
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grant_id":    self.grant_id,
            "subject_id":  self.subject_id,
            "trace_id":    self.trace_id,
            "bet_id":      self.bet_id,
            "stake":       str(self.stake),
            "level":       self.level.value,
            "status":      self.status.value,
            "granted_at":  _ts(self.granted_at),
            "expires_at":  _ts(self.expires_at),
            "upgraded_at": _ts(self.upgraded_at),
            "revoked_at":  _ts(self.revoked_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessGrant":
        return cls(
            grant_id=    data["grant_id"],
            subject_id=  data["subject_id"],
            trace_id=    data["trace_id"],
            bet_id=      data["bet_id"],
            stake=       money(data["stake"]),
            level=       AccessLevel(data["level"]),
            status=      GrantStatus(data["status"]),
            granted_at=  _dt(data["granted_at"]),
            expires_at=  _dt(data.get("expires_at")),
            upgraded_at= _dt(data.get("upgraded_at")),
            revoked_at=  _dt(data.get("revoked_at")),
        )


@dataclass
class ValidationRecord:
    validation_id:   str
    trace_id:        str
    agent:           str
    validation_type: str
    recorded_at:     datetime
    metadata:        Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "validation_id":   self.validation_id,
            "trace_id":        self.trace_id,
            "agent":           self.agent,
            "validation_type": self.validation_type,
            "recorded_at":     _ts(self.recorded_at),
            "metadata":        self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationRecord":
        return cls(
            validation_id=   data["validation_id"],
            trace_id=        data["trace_id"],
            agent=           data["agent"],
            validation_type= data["validation_type"],
            recorded_at=     _dt(data["recorded_at"]),
            metadata=        data.get("metadata", {}),
        )


@dataclass
class FeedbackRecord:
    feedback_id:   str
    trace_id:      str
    agent:         str
    rating:        float
    feedback_type: str
    recorded_at:   datetime
    proof:         Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feedback_id":   self.feedback_id,
            "trace_id":      self.trace_id,
            "agent":         self.agent,
            "rating":        self.rating,
            "feedback_type": self.feedback_type,
            "recorded_at":   _ts(self.recorded_at),
            "proof":         self.proof,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeedbackRecord":
        return cls(
            feedback_id=   data["feedback_id"],
            trace_id=      data["trace_id"],
            agent=         data["agent"],
            rating=        float(data["rating"]),
            feedback_type= data["feedback_type"],
            recorded_at=   _dt(data["recorded_at"]),
            proof=         data.get("proof", {}),
        )


@dataclass
class MerkleCommit:
    """
    One anchored batch.

    proofs[i] is the sibling chain for bet_ids[i]: a list of
    [sibling_hash, side] pairs from leaf to root, side being the
    position of the sibling ("left" or "right").
    """
    commit_id:        str
    batch_id:         str
    bet_ids:          List[str]
    root:             str
    ledger_reference: str
    created_at:       datetime
    leaf_hashes:      List[str] = field(default_factory=list)
    proofs:           List[List[List[str]]] = field(default_factory=list)

    def proof_for(self, bet_id: str) -> Optional[List[List[str]]]:
        try:
            return self.proofs[self.bet_ids.index(bet_id)]
        except (ValueError, IndexError):
            return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commit_id":        self.commit_id,
            "batch_id":         self.batch_id,
            "bet_ids":          list(self.bet_ids),
            "root":             self.root,
            "ledger_reference": self.ledger_reference,
            "created_at":       _ts(self.created_at),
            "leaf_hashes":      list(self.leaf_hashes),
            "proofs":           self.proofs,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MerkleCommit":
        return cls(
            commit_id=        data["commit_id"],
            batch_id=         data["batch_id"],
            bet_ids=          list(data["bet_ids"]),
            root=             data["root"],
            ledger_reference= data["ledger_reference"],
            created_at=       _dt(data["created_at"]),
            leaf_hashes=      list(data.get("leaf_hashes", [])),
            proofs=           data.get("proofs", []),
        )


@dataclass
class ValidationResult:
    """Verdict of a dispute re-evaluation, with its attestation."""
    verdict:               Verdict
    explanation:           str
    attestation:           str
    attestation_signature: str
    signer_public_key:     str
    bet_placed_at:         datetime
    market_close_time:     Optional[datetime]
    latency_ms:            int
    time_diff_ms:          int
    system_fault:          bool
    resolved_at:           datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict":               self.verdict.value,
            "explanation":           self.explanation,
            "attestation":           self.attestation,
            "attestation_signature": self.attestation_signature,
            "signer_public_key":     self.signer_public_key,
            "bet_placed_at":         _ts(self.bet_placed_at),
            "market_close_time":     _ts(self.market_close_time),
            "latency_ms":            self.latency_ms,
            "time_diff_ms":          self.time_diff_ms,
            "system_fault":          self.system_fault,
            "resolved_at":           _ts(self.resolved_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationResult":
        return cls(
            verdict=               Verdict(data["verdict"]),
            explanation=           data["explanation"],
            attestation=           data["attestation"],
            attestation_signature= data["attestation_signature"],
            signer_public_key=     data["signer_public_key"],
            bet_placed_at=         _dt(data["bet_placed_at"]),
            market_close_time=     _dt(data.get("market_close_time")),
            latency_ms=            int(data["latency_ms"]),
            time_diff_ms=          int(data["time_diff_ms"]),
            system_fault=          bool(data["system_fault"]),
            resolved_at=           _dt(data["resolved_at"]),
        )


@dataclass
class Dispute:
    dispute_id:  str
    bet_id:      str
    market_id:   str
    batch_id:    str
    reason:      str
    status:      DisputeStatus
    result:      ValidationResult
    created_at:  datetime
    resolved_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dispute_id":  self.dispute_id,
            "bet_id":      self.bet_id,
            "market_id":   self.market_id,
            "batch_id":    self.batch_id,
            "reason":      self.reason,
            "status":      self.status.value,
            "result":      self.result.to_dict(),
            "created_at":  _ts(self.created_at),
            "resolved_at": _ts(self.resolved_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Dispute":
        return cls(
            dispute_id=  data["dispute_id"],
            bet_id=      data["bet_id"],
            market_id=   data["market_id"],
            batch_id=    data["batch_id"],
            reason=      data["reason"],
            status=      DisputeStatus(data["status"]),
            result=      ValidationResult.from_dict(data["result"]),
            created_at=  _dt(data["created_at"]),
            resolved_at= _dt(data.get("resolved_at")),
        )


# ─────────────────────────────────────────────────────────────
# External entities
# ─────────────────────────────────────────────────────────────

@dataclass
class Subject:
    subject_id:               str
    balance:                  Decimal
    wallet_address:           Optional[str] = None
    preferred_payment_method: str = "pix"


@dataclass
class Market:
    market_id:  str
    event_id:   str
    odds:       Decimal
    status:     MarketStatus = MarketStatus.OPEN
    close_time: Optional[datetime] = None


@dataclass
class Bet:
    bet_id:             str
    subject_id:         str
    market_id:          str
    amount:             Decimal
    odds:               Decimal
    placed_at:          datetime
    server_received_at: datetime
    status:             BetStatus = BetStatus.PENDING
    latency_ms:         Optional[int] = None
    trace_id:           Optional[str] = None
    access_level:       Optional[AccessLevel] = None
    anchor_proof:       Optional[str] = None
    confirmed_at:       Optional[datetime] = None

    @property
    def measured_latency_ms(self) -> int:
        """Recorded latency, falling back to server receipt minus placement."""
        if self.latency_ms is not None:
            return self.latency_ms
        return ms_between(self.placed_at, self.server_received_at)

    def leaf_fields(self) -> Dict[str, Any]:
        """The fields committed to a Merkle leaf."""
        return {
            "bet_id":     self.bet_id,
            "subject_id": self.subject_id,
            "market_id":  self.market_id,
            "amount":     str(self.amount),
            "odds":       str(self.odds),
            "placed_at":  format_timestamp(self.placed_at),
            "status":     self.status.value,
        }


# ─────────────────────────────────────────────────────────────
# Inputs and results
# ─────────────────────────────────────────────────────────────

@dataclass
class PaymentIntent:
    """A payer-signed intent to pay for one bet."""
    amount:      Decimal
    currency:    str
    payer:       str
    payee:       str
    signature:   str
    nonce:       int = 0
    timestamp:   str = ""
    facilitator: str = ""
    intent_id:   str = ""

    def to_signing_dict(self) -> Dict[str, Any]:
        """Every field except the signature."""
        return {
            "amount":      str(money(self.amount)),
            "currency":    self.currency,
            "payer":       self.payer,
            "payee":       self.payee,
            "nonce":       self.nonce,
            "timestamp":   self.timestamp,
            "facilitator": self.facilitator,
            "intent_id":   self.intent_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaymentIntent":
        return cls(
            amount=      money(data["amount"]),
            currency=    data.get("currency", "BRL"),
            payer=       data["payer"],
            payee=       data["payee"],
            signature=   data.get("signature", ""),
            nonce=       int(data.get("nonce", 0)),
            timestamp=   data.get("timestamp", ""),
            facilitator= data.get("facilitator", ""),
            intent_id=   data.get("intent_id", ""),
        )


@dataclass
class Reputation:
    """Derived view over one agent's feedback. Never stored."""
    agent:                  str
    score:                  float
    total_settlements:      int
    successful_settlements: int
    success_rate:           float
    recent_disputes:        int

    @property
    def average_rating(self) -> float:
        return self.score

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent":                  self.agent,
            "score":                  self.score,
            "total_settlements":      self.total_settlements,
            "successful_settlements": self.successful_settlements,
            "success_rate":           self.success_rate,
            "recent_disputes":        self.recent_disputes,
        }


@dataclass
class SettlementOutcome:
    """Result of TraceRegistry.record_settlement()."""
    trace:      PaymentTrace
    latency_ms: int
    applied:    bool


@dataclass
class IntentReceipt:
    trace_id:      str
    status:        str
    access_level:  AccessLevel
    access_token:  str
    expires_at:    datetime
    backend:       str
    validation_id: str


@dataclass
class SettlementReceipt:
    trace_id:            str
    status:              str
    settled_at:          Optional[datetime]
    fiat_reference_hash: Optional[str]
    latency_ms:          Optional[int]
    access_level:        Optional[AccessLevel] = None
    access_token:        Optional[str] = None
    duplicate:           bool = False


@dataclass
class InclusionResult:
    verified:  bool
    root:      Optional[str]
    bet_hash:  Optional[str]
    commit_id: Optional[str] = None
