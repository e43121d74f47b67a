"""
wagertrace/ledger/records.py

Ledger Record: the only entry type in the audit ledger.

CONTRACT 1 — Signing
    bytes_signed = canonicalize(record.to_signing_dict())
    algorithm    = Ed25519
    encoding     = base64url, no padding

CONTRACT 2 — Chain
    causal_hash  = SHA-256(canonicalize(prev.to_signing_dict()))
    first_entry  = GENESIS_HASH ("0" * 64)
    payload      IN signing dict → payload mutation breaks forward chain

CONTRACT 3 — Timestamp
    format = YYYY-MM-DDTHH:MM:SS.mmmZ

CONTRACT 4 — Nonce
    exactly 32 hex characters. sequence = ordering. nonce = uniqueness.

CONTRACT 5 — Vocabulary
    record_type must be a RecordType constant.
    payload["table"] must name one of the six tables.
"""

import hashlib
import secrets
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from wagertrace.core.canonical import canonicalize
from wagertrace.core.crypto import Ed25519KeyManager
from wagertrace.core.time import is_wire_timestamp, wire_timestamp


LEDGER_VERSION = "1.0"
GENESIS_HASH   = "0" * 64

_NONCE_HEX_LENGTH      = 32
_PUBLIC_KEY_HEX_LENGTH = 64


class RecordType:
    """Valid record_type values. One per table operation."""
    INSERT = "insert"
    UPDATE = "update"


_VALID_RECORD_TYPES: Set[str] = {RecordType.INSERT, RecordType.UPDATE}


class Tables:
    """The six persisted tables."""
    TRACES         = "traces"
    ACCESS_GRANTS  = "access_grants"
    VALIDATIONS    = "validations"
    FEEDBACK       = "feedback"
    MERKLE_COMMITS = "merkle_commits"
    DISPUTES       = "disputes"


VALID_TABLES: Set[str] = {
    Tables.TRACES,
    Tables.ACCESS_GRANTS,
    Tables.VALIDATIONS,
    Tables.FEEDBACK,
    Tables.MERKLE_COMMITS,
    Tables.DISPUTES,
}


@dataclass
class SchemaValidationResult:
    """
    Result of LedgerRecord.validate_schema().

    Returned, not raised. Callers choose between hard fail and log.
    bool(result) is True iff valid.
    """
    valid:  bool
    errors: List[str]

    def __bool__(self) -> bool:
        return self.valid


@dataclass
class LedgerRecord:
    ledger_version:    str
    record_id:         str
    record_type:       str
    signer_public_key: str
    sequence:          int
    nonce:             str
    timestamp:         str
    causal_hash:       str
    payload:           Dict[str, Any]
    signature:         Optional[str] = None

    # ── Constructor ───────────────────────────────────────────

    @classmethod
    def create(
        cls,
        record_type:       str,
        signer_public_key: str,
        sequence:          int,
        payload:           Dict[str, Any],
        prev:              Optional["LedgerRecord"] = None,
    ) -> "LedgerRecord":
        """
        Create an unsigned record with the correct causal_hash.

        Call .sign(signer) immediately after:
            rec = LedgerRecord.create(...).sign(signer)
        """
        if record_type not in _VALID_RECORD_TYPES:
            raise ValueError(
                f"Invalid record_type '{record_type}'. "
                f"Valid: {sorted(_VALID_RECORD_TYPES)}"
            )
        if not isinstance(payload, dict):
            raise TypeError(
                f"payload must be dict, got {type(payload).__name__}"
            )
        if payload.get("table") not in VALID_TABLES:
            raise ValueError(
                f"payload table '{payload.get('table')}' is not a ledger table"
            )
        if not isinstance(sequence, int) or sequence < 0:
            raise ValueError(
                f"sequence must be non-negative int, got {sequence!r}"
            )

        return cls(
            ledger_version=    LEDGER_VERSION,
            record_id=         f"rec-{uuid.uuid4()}",
            record_type=       record_type,
            signer_public_key= signer_public_key,
            sequence=          sequence,
            nonce=             secrets.token_hex(_NONCE_HEX_LENGTH // 2),
            timestamp=         wire_timestamp(),
            causal_hash=       cls._compute_causal_hash(prev),
            payload=           payload,
            signature=         None,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerRecord":
        """
        Deserialize from a JSONL line dict.

        Trusts persisted data. Callers MUST call validate_schema().
        """
        return cls(
            ledger_version=    data["ledger_version"],
            record_id=         data["record_id"],
            record_type=       data["record_type"],
            signer_public_key= data["signer_public_key"],
            sequence=          data["sequence"],
            nonce=             data["nonce"],
            timestamp=         data["timestamp"],
            causal_hash=       data["causal_hash"],
            payload=           data.get("payload", {}),
            signature=         data.get("signature"),
        )

    # ── Schema Validation ─────────────────────────────────────

    def validate_schema(self) -> SchemaValidationResult:
        errors: List[str] = []

        if self.ledger_version != LEDGER_VERSION:
            errors.append(
                f"ledger_version: expected '{LEDGER_VERSION}', got '{self.ledger_version}'"
            )
        if self.record_type not in _VALID_RECORD_TYPES:
            errors.append(f"record_type '{self.record_type}' not in valid set")
        if not isinstance(self.record_id, str) or not self.record_id.startswith("rec-"):
            errors.append(f"record_id must start with 'rec-', got {self.record_id!r}")
        if (
            not isinstance(self.signer_public_key, str)
            or len(self.signer_public_key) != _PUBLIC_KEY_HEX_LENGTH
        ):
            errors.append("signer_public_key must be 64 hex chars")
        if not isinstance(self.sequence, int) or self.sequence < 0:
            errors.append(f"sequence must be non-negative int, got {self.sequence!r}")
        if not isinstance(self.nonce, str) or len(self.nonce) != _NONCE_HEX_LENGTH:
            errors.append(f"nonce must be exactly {_NONCE_HEX_LENGTH} hex chars")
        if not is_wire_timestamp(self.timestamp):
            errors.append(
                f"timestamp '{self.timestamp}' does not match YYYY-MM-DDTHH:MM:SS.mmmZ"
            )
        if not isinstance(self.causal_hash, str) or len(self.causal_hash) != 64:
            errors.append("causal_hash must be 64 hex chars")
        if not isinstance(self.payload, dict):
            errors.append(f"payload must be dict, got {type(self.payload).__name__}")
        elif self.payload.get("table") not in VALID_TABLES:
            errors.append(f"payload table '{self.payload.get('table')}' is unknown")

        return SchemaValidationResult(valid=len(errors) == 0, errors=errors)

    # ── Canonical Contracts ───────────────────────────────────

    def to_signing_dict(self) -> Dict[str, Any]:
        """The EXACT dict signed, and hashed into the next record's causal_hash."""
        return {
            "causal_hash":       self.causal_hash,
            "ledger_version":    self.ledger_version,
            "nonce":             self.nonce,
            "payload":           self.payload,
            "record_id":         self.record_id,
            "record_type":       self.record_type,
            "sequence":          self.sequence,
            "signer_public_key": self.signer_public_key,
            "timestamp":         self.timestamp,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Full serialization including signature. JSONL persistence only."""
        d = self.to_signing_dict().copy()
        d["signature"] = self.signature
        return d

    def canonical_bytes_for_signing(self) -> bytes:
        return canonicalize(self.to_signing_dict())

    @staticmethod
    def _compute_causal_hash(prev: Optional["LedgerRecord"]) -> str:
        if prev is None:
            return GENESIS_HASH
        return hashlib.sha256(prev.canonical_bytes_for_signing()).hexdigest()

    def expected_causal_hash_from(self, prev: Optional["LedgerRecord"]) -> str:
        return LedgerRecord._compute_causal_hash(prev)

    # ── Signing / Verification ────────────────────────────────

    def sign(self, signer) -> "LedgerRecord":
        """Sign in place and return self."""
        self.signature = signer.sign(self.canonical_bytes_for_signing())
        return self

    def verify_signature(self, override_public_key_hex: Optional[str] = None) -> bool:
        """False for an unsigned record, any mutated field, or the wrong key."""
        if not self.signature:
            return False
        pubkey_hex = override_public_key_hex or self.signer_public_key
        return Ed25519KeyManager.verify_detached(
            self.canonical_bytes_for_signing(), self.signature, pubkey_hex
        )

    def verify_chain(self, prev: Optional["LedgerRecord"]) -> bool:
        return self.causal_hash == self.expected_causal_hash_from(prev)

    def verify_sequence(self, expected: int) -> bool:
        return self.sequence == expected

    @property
    def table(self) -> str:
        return self.payload.get("table", "")
