"""
wagertrace/ledger/ledger.py

Audit Ledger

emit() MUST, in this exact order:
  1. Acquire lock
  2. LedgerRecord.create(record_type, signer_public_key, sequence, payload, prev)
  3. record.sign(signer)
  4. Assert chain invariants  — causal_hash, sequence
  5. Append to JSONL ledger   — skipped for memory-only ledgers
  6. Advance internal state   — only after confirmed write
  7. Return signed record

The ledger is the durable store behind every table. Tables replay
records() on start-up to rebuild their in-memory index.
"""

import json
import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from wagertrace.core.crypto import Ed25519KeyManager, Signer
from wagertrace.core.exceptions import LedgerError
from wagertrace.ledger.records import LEDGER_VERSION, LedgerRecord

logger = logging.getLogger(__name__)


class AuditLedger:
    """
    Append-only, hash-chained, signed ledger.

    Thread-safe via internal lock (single-process only).
    With a ledger_path, records are appended to <ledger_path>/ledger.jsonl
    and the full history is reloaded on construction. Without one the
    ledger lives in memory only.
    """

    FILE_NAME = "ledger.jsonl"

    def __init__(self, signer: Signer, ledger_path: Optional[str] = None) -> None:
        self.signer = signer

        self._lock:     threading.Lock     = threading.Lock()
        self._records:  List[LedgerRecord] = []

        self._ledger_file: Optional[Path] = None
        if ledger_path is not None:
            ledger_dir = Path(ledger_path)
            ledger_dir.mkdir(parents=True, exist_ok=True)
            self._ledger_file = ledger_dir / self.FILE_NAME
            self._load()

    @classmethod
    def replay(cls, path, signer: Optional[Signer] = None) -> "AuditLedger":
        """
        Memory-only ledger preloaded from a ledger file, for offline queries.

        Records are read as-is; run verify_chain() before trusting them.
        """
        ledger = cls(signer or Ed25519KeyManager.generate())
        ledger._records = read_ledger_file(resolve_ledger_file(path))
        return ledger

    # ── Public API ────────────────────────────────────────────

    def emit(self, record_type: str, payload: Dict[str, Any]) -> LedgerRecord:
        """
        Append one signed record.

        Raises LedgerError on any invariant violation or write failure.
        Callers must treat a raised exception as "nothing was written".
        """
        with self._lock:
            prev = self._records[-1] if self._records else None
            try:
                record = LedgerRecord.create(
                    record_type=       record_type,
                    signer_public_key= self.signer.public_key_hex,
                    sequence=          len(self._records),
                    payload=           payload,
                    prev=              prev,
                ).sign(self.signer)
            except (ValueError, TypeError) as exc:
                raise LedgerError(f"Rejected ledger record: {exc}") from exc

            if not record.verify_chain(prev):
                raise LedgerError(
                    "Chain invariant violated: causal_hash mismatch",
                    details={"sequence": record.sequence},
                )

            self._append_to_file(record)
            self._records.append(record)
            return record

    def records(self, table: Optional[str] = None) -> Iterator[LedgerRecord]:
        """Iterate records in sequence order, optionally for one table."""
        with self._lock:
            snapshot = list(self._records)
        for record in snapshot:
            if table is None or record.table == table:
                yield record

    def __len__(self) -> int:
        return len(self._records)

    @property
    def head_hash(self) -> str:
        """The causal_hash the next record would carry."""
        with self._lock:
            prev = self._records[-1] if self._records else None
        return LedgerRecord._compute_causal_hash(prev)

    def verify_chain(self) -> bool:
        """Re-check sequence, chain and signature of every record."""
        return verify_records(list(self.records())).valid

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            counts = Counter(r.table for r in self._records)
            last   = self._records[-1] if self._records else None
        return {
            "total_records":  sum(counts.values()),
            "by_table":       dict(counts),
            "last_record_id": last.record_id if last else None,
            "head_hash":      self.head_hash,
            "ledger_file":    str(self._ledger_file) if self._ledger_file else None,
            "ledger_version": LEDGER_VERSION,
        }

    # ── Internal ──────────────────────────────────────────────

    def _load(self) -> None:
        if not self._ledger_file.exists():
            return
        records = read_ledger_file(self._ledger_file)
        report  = verify_records(records)
        if not report.valid:
            raise LedgerError(
                f"Ledger {self._ledger_file} failed verification",
                details={"violations": len(report.violations)},
            )
        self._records = records
        logger.info("Loaded %d ledger records from %s", len(records), self._ledger_file)

    def _append_to_file(self, record: LedgerRecord) -> None:
        if self._ledger_file is None:
            return
        try:
            with open(self._ledger_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(record.to_dict()) + "\n")
        except OSError as exc:
            raise LedgerError(f"Ledger write failed: {exc}") from exc


# ── Verification ──────────────────────────────────────────────

@dataclass
class LedgerViolation:
    at_sequence:    int
    record_id:      str
    violation_type: str   # "schema" | "sequence_gap" | "chain_break" | "invalid_signature"
    detail:         str


@dataclass
class LedgerReport:
    total_records:      int
    valid_signatures:   int = 0
    invalid_signatures: int = 0
    table_counts:       Dict[str, int] = field(default_factory=dict)
    violations:         List[LedgerViolation] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.violations

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid":              self.valid,
            "total_records":      self.total_records,
            "valid_signatures":   self.valid_signatures,
            "invalid_signatures": self.invalid_signatures,
            "table_counts":       self.table_counts,
            "violations": [
                {
                    "at_sequence":    v.at_sequence,
                    "record_id":      v.record_id,
                    "violation_type": v.violation_type,
                    "detail":         v.detail,
                }
                for v in self.violations
            ],
        }


def read_ledger_file(path: Path) -> List[LedgerRecord]:
    """
    Parse a JSONL ledger.

    Raises LedgerError on malformed JSON or missing fields.
    """
    records: List[LedgerRecord] = []
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(LedgerRecord.from_dict(json.loads(line)))
                except (json.JSONDecodeError, KeyError) as exc:
                    raise LedgerError(f"Invalid ledger line {line_num}: {exc}") from exc
    except OSError as exc:
        raise LedgerError(f"Failed to read ledger {path}: {exc}") from exc
    return records


def verify_records(records: List[LedgerRecord]) -> LedgerReport:
    """Schema, sequence, chain and signature check over a record list."""
    report = LedgerReport(total_records=len(records))
    counts: Counter = Counter()

    for i, record in enumerate(records):
        prev = records[i - 1] if i > 0 else None
        counts[record.table] += 1

        schema = record.validate_schema()
        if not schema:
            report.violations.append(LedgerViolation(
                i, record.record_id, "schema", "; ".join(schema.errors)
            ))
        if not record.verify_sequence(i):
            report.violations.append(LedgerViolation(
                i, record.record_id, "sequence_gap",
                f"expected sequence {i}, got {record.sequence}",
            ))
        if not record.verify_chain(prev):
            expected = record.expected_causal_hash_from(prev)
            report.violations.append(LedgerViolation(
                i, record.record_id, "chain_break",
                f"expected ...{expected[-12:]}, got ...{str(record.causal_hash)[-12:]}",
            ))
        if record.verify_signature():
            report.valid_signatures += 1
        else:
            report.invalid_signatures += 1
            report.violations.append(LedgerViolation(
                i, record.record_id, "invalid_signature", "signature does not verify"
            ))

    report.table_counts = dict(counts)
    return report


def resolve_ledger_file(path) -> Path:
    """Accept a ledger file, or a directory holding ledger.jsonl."""
    path = Path(path)
    if path.is_dir():
        path = path / AuditLedger.FILE_NAME
    if not path.exists():
        raise LedgerError(f"Ledger not found: {path}")
    return path


def verify_ledger_file(path) -> LedgerReport:
    return verify_records(read_ledger_file(resolve_ledger_file(path)))
