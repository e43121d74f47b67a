"""
wagertrace.ledger

Append-only audit ledger and the tables built on it.
"""

from wagertrace.ledger.ledger import (
    AuditLedger,
    LedgerReport,
    LedgerViolation,
    read_ledger_file,
    resolve_ledger_file,
    verify_ledger_file,
    verify_records,
)
from wagertrace.ledger.records import (
    GENESIS_HASH,
    LEDGER_VERSION,
    LedgerRecord,
    RecordType,
    Tables,
    VALID_TABLES,
)
from wagertrace.ledger.table import Table

__all__ = [
    "AuditLedger",
    "LedgerReport",
    "LedgerViolation",
    "read_ledger_file",
    "resolve_ledger_file",
    "verify_ledger_file",
    "verify_records",
    "GENESIS_HASH",
    "LEDGER_VERSION",
    "LedgerRecord",
    "RecordType",
    "Tables",
    "VALID_TABLES",
    "Table",
]
