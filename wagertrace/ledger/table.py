"""
wagertrace/ledger/table.py

Ledger-backed table.

CONTRACT
    insert(row)          — emits one "insert" record, then indexes the row
    update(key, fn)      — read-modify-write under the table lock;
                           fn(current) returns the new row, or None for "no change"
    state on start-up    — replayed from the ledger in sequence order

A row only becomes visible after its ledger record has been written.
If emit() raises, the in-memory index is untouched.
"""

import threading
from typing import Callable, Dict, Generic, List, Optional, Type, TypeVar

from wagertrace.core.exceptions import LedgerError
from wagertrace.ledger.ledger import AuditLedger
from wagertrace.ledger.records import RecordType

Row = TypeVar("Row")


class Table(Generic[Row]):
    """In-memory index over one ledger table."""

    def __init__(
        self,
        name:      str,
        ledger:    AuditLedger,
        row_type:  Type[Row],
        key_field: str,
    ) -> None:
        self.name      = name
        self.ledger    = ledger
        self.row_type  = row_type
        self.key_field = key_field

        self._lock: threading.RLock = threading.RLock()
        self._rows: Dict[str, Row]  = {}
        self._replay()

    # ── Writes ────────────────────────────────────────────────

    def insert(self, row: Row) -> Row:
        key = getattr(row, self.key_field)
        with self._lock:
            if key in self._rows:
                raise LedgerError(
                    f"Duplicate key in {self.name}",
                    details={"key": key},
                )
            self._emit(RecordType.INSERT, key, row)
            self._rows[key] = row
            return row

    def update(self, key: str, fn: Callable[[Row], Optional[Row]]) -> Optional[Row]:
        """
        Atomically apply fn to the current row.

        Returns the new row if fn produced one, None if fn declined.
        Raises KeyError if the key is unknown; callers map it to their
        own NotFound error.
        """
        with self._lock:
            current = self._rows[key]
            updated = fn(current)
            if updated is None:
                return None
            self._emit(RecordType.UPDATE, key, updated)
            self._rows[key] = updated
            return updated

    # ── Reads ─────────────────────────────────────────────────

    def get(self, key: str) -> Optional[Row]:
        with self._lock:
            return self._rows.get(key)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._rows

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)

    def select(self, predicate: Callable[[Row], bool] = None) -> List[Row]:
        """Rows in insertion order, optionally filtered."""
        with self._lock:
            rows = list(self._rows.values())
        if predicate is None:
            return rows
        return [row for row in rows if predicate(row)]

    # ── Internal ──────────────────────────────────────────────

    def _emit(self, record_type: str, key: str, row: Row) -> None:
        self.ledger.emit(
            record_type=record_type,
            payload={
                "table": self.name,
                "op":    record_type,
                "key":   key,
                "row":   row.to_dict(),
            },
        )

    def _replay(self) -> None:
        for record in self.ledger.records(self.name):
            row = self.row_type.from_dict(record.payload["row"])
            self._rows[record.payload["key"]] = row
