"""
wagertrace/registry/trace.py

Trace Registry: the ledger of payment intents and their settlement.

CONTRACT
    record_intent       → one "insert" row, status PENDING, intent_at = clock.now()
    record_settlement   → one "update" row, settled_at = clock.now(), status set,
                          only SHA-256(external reference) stored
    settled trace       → record_settlement is a no-op returning the prior result
    latency_ms          = settled_at − intent_at, whole milliseconds

This is the source of latency truth for the whole pipeline.
"""

import logging
import uuid
from dataclasses import replace
from decimal import Decimal
from typing import List, Optional, Tuple

from wagertrace.core.canonical import sha256_hex
from wagertrace.core.exceptions import TraceNotFoundError, ValidationError
from wagertrace.core.models import PaymentTrace, SettlementOutcome, SettlementStatus, money
from wagertrace.core.time import Clock, SystemClock
from wagertrace.ledger.ledger import AuditLedger
from wagertrace.ledger.records import Tables
from wagertrace.ledger.table import Table

logger = logging.getLogger(__name__)


class TraceRegistry:

    def __init__(self, ledger: AuditLedger, clock: Clock = None):
        self.clock  = clock or SystemClock()
        self.traces: Table[PaymentTrace] = Table(
            Tables.TRACES, ledger, PaymentTrace, "trace_id"
        )

    # ── Writes ────────────────────────────────────────────────

    def record_intent(
        self,
        payer:    str,
        payee:    str,
        amount:   Decimal,
        currency: str,
    ) -> str:
        amount = money(amount)
        if amount <= 0:
            raise ValidationError("amount must be positive", details={"amount": amount})

        trace = PaymentTrace(
            trace_id=         f"trace-{uuid.uuid4()}",
            payer=            payer,
            payee=            payee,
            amount=           amount,
            currency=         currency,
            intent_at=        self.clock.now(),
            ledger_reference= f"ref-{uuid.uuid4().hex}",
        )
        self.traces.insert(trace)
        logger.info("Recorded intent %s: %s %s from %s", trace.trace_id, amount, currency, payer)
        return trace.trace_id

    def record_settlement(
        self,
        trace_id:        str,
        external_tx_ref: str,
        status:          SettlementStatus,
        failure_reason:  Optional[str] = None,
    ) -> SettlementOutcome:
        """
        Settle a trace exactly once.

        Returns applied=False with the stored latency when the trace was
        already CONFIRMED or FAILED.
        """
        status = SettlementStatus(status)
        if status == SettlementStatus.PENDING:
            raise ValidationError(
                "settlement status must be CONFIRMED or FAILED",
                details={"trace_id": trace_id},
            )

        settled_at = self.clock.now()

        def settle(current: PaymentTrace) -> Optional[PaymentTrace]:
            if current.is_settled:
                return None
            return replace(
                current,
                status=              status,
                settled_at=          settled_at,
                fiat_reference_hash= sha256_hex(external_tx_ref) if external_tx_ref else None,
                failure_reason=      failure_reason,
            )

        try:
            updated = self.traces.update(trace_id, settle)
        except KeyError:
            raise TraceNotFoundError(
                f"Trace not found: {trace_id}", details={"trace_id": trace_id}
            ) from None

        if updated is None:
            prior = self.traces.get(trace_id)
            logger.warning(
                "Trace %s already settled as %s, ignoring %s",
                trace_id, prior.status.value, status.value,
            )
            return SettlementOutcome(trace=prior, latency_ms=prior.latency_ms, applied=False)

        logger.info(
            "Trace %s settled %s after %d ms", trace_id, status.value, updated.latency_ms
        )
        return SettlementOutcome(trace=updated, latency_ms=updated.latency_ms, applied=True)

    def link_validation(self, trace_id: str, validation_id: str) -> PaymentTrace:
        return self._link(trace_id, validation_id=validation_id)

    def link_feedback(self, trace_id: str, feedback_id: str) -> PaymentTrace:
        return self._link(trace_id, feedback_id=feedback_id)

    # ── Reads ─────────────────────────────────────────────────

    def get_trace(self, trace_id: str) -> PaymentTrace:
        trace = self.traces.get(trace_id)
        if trace is None:
            raise TraceNotFoundError(
                f"Trace not found: {trace_id}", details={"trace_id": trace_id}
            )
        return trace

    def find_trace(self, trace_id: str) -> Optional[PaymentTrace]:
        return self.traces.get(trace_id)

    def traces_by_payer(self, payer: str) -> List[PaymentTrace]:
        """Newest first."""
        rows = self.traces.select(lambda t: t.payer == payer)
        return sorted(rows, key=lambda t: t.intent_at, reverse=True)

    def verify_settlement(self, trace_id: str) -> Tuple[bool, int]:
        """(confirmed, latency_ms). Unknown traces report (False, 0)."""
        trace = self.traces.get(trace_id)
        if trace is None or trace.status != SettlementStatus.CONFIRMED:
            return False, 0
        return True, trace.latency_ms

    # ── Internal ──────────────────────────────────────────────

    def _link(self, trace_id: str, **ids: str) -> PaymentTrace:
        try:
            return self.traces.update(trace_id, lambda t: replace(t, **ids))
        except KeyError:
            raise TraceNotFoundError(
                f"Trace not found: {trace_id}", details={"trace_id": trace_id}
            ) from None
