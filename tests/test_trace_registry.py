"""
Trace registry: intent recording, settle-once, latency truth.
"""

from decimal import Decimal

import pytest

from wagertrace.core.canonical import sha256_hex
from wagertrace.core.exceptions import TraceNotFoundError, ValidationError
from wagertrace.core.models import SettlementStatus
from wagertrace.ledger.records import RecordType, Tables


class TestRecordIntent:

    def test_new_trace_is_pending(self, traces, clock):
        trace_id = traces.record_intent("user-1", "operator", Decimal("25.00"), "BRL")
        trace = traces.get_trace(trace_id)

        assert trace_id.startswith("trace-")
        assert trace.status == SettlementStatus.PENDING
        assert trace.intent_at == clock.now()
        assert trace.settled_at is None
        assert trace.latency_ms is None
        assert trace.ledger_reference.startswith("ref-")

    def test_string_amount_coerced_to_decimal(self, traces):
        trace_id = traces.record_intent("user-1", "operator", "10.10", "BRL")
        assert traces.get_trace(trace_id).amount == Decimal("10.10")

    @pytest.mark.parametrize("amount", ["0", "-5.00"])
    def test_non_positive_amount_rejected(self, traces, ledger, amount):
        with pytest.raises(ValidationError):
            traces.record_intent("user-1", "operator", amount, "BRL")
        assert len(ledger) == 0

    def test_intent_writes_one_insert(self, traces, ledger):
        traces.record_intent("user-1", "operator", "1.00", "BRL")
        (record,) = list(ledger.records(Tables.TRACES))
        assert record.record_type == RecordType.INSERT


class TestRecordSettlement:

    def test_confirmed_settlement_measures_latency(self, traces, clock):
        trace_id = traces.record_intent("user-1", "operator", "25.00", "BRL")
        clock.advance(seconds=3)

        outcome = traces.record_settlement(trace_id, "pix-tx-1", SettlementStatus.CONFIRMED)

        assert outcome.applied
        assert outcome.latency_ms == 3000
        assert outcome.trace.settled_at == clock.now()
        assert traces.verify_settlement(trace_id) == (True, 3000)

    def test_only_reference_hash_is_stored(self, traces, ledger):
        trace_id = traces.record_intent("user-1", "operator", "25.00", "BRL")
        traces.record_settlement(trace_id, "E12345678202603011800", "CONFIRMED")

        trace = traces.get_trace(trace_id)
        assert trace.fiat_reference_hash == sha256_hex("E12345678202603011800")
        for record in ledger.records():
            assert "E12345678202603011800" not in str(record.payload)

    def test_empty_reference_stores_no_hash(self, traces):
        trace_id = traces.record_intent("user-1", "operator", "25.00", "BRL")
        traces.record_settlement(trace_id, "", SettlementStatus.FAILED, "settlement_timeout")

        trace = traces.get_trace(trace_id)
        assert trace.fiat_reference_hash is None
        assert trace.failure_reason == "settlement_timeout"
        assert traces.verify_settlement(trace_id) == (False, 0)

    def test_second_settlement_is_not_applied(self, traces, ledger, clock):
        trace_id = traces.record_intent("user-1", "operator", "25.00", "BRL")
        clock.advance(milliseconds=800)
        traces.record_settlement(trace_id, "pix-tx-1", SettlementStatus.CONFIRMED)
        written = len(ledger)

        clock.advance(seconds=5)
        outcome = traces.record_settlement(trace_id, "", SettlementStatus.FAILED, "late")

        assert not outcome.applied
        assert outcome.latency_ms == 800
        assert outcome.trace.status == SettlementStatus.CONFIRMED
        assert len(ledger) == written

    def test_pending_status_rejected(self, traces):
        trace_id = traces.record_intent("user-1", "operator", "25.00", "BRL")
        with pytest.raises(ValidationError):
            traces.record_settlement(trace_id, "x", SettlementStatus.PENDING)

    def test_unknown_trace_raises(self, traces):
        with pytest.raises(TraceNotFoundError):
            traces.record_settlement("trace-missing", "x", SettlementStatus.CONFIRMED)


class TestReads:

    def test_links_recorded(self, traces):
        trace_id = traces.record_intent("user-1", "operator", "25.00", "BRL")
        traces.link_validation(trace_id, "val-1")
        traces.link_feedback(trace_id, "fb-1")

        trace = traces.get_trace(trace_id)
        assert (trace.validation_id, trace.feedback_id) == ("val-1", "fb-1")

    def test_link_unknown_trace_raises(self, traces):
        with pytest.raises(TraceNotFoundError):
            traces.link_validation("trace-missing", "val-1")

    def test_traces_by_payer_newest_first(self, traces, clock):
        first  = traces.record_intent("user-1", "operator", "1.00", "BRL")
        clock.advance(seconds=1)
        second = traces.record_intent("user-1", "operator", "2.00", "BRL")
        traces.record_intent("user-2", "operator", "3.00", "BRL")

        assert [t.trace_id for t in traces.traces_by_payer("user-1")] == [second, first]

    def test_unknown_trace_lookups(self, traces):
        assert traces.find_trace("trace-missing") is None
        assert traces.verify_settlement("trace-missing") == (False, 0)
        with pytest.raises(TraceNotFoundError):
            traces.get_trace("trace-missing")
