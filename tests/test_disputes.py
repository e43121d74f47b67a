"""
Dispute resolution: timing verdicts, signed attestations, reputation impact.
"""

from datetime import timedelta

import pytest

from helpers import FACILITATOR, add_bet

from wagertrace.core.crypto import Ed25519KeyManager
from wagertrace.core.exceptions import BetNotFoundError, ValidationError
from wagertrace.core.models import BetStatus, DisputeStatus, FeedbackType, Verdict
from wagertrace.disputes.resolver import DisputeResolver
from wagertrace.metrics import batch_metrics


@pytest.fixture
def close(book):
    return book.get_market("m-1").close_time


def bet_at(book, clock, close, offset_ms, status, latency_ms=None, bet_id="bet-1"):
    """A bet received offset_ms after (positive) or before (negative) market close."""
    return add_bet(
        book, clock, bet_id,
        status=      status,
        received_at= close + timedelta(milliseconds=offset_ms),
        latency_ms=  latency_ms,
    )


class TestVerdicts:

    def test_late_rejection_is_correct(self, resolver, book, clock, close):
        bet_at(book, clock, close, 50, BetStatus.REJECTED)
        result = resolver.validate("bet-1")

        assert result.verdict == Verdict.CORRECT
        assert result.time_diff_ms == 50
        assert not result.system_fault

    def test_latency_fault_rejection_is_incorrect(self, resolver, book, clock, close):
        bet_at(book, clock, close, -30, BetStatus.REJECTED, latency_ms=250)
        result = resolver.validate("bet-1")

        assert result.verdict == Verdict.INCORRECT
        assert result.system_fault
        assert "latency fault" in result.explanation
        assert result.latency_ms == 250
        assert result.time_diff_ms == -30

    def test_early_rejection_without_latency_is_incorrect(self, resolver, book, clock, close):
        bet_at(book, clock, close, -500, BetStatus.REJECTED, latency_ms=20)
        result = resolver.validate("bet-1")

        assert result.verdict == Verdict.INCORRECT
        assert not result.system_fault

    def test_rejection_at_exact_close_is_incorrect(self, resolver, book, clock, close):
        bet_at(book, clock, close, 0, BetStatus.REJECTED, latency_ms=10)
        assert resolver.validate("bet-1").verdict == Verdict.INCORRECT

    @pytest.mark.parametrize("status", [BetStatus.ACCEPTED, BetStatus.PENDING, BetStatus.WON])
    def test_timely_acceptance_is_correct(self, resolver, book, clock, close, status):
        bet_at(book, clock, close, -10, status)
        assert resolver.validate("bet-1").verdict == Verdict.CORRECT

    def test_late_acceptance_is_incorrect(self, resolver, book, clock, close):
        bet_at(book, clock, close, 10, BetStatus.ACCEPTED)
        assert resolver.validate("bet-1").verdict == Verdict.INCORRECT

    def test_open_market_measures_against_now(self, resolver, book, clock):
        book.get_market("m-1").close_time = None
        add_bet(book, clock, "bet-1", status=BetStatus.ACCEPTED)
        clock.advance(seconds=2)

        result = resolver.validate("bet-1")
        assert result.time_diff_ms == -2000
        assert result.market_close_time is None

    def test_custom_thresholds(self, ledger, book, key, reputation, clock, close):
        strict = DisputeResolver(
            ledger, book, key, reputation, FACILITATOR, clock,
            grace_ms=         20,
            latency_fault_ms= 100,
        )
        bet_at(book, clock, close, -30, BetStatus.REJECTED, latency_ms=250)
        assert not strict.validate("bet-1").system_fault

    def test_verdict_is_repeatable(self, resolver, book, clock, close):
        bet_at(book, clock, close, -30, BetStatus.REJECTED, latency_ms=250)
        first = resolver.validate("bet-1")
        clock.advance(seconds=10)
        second = resolver.validate("bet-1")

        assert (first.verdict, first.explanation) == (second.verdict, second.explanation)
        assert first.attestation != second.attestation

    def test_unknown_bet_raises(self, resolver):
        with pytest.raises(BetNotFoundError):
            resolver.validate("missing")


class TestAttestation:

    def test_attestation_verifies(self, resolver, book, clock, close, key):
        bet_at(book, clock, close, 50, BetStatus.REJECTED)
        result = resolver.validate("bet-1")

        assert resolver.verify_attestation(result, "bet-1")
        assert result.signer_public_key == key.public_key_hex

    def test_attestation_bound_to_bet(self, resolver, book, clock, close):
        bet_at(book, clock, close, 50, BetStatus.REJECTED)
        result = resolver.validate("bet-1")
        assert not resolver.verify_attestation(result, "bet-2")

    def test_foreign_signature_rejected(self, resolver, book, clock, close):
        bet_at(book, clock, close, 50, BetStatus.REJECTED)
        result = resolver.validate("bet-1")
        result.attestation_signature = Ed25519KeyManager.generate().sign(
            result.attestation.encode("ascii")
        )
        assert not resolver.verify_attestation(result, "bet-1")


class TestCreateDispute:

    def test_dispute_is_stored_resolved(self, resolver, book, clock, close):
        bet_at(book, clock, close, 50, BetStatus.REJECTED)
        dispute = resolver.create_dispute("bet-1", "I placed it in time")

        assert dispute.status == DisputeStatus.RESOLVED
        assert dispute.batch_id == "e-1"
        assert dispute.resolved_at == dispute.result.resolved_at
        assert resolver.disputes_for("bet-1") == [dispute]
        assert resolver.disputes_for_batch("e-1") == [dispute]

    def test_blank_reason_rejected(self, resolver, book, clock, close, ledger):
        bet_at(book, clock, close, 50, BetStatus.REJECTED)
        with pytest.raises(ValidationError):
            resolver.create_dispute("bet-1", "   ")
        assert len(ledger) == 0

    def test_incorrect_verdict_penalizes_facilitator(self, resolver, reputation, book, clock, close):
        bet = bet_at(book, clock, close, -30, BetStatus.REJECTED, latency_ms=250)
        bet.trace_id = "trace-1"

        dispute = resolver.create_dispute("bet-1", "rejected while market open")

        (feedback,) = reputation.feedback_for(FACILITATOR)
        assert feedback.feedback_type == FeedbackType.DISPUTE
        assert feedback.rating == 0.0
        assert feedback.proof["dispute_id"] == dispute.dispute_id
        assert reputation.reputation_of(FACILITATOR).recent_disputes == 1

    def test_correct_verdict_leaves_reputation_alone(self, resolver, reputation, book, clock, close):
        bet = bet_at(book, clock, close, 50, BetStatus.REJECTED)
        bet.trace_id = "trace-1"
        resolver.create_dispute("bet-1", "too late?")
        assert reputation.feedback_for(FACILITATOR) == []


class TestBatchMetrics:

    def test_metrics_over_event(self, resolver, book, clock, close):
        bet_at(book, clock, close, -200, BetStatus.ACCEPTED, latency_ms=40, bet_id="b1")
        bet_at(book, clock, close, 50, BetStatus.REJECTED, latency_ms=60, bet_id="b2")
        bet_at(book, clock, close, -30, BetStatus.REJECTED, latency_ms=250, bet_id="b3")
        resolver.create_dispute("b2", "late?")
        resolver.create_dispute("b3", "not late")

        metrics = batch_metrics(
            "e-1", book.bets_for_event("e-1"), resolver.disputes_for_batch("e-1")
        )

        assert metrics["total_bets"] == 3
        assert metrics["accepted_bets"] == 1
        assert metrics["rejected_bets"] == 2
        assert metrics["max_latency_ms"] == 250
        assert metrics["handle"] == "25.00"
        assert metrics["disputes"] == 2
        assert metrics["disputes_correct"] == 1
        assert metrics["system_faults"] == 1

    def test_pending_bets_are_not_counted_as_accepted(self, resolver, book, clock, close):
        bet_at(book, clock, close, -200, BetStatus.WON, bet_id="b1")
        bet_at(book, clock, close, -100, BetStatus.PENDING, bet_id="b2")
        bet_at(book, clock, close, 50, BetStatus.REJECTED, bet_id="b3")

        metrics = resolver.batch_metrics("e-1")

        assert metrics["batch_id"] == "e-1"
        assert metrics["accepted_bets"] == 1
        assert metrics["pending_bets"] == 1
        assert metrics["rejected_bets"] == 1
        assert metrics["acceptance_rate"] == pytest.approx(1 / 3)
        assert metrics["handle"] == "50.00"
        assert metrics["disputes"] == 0

    def test_resolver_view_includes_event_disputes(self, resolver, book, clock, close):
        bet_at(book, clock, close, 50, BetStatus.REJECTED, bet_id="b1")
        resolver.create_dispute("b1", "late?")

        assert resolver.batch_metrics("e-1")["disputes_correct"] == 1
        assert resolver.batch_metrics("e-2")["total_bets"] == 0

    def test_empty_batch(self):
        metrics = batch_metrics("e-9", [])
        assert metrics["total_bets"] == 0
        assert metrics["acceptance_rate"] == 0.0
