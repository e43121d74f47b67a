"""
wagertrace/disputes/resolver.py

Dispute Resolver: deterministic re-evaluation of bet timing.

    time_diff_ms = bet.server_received_at − market.close_time
                   (close_time defaults to now for a market that never closed)

    rejected bet
        time_diff >  0                               → CORRECT   (genuinely late)
        −grace < time_diff ≤ 0  and latency > limit  → INCORRECT, system fault
        otherwise                                    → INCORRECT (wrongly rejected)

    accepted / pending / won / lost bet
        time_diff ≤ 0                                → CORRECT
        time_diff >  0                               → INCORRECT (should have been rejected)

    any other status                                 → CORRECT, neutral

The verdict and explanation depend only on stored facts. The attestation
is SHA-256(JCS({bet_id, verdict, resolved_at})) plus the signer's proof
over that hash, so it varies with the resolution time only.
"""

import logging
import uuid
from typing import Any, Dict, List

from wagertrace.betting.book import BettingCollaborator
from wagertrace.core.canonical import canonical_hash
from wagertrace.core.crypto import Signer
from wagertrace.core.exceptions import ValidationError
from wagertrace.core.models import (
    Bet,
    BetStatus,
    Dispute,
    DisputeStatus,
    FeedbackType,
    ValidationResult,
    Verdict,
)
from wagertrace.core.time import Clock, SystemClock, format_timestamp, ms_between
from wagertrace.ledger.ledger import AuditLedger
from wagertrace.ledger.records import Tables
from wagertrace.ledger.table import Table
from wagertrace.metrics import batch_metrics
from wagertrace.registry.reputation import ReputationRegistry

logger = logging.getLogger(__name__)

_TIMED_STATUSES = {BetStatus.ACCEPTED, BetStatus.PENDING, BetStatus.WON, BetStatus.LOST}


class DisputeResolver:

    def __init__(
        self,
        ledger:            AuditLedger,
        betting:           BettingCollaborator,
        signer:            Signer,
        reputation:        ReputationRegistry,
        facilitator_agent: str,
        clock:             Clock = None,
        grace_ms:          int = 100,
        latency_fault_ms:  int = 100,
    ):
        self.betting           = betting
        self.signer            = signer
        self.reputation        = reputation
        self.facilitator_agent = facilitator_agent
        self.clock             = clock or SystemClock()
        self.grace_ms          = grace_ms
        self.latency_fault_ms  = latency_fault_ms

        self.disputes: Table[Dispute] = Table(
            Tables.DISPUTES, ledger, Dispute, "dispute_id"
        )

    # ── Evaluation ────────────────────────────────────────────

    def validate(self, bet_id: str) -> ValidationResult:
        bet    = self.betting.get_bet(bet_id)
        market = self.betting.get_market(bet.market_id)
        close  = market.close_time or self.clock.now()

        time_diff = ms_between(close, bet.server_received_at)
        latency   = bet.measured_latency_ms
        verdict, explanation, fault = self._evaluate(bet, time_diff, latency)

        resolved_at = self.clock.now()
        attestation = canonical_hash({
            "bet_id":      bet.bet_id,
            "verdict":     verdict.value,
            "resolved_at": format_timestamp(resolved_at),
        })

        return ValidationResult(
            verdict=               verdict,
            explanation=           explanation,
            attestation=           attestation,
            attestation_signature= self.signer.sign(attestation.encode("ascii")),
            signer_public_key=     self.signer.public_key_hex,
            bet_placed_at=         bet.placed_at,
            market_close_time=     market.close_time,
            latency_ms=            latency,
            time_diff_ms=          time_diff,
            system_fault=          fault,
            resolved_at=           resolved_at,
        )

    def _evaluate(self, bet: Bet, time_diff: int, latency: int):
        """
        Returns:
            (verdict, explanation, system_fault)
        """
        if bet.status == BetStatus.REJECTED:
            if time_diff > 0:
                return (
                    Verdict.CORRECT,
                    f"Bet reached the server {time_diff} ms after market close; "
                    f"rejection was correct",
                    False,
                )
            if -self.grace_ms < time_diff and latency > self.latency_fault_ms:
                return (
                    Verdict.INCORRECT,
                    f"Bet reached the server {-time_diff} ms before market close "
                    f"with {latency} ms of network latency; rejection was a "
                    f"latency fault, not a late bet",
                    True,
                )
            return (
                Verdict.INCORRECT,
                f"Bet reached the server {-time_diff} ms before market close; "
                f"rejection was incorrect",
                False,
            )

        if bet.status in _TIMED_STATUSES:
            if time_diff <= 0:
                return (
                    Verdict.CORRECT,
                    f"Bet reached the server {-time_diff} ms before market close; "
                    f"acceptance was correct",
                    False,
                )
            return (
                Verdict.INCORRECT,
                f"Bet reached the server {time_diff} ms after market close; "
                f"it should have been rejected",
                False,
            )

        return (
            Verdict.CORRECT,
            f"No timing rule applies to a bet in status '{bet.status.value}'",
            False,
        )

    def verify_attestation(self, result: ValidationResult, bet_id: str) -> bool:
        """Recompute the attestation hash and check its signature."""
        expected = canonical_hash({
            "bet_id":      bet_id,
            "verdict":     result.verdict.value,
            "resolved_at": format_timestamp(result.resolved_at),
        })
        if expected != result.attestation:
            return False
        return self.signer.verify(expected.encode("ascii"), result.attestation_signature)

    # ── Disputes ──────────────────────────────────────────────

    def create_dispute(self, bet_id: str, reason: str) -> Dispute:
        """Resolve a dispute synchronously and store it."""
        if not reason or not reason.strip():
            raise ValidationError("dispute reason is required", details={"bet_id": bet_id})

        bet    = self.betting.get_bet(bet_id)
        market = self.betting.get_market(bet.market_id)
        result = self.validate(bet_id)

        dispute = Dispute(
            dispute_id=  f"dispute-{uuid.uuid4()}",
            bet_id=      bet_id,
            market_id=   market.market_id,
            batch_id=    market.event_id,
            reason=      reason,
            status=      DisputeStatus.RESOLVED,
            result=      result,
            created_at=  self.clock.now(),
            resolved_at= result.resolved_at,
        )
        self.disputes.insert(dispute)
        logger.info(
            "Dispute %s on %s resolved %s", dispute.dispute_id, bet_id, result.verdict.value
        )

        if result.verdict == Verdict.INCORRECT and bet.trace_id:
            self.reputation.submit_feedback(
                trace_id=      bet.trace_id,
                agent=         self.facilitator_agent,
                rating=        0.0,
                feedback_type= FeedbackType.DISPUTE,
                proof={
                    "dispute_id":   dispute.dispute_id,
                    "attestation":  result.attestation,
                    "system_fault": result.system_fault,
                },
            )
        return dispute

    def disputes_for(self, bet_id: str) -> List[Dispute]:
        return self.disputes.select(lambda d: d.bet_id == bet_id)

    def disputes_for_batch(self, batch_id: str) -> List[Dispute]:
        return self.disputes.select(lambda d: d.batch_id == batch_id)

    def batch_metrics(self, batch_id: str) -> Dict[str, Any]:
        """Bet and dispute figures for one event."""
        return batch_metrics(
            batch_id, self.betting.bets_for_event(batch_id), self.disputes_for_batch(batch_id)
        )
