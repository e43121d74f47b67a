"""
wagertrace/registry/reputation.py

Reputation Registry: append-only validation and feedback per settlement agent.

CONTRACT
    submit_validation   → one "insert" row in validations
    submit_feedback     → one "insert" row in feedback, rating ∈ [0, 1]
    reputation_of       → computed from feedback on every call, so it always
                          reflects the latest submit_feedback
    empty history       → score 1.0, success_rate 1.0
"""

import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional

from wagertrace.core.exceptions import ValidationError
from wagertrace.core.models import FeedbackRecord, FeedbackType, Reputation, ValidationRecord
from wagertrace.core.time import Clock, SystemClock
from wagertrace.ledger.ledger import AuditLedger
from wagertrace.ledger.records import Tables
from wagertrace.ledger.table import Table

logger = logging.getLogger(__name__)

# Settlement outcomes; DISPUTE_FILED feedback counts toward score, not settlements.
_SETTLEMENT_TYPES = {FeedbackType.SUCCESS, FeedbackType.FAILURE}


class ReputationRegistry:

    def __init__(
        self,
        ledger:                AuditLedger,
        clock:                 Clock = None,
        recent_dispute_window: Optional[timedelta] = None,
        trusted_success_rate:  float = 0.95,
    ):
        self.clock                 = clock or SystemClock()
        self.recent_dispute_window = recent_dispute_window or timedelta(days=30)
        self.trusted_success_rate  = trusted_success_rate

        self.validations: Table[ValidationRecord] = Table(
            Tables.VALIDATIONS, ledger, ValidationRecord, "validation_id"
        )
        self.feedback: Table[FeedbackRecord] = Table(
            Tables.FEEDBACK, ledger, FeedbackRecord, "feedback_id"
        )

    # ── Writes ────────────────────────────────────────────────

    def submit_validation(
        self,
        trace_id:        str,
        agent:           str,
        validation_type: str,
        metadata:        Optional[Dict[str, Any]] = None,
    ) -> str:
        record = ValidationRecord(
            validation_id=   f"val-{uuid.uuid4()}",
            trace_id=        trace_id,
            agent=           agent,
            validation_type= validation_type,
            recorded_at=     self.clock.now(),
            metadata=        dict(metadata or {}),
        )
        self.validations.insert(record)
        logger.debug("Validation %s (%s) for %s", record.validation_id, validation_type, trace_id)
        return record.validation_id

    def submit_feedback(
        self,
        trace_id:      str,
        agent:         str,
        rating:        float,
        feedback_type: str,
        proof:         Optional[Dict[str, Any]] = None,
    ) -> str:
        if not isinstance(rating, (int, float)) or not 0.0 <= rating <= 1.0:
            raise ValidationError(
                "rating must be within [0, 1]",
                details={"rating": rating, "trace_id": trace_id},
            )
        record = FeedbackRecord(
            feedback_id=   f"fb-{uuid.uuid4()}",
            trace_id=      trace_id,
            agent=         agent,
            rating=        float(rating),
            feedback_type= feedback_type,
            recorded_at=   self.clock.now(),
            proof=         dict(proof or {}),
        )
        self.feedback.insert(record)
        logger.info(
            "Feedback %s for %s: %s rating=%.2f", record.feedback_id, agent, feedback_type, rating
        )
        return record.feedback_id

    # ── Reads ─────────────────────────────────────────────────

    def feedback_for(self, agent: str) -> List[FeedbackRecord]:
        return self.feedback.select(lambda f: f.agent == agent)

    def validations_for_trace(self, trace_id: str) -> List[ValidationRecord]:
        return self.validations.select(lambda v: v.trace_id == trace_id)

    def reputation_of(self, agent: str) -> Reputation:
        records = self.feedback_for(agent)
        if not records:
            return Reputation(
                agent=                  agent,
                score=                  1.0,
                total_settlements=      0,
                successful_settlements= 0,
                success_rate=           1.0,
                recent_disputes=        0,
            )

        settlements = [r for r in records if r.feedback_type in _SETTLEMENT_TYPES]
        successes   = [r for r in records if r.feedback_type == FeedbackType.SUCCESS]
        cutoff      = self.clock.now() - self.recent_dispute_window
        disputes    = [
            r for r in records
            if r.feedback_type == FeedbackType.DISPUTE and r.recorded_at >= cutoff
        ]

        return Reputation(
            agent=                  agent,
            score=                  sum(r.rating for r in records) / len(records),
            total_settlements=      len(settlements),
            successful_settlements= len(successes),
            success_rate=           len(successes) / len(records),
            recent_disputes=        len(disputes),
        )

    def verify_agent(self, agent: str) -> Dict[str, Any]:
        """Registration and trust summary used by status endpoints."""
        reputation = self.reputation_of(agent)
        trusted    = reputation.success_rate > self.trusted_success_rate
        return {
            "agent":             agent,
            "registered":        True,
            "reputation":        reputation.to_dict(),
            "trusted":           trusted,
            "compliance_status": "COMPLIANT" if trusted else "UNDER_REVIEW",
        }
