"""
Batch metrics over one event's bets and disputes.

accepted_bets counts accepted, won and lost bets. Pending bets are
reported on their own but still count toward handle, which is the stake
of every bet not rejected.
"""

from decimal import Decimal
from typing import Any, Dict, List

from wagertrace.core.models import Bet, BetStatus, Dispute, Verdict

ACCEPTED_STATUSES = {BetStatus.ACCEPTED, BetStatus.WON, BetStatus.LOST}


def batch_metrics(batch_id: str, bets: List[Bet], disputes: List[Dispute] = None) -> Dict[str, Any]:
    disputes  = disputes or []
    accepted  = [b for b in bets if b.status in ACCEPTED_STATUSES]
    pending   = [b for b in bets if b.status == BetStatus.PENDING]
    rejected  = [b for b in bets if b.status == BetStatus.REJECTED]
    latencies = [b.measured_latency_ms for b in bets]
    handle    = sum((b.amount for b in bets if b.status != BetStatus.REJECTED), Decimal("0"))

    correct = sum(1 for d in disputes if d.result.verdict == Verdict.CORRECT)

    return {
        "batch_id":           batch_id,
        "total_bets":         len(bets),
        "accepted_bets":      len(accepted),
        "pending_bets":       len(pending),
        "rejected_bets":      len(rejected),
        "acceptance_rate":    len(accepted) / len(bets) if bets else 0.0,
        "avg_latency_ms":     sum(latencies) / len(latencies) if latencies else 0.0,
        "max_latency_ms":     max(latencies) if latencies else 0,
        "handle":             str(handle),
        "disputes":           len(disputes),
        "disputes_correct":   correct,
        "disputes_incorrect": len(disputes) - correct,
        "system_faults":      sum(1 for d in disputes if d.result.system_fault),
    }
