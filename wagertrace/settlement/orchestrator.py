"""
wagertrace/settlement/orchestrator.py

Settlement Orchestrator: sequences the registries, access control and
the settlement backends for one bet payment.

process_intent(), in this exact order:
  1. Validate intent          — amount > 0, signature present and accepted
  2. Resolve bet and backend  — market must be open, bet not yet paid
  3. Debit stake              — InsufficientBalanceError, nothing written
  4. record_intent            — PENDING trace
  5. submit_validation        — type PAYMENT_INTENT, linked onto the trace
  6. grant_provisional        — before dispatch, so a fast confirmation
                                always finds a grant to upgrade
  7. Dispatch                 — background task, fire-and-forget
  Any failure in 4–6 refunds the stake and re-raises the original error.
  Steps 2–6 run under a per-bet lock: a bet has one payment in flight.

confirm_settlement() is at-least-once safe: only the first call for a
trace writes anything; later calls return the stored result.

Failure paths all settle the trace FAILED first and revoke second:
    backend callback with a failure status   → fail_settlement
    backend dispatch raising                 → fail_settlement (backend_unreachable)
    provisional grant expiring               → _on_grant_expired (settlement_timeout)
A trace settles once, so a confirmation and a failure never both apply.
"""

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from wagertrace.betting.book import BettingCollaborator
from wagertrace.core.exceptions import (
    GrantNotFoundError,
    InvalidIntentError,
    InvalidTransitionError,
    SettlementBackendError,
    TraceNotFoundError,
    ValidationError,
)
from wagertrace.core.models import (
    AccessGrant,
    AccessLevel,
    BetStatus,
    FeedbackType,
    IntentReceipt,
    PaymentIntent,
    PaymentTrace,
    SettlementReceipt,
    SettlementStatus,
    Subject,
    ValidationType,
    money,
)
from wagertrace.core.time import Clock, SystemClock
from wagertrace.access.control import AccessControl
from wagertrace.registry.reputation import ReputationRegistry
from wagertrace.registry.trace import TraceRegistry
from wagertrace.settlement.backends import SettlementBackend
from wagertrace.settlement.intents import IntentVerifier

logger = logging.getLogger(__name__)

SETTLEMENT_INITIATED = "SETTLEMENT_INITIATED"

_CONFIRMED_STATUSES = {"CONFIRMED", "SUCCESS", "COMPLETED"}


class SettlementOrchestrator:

    def __init__(
        self,
        traces:            TraceRegistry,
        reputation:        ReputationRegistry,
        access:            AccessControl,
        betting:           BettingCollaborator,
        backends:          Dict[str, SettlementBackend],
        intent_verifier:   IntentVerifier,
        facilitator_agent: str = "agent-facilitator-1",
        default_method:    str = "pix",
        clock:             Clock = None,
        executor:          Optional[Executor] = None,
        dispatch_workers:  int = 4,
    ):
        self.traces            = traces
        self.reputation        = reputation
        self.access            = access
        self.betting           = betting
        self.backends          = dict(backends)
        self.intent_verifier   = intent_verifier
        self.facilitator_agent = facilitator_agent
        self.default_method    = default_method
        self.clock             = clock or SystemClock()

        self._owns_executor = executor is None
        self._executor: Executor = executor or ThreadPoolExecutor(
            max_workers=dispatch_workers, thread_name_prefix="wagertrace-dispatch"
        )
        self._lock:       threading.Lock    = threading.Lock()
        self._dispatches: Dict[str, Future] = {}
        self._bet_locks:  Dict[str, threading.RLock] = {}

        self.access.on_expired = self._on_grant_expired

    # ── Intent ────────────────────────────────────────────────

    def process_intent(
        self,
        intent:     PaymentIntent,
        bet_id:     str,
        subject_id: str,
    ) -> IntentReceipt:
        self._validate_intent(intent)

        with self._bet_lock(bet_id):
            bet   = self.betting.get_bet(bet_id)
            prior = self.traces.find_trace(bet.trace_id) if bet.trace_id else None
            if prior is not None and prior.status != SettlementStatus.FAILED:
                raise ValidationError(
                    "Bet already has a payment in flight",
                    details={"bet_id": bet_id, "trace_id": bet.trace_id},
                    reason="bet_already_paid",
                )
            is_open, why = self.betting.is_market_open(bet.market_id)
            if not is_open:
                raise ValidationError(
                    "Market is not accepting payments",
                    details={"market_id": bet.market_id},
                    reason=why,
                )
            subject = self.betting.get_subject(subject_id)
            backend = self._backend_for(subject)

            self.betting.debit_balance(subject_id, bet.amount)
            trace_id = None
            try:
                trace_id = self.traces.record_intent(
                    intent.payer, intent.payee, intent.amount, intent.currency
                )
                validation_id = self.reputation.submit_validation(
                    trace_id,
                    self.facilitator_agent,
                    ValidationType.PAYMENT_INTENT,
                    metadata={
                        "intent_id": intent.intent_id,
                        "nonce":     intent.nonce,
                        "bet_id":    bet_id,
                        "backend":   backend.name,
                    },
                )
                self.traces.link_validation(trace_id, validation_id)
                self.betting.set_bet_trace(bet_id, trace_id)
                token = self.access.grant_provisional(subject_id, trace_id, bet_id)
                grant = self.access.grant_for(trace_id)
            except Exception:
                logger.error("Intent for bet %s aborted, refunding %s", bet_id, bet.amount)
                self._abort_intent(subject_id, bet.amount, trace_id)
                raise

        future = self._executor.submit(self._dispatch, backend, trace_id)
        with self._lock:
            self._dispatches[trace_id] = future
        future.add_done_callback(lambda _: self._release_dispatch(trace_id))

        return IntentReceipt(
            trace_id=      trace_id,
            status=        SETTLEMENT_INITIATED,
            access_level=  AccessLevel.PROVISIONAL,
            access_token=  token,
            expires_at=    grant.expires_at,
            backend=       backend.name,
            validation_id= validation_id,
        )

    def wait_for_dispatch(self, trace_id: str, timeout: Optional[float] = None) -> str:
        """
        Block until the backend accepted the dispatch. Returns the external tx id.

        Only dispatches still tracked can be waited on: once the trace has
        settled and the dispatch finished, the entry is released.
        """
        with self._lock:
            future = self._dispatches.get(trace_id)
        if future is None:
            raise TraceNotFoundError(
                f"No dispatch for trace: {trace_id}", details={"trace_id": trace_id}
            )
        return future.result(timeout)

    # ── Settlement ────────────────────────────────────────────

    def confirm_settlement(
        self,
        trace_id:        str,
        external_tx_ref: str,
        backend_name:    str,
    ) -> SettlementReceipt:
        outcome = self.traces.record_settlement(
            trace_id, external_tx_ref, SettlementStatus.CONFIRMED
        )
        if not outcome.applied:
            return self._receipt(outcome.trace, duplicate=True)

        trace = outcome.trace
        feedback_id = self.reputation.submit_feedback(
            trace_id,
            self.facilitator_agent,
            1.0,
            FeedbackType.SUCCESS,
            proof={
                "fiat_reference_hash": trace.fiat_reference_hash,
                "backend":             backend_name,
                "latency_ms":          outcome.latency_ms,
            },
        )
        trace = self.traces.link_feedback(trace_id, feedback_id)
        self._release_dispatch(trace_id)

        token = None
        level = None
        subject = self.betting.resolve_subject(trace.payer)
        if subject is None:
            logger.warning(
                "Reconciliation gap: no subject for payer %s on %s, access not upgraded",
                trace.payer, trace_id,
            )
        else:
            token, level = self._upgrade(subject, trace_id)

        logger.info(
            "Settlement confirmed for %s via %s in %d ms", trace_id, backend_name, outcome.latency_ms
        )
        return self._receipt(trace, access_level=level, access_token=token)

    def fail_settlement(
        self,
        trace_id:        str,
        reason:          str,
        external_tx_ref: str = "",
        backend_name:    Optional[str] = None,
    ) -> SettlementReceipt:
        outcome = self.traces.record_settlement(
            trace_id, external_tx_ref, SettlementStatus.FAILED, failure_reason=reason
        )
        if not outcome.applied:
            return self._receipt(outcome.trace, duplicate=True)

        trace = self._record_failure(outcome.trace, reason, backend_name, outcome.latency_ms)
        self._release_dispatch(trace_id)
        grant = self._revoke(trace_id)
        logger.warning("Settlement failed for %s: %s", trace_id, reason)
        return self._receipt(trace, access_level=grant.level if grant else None)

    def handle_callback(
        self,
        trace_id:       str,
        external_tx_id: str,
        backend_name:   str,
        status:         str,
    ) -> SettlementReceipt:
        """Inbound backend confirmation. Delivery may repeat."""
        if str(status).upper() in _CONFIRMED_STATUSES:
            return self.confirm_settlement(trace_id, external_tx_id, backend_name)
        return self.fail_settlement(
            trace_id,
            reason=          "settlement_declined",
            external_tx_ref= external_tx_id,
            backend_name=    backend_name,
        )

    # ── Status ────────────────────────────────────────────────

    def status(self) -> Dict[str, Any]:
        with self._lock:
            in_flight = sum(1 for f in self._dispatches.values() if not f.done())
            tracked   = len(self._dispatches)
        return {
            "facilitator":        self.facilitator_agent,
            "status":             "ACTIVE",
            "backends":           sorted(self.backends),
            "dispatches_active":  in_flight,
            "dispatches_tracked": tracked,
            "verification":       self.reputation.verify_agent(self.facilitator_agent),
        }

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    # ── Internal ──────────────────────────────────────────────

    def _bet_lock(self, bet_id: str) -> threading.RLock:
        with self._lock:
            return self._bet_locks.setdefault(bet_id, threading.RLock())

    def _abort_intent(self, subject_id: str, stake: Decimal, trace_id: Optional[str]) -> None:
        """Refund the stake and close the trace. The caller re-raises its own error."""
        try:
            self.betting.credit_balance(subject_id, stake)
        except Exception:
            logger.exception("Refund of %s to %s failed after aborted intent", stake, subject_id)
        if trace_id is None:
            return
        try:
            self.traces.record_settlement(
                trace_id, "", SettlementStatus.FAILED, failure_reason="intent_aborted"
            )
        except Exception:
            logger.exception("Closing aborted trace %s failed", trace_id)

    def _release_dispatch(self, trace_id: str) -> None:
        """Drop the dispatch entry once it has finished and its trace has settled."""
        trace = self.traces.find_trace(trace_id)
        if trace is None or trace.status == SettlementStatus.PENDING:
            return
        with self._lock:
            future = self._dispatches.get(trace_id)
            if future is not None and future.done():
                del self._dispatches[trace_id]

    def _validate_intent(self, intent: PaymentIntent) -> None:
        try:
            amount = money(intent.amount)
        except (InvalidOperation, ValueError, TypeError):
            raise InvalidIntentError(
                "Intent amount is not a number", details={"amount": intent.amount}
            ) from None
        if not amount.is_finite() or amount <= 0:
            raise InvalidIntentError(
                "Intent amount must be positive", details={"amount": intent.amount}
            )
        if not intent.payer or not intent.payee or not intent.currency:
            raise InvalidIntentError("Intent must name payer, payee and currency")
        if not isinstance(intent.signature, str) or not intent.signature:
            raise InvalidIntentError("Intent is not signed")
        if not self.intent_verifier.verify(intent):
            raise InvalidIntentError(
                "Intent signature rejected", details={"payer": intent.payer}
            )

    def _backend_for(self, subject: Subject) -> SettlementBackend:
        method  = subject.preferred_payment_method or self.default_method
        backend = self.backends.get(method) or self.backends.get(self.default_method)
        if backend is None:
            raise SettlementBackendError(
                "No settlement backend for payment method",
                details={"method": method},
            )
        return backend

    def _dispatch(self, backend: SettlementBackend, trace_id: str) -> str:
        trace = self.traces.get_trace(trace_id)
        try:
            external_tx_id = backend.dispatch(
                trace_id,
                trace.amount,
                trace.currency,
                trace.payer,
                trace.payee,
                trace.ledger_reference,
            )
        except Exception as exc:
            logger.error("Dispatch of %s to %s failed: %s", trace_id, backend.name, exc)
            self.fail_settlement(trace_id, "backend_unreachable", backend_name=backend.name)
            raise SettlementBackendError(
                f"Backend {backend.name} did not accept the dispatch",
                details={"trace_id": trace_id},
            ) from exc
        logger.info("Dispatched %s to %s as %s", trace_id, backend.name, external_tx_id)
        return external_tx_id

    def _upgrade(self, subject: Subject, trace_id: str):
        try:
            token = self.access.upgrade_to_full(subject.subject_id, trace_id)
        except GrantNotFoundError:
            logger.warning(
                "Reconciliation gap: no active grant on %s for %s", trace_id, subject.subject_id
            )
            return None, None

        grant = self.access.grant_for(trace_id)
        self.betting.set_bet_status(grant.bet_id, BetStatus.ACCEPTED)
        self.betting.set_bet_access_level(grant.bet_id, AccessLevel.FULL)
        self.betting.set_bet_confirmed_at(grant.bet_id, self.clock.now())
        return token, AccessLevel.FULL

    def _revoke(self, trace_id: str) -> Optional[AccessGrant]:
        grants = self.access.grants_for(trace_id)
        if not grants:
            logger.warning("No grant to revoke on failed trace %s", trace_id)
            return None
        grant = grants[-1]
        try:
            return self.access.revoke(grant.subject_id, trace_id)
        except InvalidTransitionError:
            logger.warning("Failed trace %s already holds FULL access", trace_id)
            return grant

    def _record_failure(
        self,
        trace:        PaymentTrace,
        reason:       str,
        backend_name: Optional[str],
        latency_ms:   int,
    ) -> PaymentTrace:
        feedback_id = self.reputation.submit_feedback(
            trace.trace_id,
            self.facilitator_agent,
            0.0,
            FeedbackType.FAILURE,
            proof={"reason": reason, "backend": backend_name, "latency_ms": latency_ms},
        )
        return self.traces.link_feedback(trace.trace_id, feedback_id)

    def _on_grant_expired(self, grant: AccessGrant) -> bool:
        """Settle the trace as timed out. Revoke only if this write won."""
        try:
            outcome = self.traces.record_settlement(
                grant.trace_id, "", SettlementStatus.FAILED, failure_reason="settlement_timeout"
            )
        except TraceNotFoundError:
            return True
        if outcome.applied:
            self._record_failure(outcome.trace, "settlement_timeout", None, outcome.latency_ms)
            self._release_dispatch(grant.trace_id)
            logger.warning("Provisional access on %s expired unsettled", grant.trace_id)
        return outcome.applied

    def _receipt(
        self,
        trace:        PaymentTrace,
        access_level: Optional[AccessLevel] = None,
        access_token: Optional[str] = None,
        duplicate:    bool = False,
    ) -> SettlementReceipt:
        if duplicate:
            grants = self.access.grants_for(trace.trace_id)
            access_level = grants[-1].level if grants else None
        return SettlementReceipt(
            trace_id=            trace.trace_id,
            status=              trace.status.value,
            settled_at=          trace.settled_at,
            fiat_reference_hash= trace.fiat_reference_hash,
            latency_ms=          trace.latency_ms,
            access_level=        access_level,
            access_token=        access_token,
            duplicate=           duplicate,
        )
