"""
wagertrace/access/control.py

Access Control: two-tier grants on bet outcomes.

State machine (no transition leaves FULL or REVOKED):

    PROVISIONAL ──(settlement confirmed)──────────► FULL
    PROVISIONAL ──(settlement failed | expired)───► REVOKED

CONTRACT
    at most one ACTIVE grant per trace id
    PROVISIONAL grants always carry expires_at; FULL grants never expire
    revoke credits back exactly the stake, once; revoke on REVOKED is a no-op
    every transition for a trace runs under that trace's lock

Expiry is enforced three ways: the ExpiryScheduler timer, a lazy check
in grant_for(), and expire_due() sweeps. All three funnel into
_expire(), which asks the on_expired hook before revoking.
"""

import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from wagertrace.access.scheduler import ExpiryScheduler
from wagertrace.betting.book import BettingCollaborator
from wagertrace.core.exceptions import (
    DuplicateGrantError,
    GrantNotFoundError,
    InvalidTransitionError,
)
from wagertrace.core.models import AccessGrant, AccessLevel, BetStatus, GrantStatus
from wagertrace.core.time import Clock, SystemClock
from wagertrace.core.tokens import CapabilityTokens
from wagertrace.ledger.ledger import AuditLedger
from wagertrace.ledger.records import Tables
from wagertrace.ledger.table import Table

logger = logging.getLogger(__name__)

ExpiryHook = Callable[[AccessGrant], bool]


class AccessControl:

    def __init__(
        self,
        ledger:             AuditLedger,
        betting:            BettingCollaborator,
        tokens:             CapabilityTokens,
        clock:              Clock = None,
        provisional_window: timedelta = timedelta(minutes=10),
        full_token_ttl:     timedelta = timedelta(days=30),
        scheduler:          Optional[ExpiryScheduler] = None,
    ):
        self.betting            = betting
        self.tokens             = tokens
        self.clock              = clock or SystemClock()
        self.provisional_window = provisional_window
        self.full_token_ttl     = full_token_ttl
        self.scheduler          = scheduler

        # Returns True if the grant should be revoked. Unset means always revoke.
        self.on_expired: Optional[ExpiryHook] = None

        self.grants: Table[AccessGrant] = Table(
            Tables.ACCESS_GRANTS, ledger, AccessGrant, "grant_id"
        )

        self._guard:       threading.Lock = threading.Lock()
        self._trace_locks: Dict[str, threading.RLock] = {}
        self._by_trace:    Dict[str, List[str]] = {}
        for grant in self.grants.select():
            self._by_trace.setdefault(grant.trace_id, []).append(grant.grant_id)

    # ── Transitions ───────────────────────────────────────────

    def grant_provisional(self, subject_id: str, trace_id: str, bet_id: str) -> str:
        """Create an ACTIVE PROVISIONAL grant and return its capability token."""
        bet = self.betting.get_bet(bet_id)
        with self._trace_lock(trace_id):
            if self._active(trace_id) is not None:
                raise DuplicateGrantError(
                    "Trace already holds an active grant",
                    details={"trace_id": trace_id},
                )
            now   = self.clock.now()
            grant = AccessGrant(
                grant_id=   f"grant-{uuid.uuid4()}",
                subject_id= subject_id,
                trace_id=   trace_id,
                bet_id=     bet_id,
                stake=      bet.amount,
                level=      AccessLevel.PROVISIONAL,
                status=     GrantStatus.ACTIVE,
                granted_at= now,
                expires_at= now + self.provisional_window,
            )
            self.grants.insert(grant)
            with self._guard:
                self._by_trace.setdefault(trace_id, []).append(grant.grant_id)

        if self.scheduler is not None:
            self.scheduler.schedule(grant.grant_id, grant.expires_at)
        logger.info(
            "Provisional grant %s for %s on %s, expires %s",
            grant.grant_id, subject_id, trace_id, grant.expires_at,
        )
        return self._issue(grant, self.provisional_window)

    def upgrade_to_full(self, subject_id: str, trace_id: str) -> str:
        """PROVISIONAL → FULL. Upgrading a FULL grant re-issues its token."""
        with self._trace_lock(trace_id):
            grant = self._active(trace_id)
            if grant is None or grant.subject_id != subject_id:
                raise GrantNotFoundError(
                    "No active grant for trace",
                    details={"trace_id": trace_id, "subject_id": subject_id},
                )
            if grant.level == AccessLevel.PROVISIONAL:
                grant = self.grants.update(
                    grant.grant_id,
                    lambda g: replace(
                        g,
                        level=       AccessLevel.FULL,
                        upgraded_at= self.clock.now(),
                        expires_at=  None,
                    ),
                )
                logger.info("Grant %s upgraded to FULL", grant.grant_id)

        if self.scheduler is not None:
            self.scheduler.cancel(grant.grant_id)
        return self._issue(grant, self.full_token_ttl)

    def revoke(self, subject_id: str, trace_id: str) -> AccessGrant:
        """
        PROVISIONAL → REVOKED, rejecting the bet and refunding the stake.

        Raises:
            GrantNotFoundError:     no grant for this trace and subject
            InvalidTransitionError: the grant is already FULL
        """
        with self._trace_lock(trace_id):
            grant = self._latest(trace_id)
            if grant is None or grant.subject_id != subject_id:
                raise GrantNotFoundError(
                    "No grant for trace",
                    details={"trace_id": trace_id, "subject_id": subject_id},
                )
            if grant.status == GrantStatus.REVOKED:
                return grant
            if grant.level == AccessLevel.FULL:
                raise InvalidTransitionError(
                    "A FULL grant cannot be revoked",
                    details={"grant_id": grant.grant_id},
                )

            grant = self.grants.update(
                grant.grant_id,
                lambda g: replace(
                    g,
                    level=      AccessLevel.REVOKED,
                    status=     GrantStatus.REVOKED,
                    revoked_at= self.clock.now(),
                ),
            )
            self.betting.set_bet_status(grant.bet_id, BetStatus.REJECTED)
            self.betting.set_bet_access_level(grant.bet_id, AccessLevel.REVOKED)
            self.betting.credit_balance(grant.subject_id, grant.stake)

        if self.scheduler is not None:
            self.scheduler.cancel(grant.grant_id)
        logger.info(
            "Grant %s revoked, refunded %s to %s", grant.grant_id, grant.stake, grant.subject_id
        )
        return grant

    # ── Expiry ────────────────────────────────────────────────

    def expire_due(self, now: Optional[datetime] = None) -> List[str]:
        """Expire every overdue PROVISIONAL grant. Returns revoked trace ids."""
        now = now or self.clock.now()
        revoked = []
        for grant in self.grants.select(lambda g: g.is_expired(now)):
            if self._expire(grant):
                revoked.append(grant.trace_id)
        return revoked

    def reschedule_pending(self) -> int:
        """Re-arm timers for PROVISIONAL grants restored from the ledger."""
        if self.scheduler is None:
            return 0
        count = 0
        for grant in self.grants.select(
            lambda g: g.is_active and g.level == AccessLevel.PROVISIONAL
        ):
            if self.scheduler.schedule(grant.grant_id, grant.expires_at):
                count += 1
        return count

    def on_timer(self, grant_id: str) -> None:
        """ExpiryScheduler callback."""
        grant = self.grants.get(grant_id)
        if grant is None or not grant.is_active or grant.level != AccessLevel.PROVISIONAL:
            return
        self._expire(grant)

    def _expire(self, grant: AccessGrant) -> bool:
        if self.on_expired is not None and not self.on_expired(grant):
            logger.info("Expiry of %s skipped, trace already settled", grant.grant_id)
            return False
        try:
            revoked = self.revoke(grant.subject_id, grant.trace_id)
        except InvalidTransitionError:
            logger.info("Grant %s reached FULL before expiry", grant.grant_id)
            return False
        return revoked.grant_id == grant.grant_id

    # ── Reads ─────────────────────────────────────────────────

    def grant_for(self, trace_id: str) -> Optional[AccessGrant]:
        """The ACTIVE grant for a trace, expiring it first if overdue."""
        grant = self._active(trace_id)
        if grant is not None and grant.is_expired(self.clock.now()):
            self._expire(grant)
            grant = self._active(trace_id)
        return grant

    def grants_for(self, trace_id: str) -> List[AccessGrant]:
        with self._guard:
            ids = list(self._by_trace.get(trace_id, []))
        return [self.grants.get(grant_id) for grant_id in ids]

    def check_token(self, token: str) -> Dict[str, str]:
        """Decode a capability token and confirm its grant is still live."""
        claims = self.tokens.decode(token)
        grant  = self.grants.get(claims.get("grant_id", ""))
        if grant is None or not grant.is_active:
            raise GrantNotFoundError(
                "Grant behind token is not active",
                details={"trace_id": claims.get("trace_id")},
            )
        return claims

    # ── Internal ──────────────────────────────────────────────

    def _trace_lock(self, trace_id: str) -> threading.RLock:
        with self._guard:
            return self._trace_locks.setdefault(trace_id, threading.RLock())

    def _latest(self, trace_id: str) -> Optional[AccessGrant]:
        grants = self.grants_for(trace_id)
        return grants[-1] if grants else None

    def _active(self, trace_id: str) -> Optional[AccessGrant]:
        for grant in self.grants_for(trace_id):
            if grant.is_active:
                return grant
        return None

    def _issue(self, grant: AccessGrant, ttl: timedelta) -> str:
        return self.tokens.issue(
            {
                "sub":      grant.subject_id,
                "trace_id": grant.trace_id,
                "bet_id":   grant.bet_id,
                "grant_id": grant.grant_id,
                "level":    grant.level.value,
            },
            ttl,
        )
