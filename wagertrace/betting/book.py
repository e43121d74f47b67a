"""
wagertrace/betting/book.py

Betting collaborator.

The settlement core never owns subjects, markets or bets. It reads them
and stamps settlement-derived fields through the BettingCollaborator
protocol. InMemoryBetBook is the reference implementation used by the
runtime defaults, the tests and the example.

Balance updates are linearized per subject: each credit/debit holds that
subject's lock for the whole check-and-apply step.
"""

import logging
import threading
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Tuple

from wagertrace.core.exceptions import (
    BetNotFoundError,
    InsufficientBalanceError,
    MarketNotFoundError,
    SubjectNotFoundError,
    ValidationError,
)
from wagertrace.core.models import (
    AccessLevel,
    Bet,
    BetStatus,
    Market,
    MarketStatus,
    Subject,
    money,
)

logger = logging.getLogger(__name__)


class BettingCollaborator(Protocol):
    def get_bet(self, bet_id: str) -> Bet: ...
    def get_market(self, market_id: str) -> Market: ...
    def is_market_open(self, market_id: str) -> Tuple[bool, str]: ...
    def set_bet_status(self, bet_id: str, status: BetStatus) -> None: ...
    def set_bet_access_level(self, bet_id: str, level: AccessLevel) -> None: ...
    def set_bet_confirmed_at(self, bet_id: str, moment: datetime) -> None: ...
    def set_bet_trace(self, bet_id: str, trace_id: str) -> None: ...
    def set_bet_anchor(self, bet_id: str, root: str) -> None: ...
    def credit_balance(self, subject_id: str, amount: Decimal) -> Decimal: ...
    def debit_balance(self, subject_id: str, amount: Decimal) -> Decimal: ...
    def get_subject(self, subject_id: str) -> Subject: ...
    def resolve_subject(self, identity: str) -> Optional[Subject]: ...
    def bets_for_event(self, event_id: str) -> List[Bet]: ...


class InMemoryBetBook:
    """Dict-backed subjects, markets and bets."""

    def __init__(self) -> None:
        self._subjects: Dict[str, Subject] = {}
        self._markets:  Dict[str, Market]  = {}
        self._bets:     Dict[str, Bet]     = {}

        self._lock:          threading.RLock = threading.RLock()
        self._balance_locks: Dict[str, threading.Lock] = {}

    # ── Seeding ───────────────────────────────────────────────

    def add_subject(self, subject: Subject) -> Subject:
        subject.balance = money(subject.balance)
        with self._lock:
            self._subjects[subject.subject_id] = subject
            self._balance_locks.setdefault(subject.subject_id, threading.Lock())
        return subject

    def add_market(self, market: Market) -> Market:
        if money(market.odds) <= 0:
            raise ValidationError("odds must be positive", details={"market_id": market.market_id})
        with self._lock:
            self._markets[market.market_id] = market
        return market

    def add_bet(self, bet: Bet) -> Bet:
        if money(bet.amount) <= 0:
            raise ValidationError("bet amount must be positive", details={"bet_id": bet.bet_id})
        with self._lock:
            if bet.market_id not in self._markets:
                raise MarketNotFoundError(
                    f"Market not found: {bet.market_id}",
                    details={"bet_id": bet.bet_id},
                )
            self._bets[bet.bet_id] = bet
        return bet

    # ── Reads ─────────────────────────────────────────────────

    def get_bet(self, bet_id: str) -> Bet:
        with self._lock:
            bet = self._bets.get(bet_id)
        if bet is None:
            raise BetNotFoundError(f"Bet not found: {bet_id}", details={"bet_id": bet_id})
        return bet

    def get_market(self, market_id: str) -> Market:
        with self._lock:
            market = self._markets.get(market_id)
        if market is None:
            raise MarketNotFoundError(
                f"Market not found: {market_id}", details={"market_id": market_id}
            )
        return market

    def is_market_open(self, market_id: str) -> Tuple[bool, str]:
        market = self.get_market(market_id)
        if market.status != MarketStatus.OPEN:
            return False, "market_closed"
        return True, "open"

    def get_subject(self, subject_id: str) -> Subject:
        with self._lock:
            subject = self._subjects.get(subject_id)
        if subject is None:
            raise SubjectNotFoundError(
                f"Subject not found: {subject_id}", details={"subject_id": subject_id}
            )
        return subject

    def resolve_subject(self, identity: str) -> Optional[Subject]:
        """Find a subject by id or wallet address."""
        with self._lock:
            if identity in self._subjects:
                return self._subjects[identity]
            for subject in self._subjects.values():
                if subject.wallet_address and subject.wallet_address == identity:
                    return subject
        return None

    def bets_for_event(self, event_id: str) -> List[Bet]:
        with self._lock:
            market_ids = {
                m.market_id for m in self._markets.values() if m.event_id == event_id
            }
            return [b for b in self._bets.values() if b.market_id in market_ids]

    # ── Settlement-derived fields ─────────────────────────────

    def set_bet_status(self, bet_id: str, status: BetStatus) -> None:
        self.get_bet(bet_id).status = status

    def set_bet_access_level(self, bet_id: str, level: AccessLevel) -> None:
        self.get_bet(bet_id).access_level = level

    def set_bet_confirmed_at(self, bet_id: str, moment: datetime) -> None:
        self.get_bet(bet_id).confirmed_at = moment

    def set_bet_trace(self, bet_id: str, trace_id: str) -> None:
        self.get_bet(bet_id).trace_id = trace_id

    def set_bet_anchor(self, bet_id: str, root: str) -> None:
        self.get_bet(bet_id).anchor_proof = root

    # ── Balances ──────────────────────────────────────────────

    def credit_balance(self, subject_id: str, amount: Decimal) -> Decimal:
        amount = money(amount)
        subject = self.get_subject(subject_id)
        with self._balance_locks[subject_id]:
            subject.balance += amount
            balance = subject.balance
        logger.debug("Credited %s to %s, balance %s", amount, subject_id, balance)
        return balance

    def debit_balance(self, subject_id: str, amount: Decimal) -> Decimal:
        amount = money(amount)
        subject = self.get_subject(subject_id)
        with self._balance_locks[subject_id]:
            if subject.balance < amount:
                raise InsufficientBalanceError(
                    "Insufficient balance",
                    details={"subject_id": subject_id, "requested": amount},
                )
            subject.balance -= amount
            balance = subject.balance
        logger.debug("Debited %s from %s, balance %s", amount, subject_id, balance)
        return balance
