"""
tests/helpers

Test doubles shared across the suite.

    FrozenClock               — manual clock, advanced explicitly
    PermissiveIntentVerifier  — accepts any "0x…" signature of 10+ characters
    RecordingBackend          — settlement rail that records dispatches
    InlineExecutor            — runs submitted work synchronously
    seed_book / add_bet       — InMemoryBetBook fixtures
"""

import threading
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from wagertrace.betting.book import InMemoryBetBook
from wagertrace.core.models import Bet, BetStatus, Market, MarketStatus, PaymentIntent, Subject
from wagertrace.core.time import Clock, truncate_ms

START = datetime(2026, 3, 1, 18, 0, 0, tzinfo=timezone.utc)

FACILITATOR = "agent-facilitator-1"


class FrozenClock(Clock):

    def __init__(self, start: datetime = START):
        self._lock = threading.Lock()
        self._now  = truncate_ms(start)

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, **delta) -> datetime:
        with self._lock:
            self._now = truncate_ms(self._now + timedelta(**delta))
            return self._now


class PermissiveIntentVerifier:
    """Well-formedness only: "0x" prefix and at least 10 characters."""

    def verify(self, intent: PaymentIntent) -> bool:
        sig = intent.signature or ""
        return sig.startswith("0x") and len(sig) >= 10


class RecordingBackend:

    def __init__(self, name: str = "pix", fail: bool = False):
        self.name  = name
        self.fail  = fail
        self.calls: List[Dict[str, Any]] = []

    def dispatch(self, trace_id, amount, currency, payer, payee, reference) -> str:
        if self.fail:
            raise ConnectionError(f"{self.name} rail unreachable")
        self.calls.append({
            "trace_id":  trace_id,
            "amount":    amount,
            "currency":  currency,
            "payer":     payer,
            "payee":     payee,
            "reference": reference,
        })
        return f"{self.name}-tx-{len(self.calls)}"


class InlineExecutor(Executor):

    def submit(self, fn, *args, **kwargs) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


def make_intent(
    amount:    str = "25.00",
    payer:     str = "user-1",
    signature: str = "0xsigned-intent",
    **fields,
) -> PaymentIntent:
    return PaymentIntent(
        amount=    Decimal(amount),
        currency=  fields.pop("currency", "BRL"),
        payer=     payer,
        payee=     fields.pop("payee", "operator"),
        signature= signature,
        **fields,
    )


def seed_book(
    book:       InMemoryBetBook,
    clock:      Clock,
    balance:    str = "100.00",
    close_in:   Optional[timedelta] = timedelta(hours=1),
    method:     str = "pix",
) -> InMemoryBetBook:
    """One subject "user-1" and one open market "m-1" on event "e-1"."""
    book.add_subject(Subject("user-1", Decimal(balance), "0xA11CE", method))
    book.add_market(Market(
        "m-1", "e-1", Decimal("2.50"),
        status=     MarketStatus.OPEN,
        close_time= clock.now() + close_in if close_in is not None else None,
    ))
    return book


def add_bet(
    book:        InMemoryBetBook,
    clock:       Clock,
    bet_id:      str,
    amount:      str = "25.00",
    status:      BetStatus = BetStatus.PENDING,
    received_at: Optional[datetime] = None,
    latency_ms:  Optional[int] = None,
    market_id:   str = "m-1",
    subject_id:  str = "user-1",
) -> Bet:
    received_at = received_at or clock.now()
    placed_at   = received_at - timedelta(milliseconds=latency_ms or 0)
    return book.add_bet(Bet(
        bet_id=             bet_id,
        subject_id=         subject_id,
        market_id=          market_id,
        amount=             Decimal(amount),
        odds=               Decimal("2.50"),
        placed_at=          placed_at,
        server_received_at= received_at,
        status=             status,
        latency_ms=         latency_ms,
    ))
