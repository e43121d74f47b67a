"""
Shared fixtures: one in-memory ledger and one frozen clock per test,
with every component wired the way RuntimeContext wires them.
"""

import pytest

from helpers import (
    FACILITATOR,
    FrozenClock,
    InlineExecutor,
    PermissiveIntentVerifier,
    RecordingBackend,
    seed_book,
)

from wagertrace.access.control import AccessControl
from wagertrace.anchoring.merkle import MerkleAnchoring
from wagertrace.betting.book import InMemoryBetBook
from wagertrace.core.crypto import Ed25519KeyManager
from wagertrace.core.tokens import CapabilityTokens
from wagertrace.disputes.resolver import DisputeResolver
from wagertrace.ledger.ledger import AuditLedger
from wagertrace.registry.reputation import ReputationRegistry
from wagertrace.registry.trace import TraceRegistry
from wagertrace.settlement.orchestrator import SettlementOrchestrator


@pytest.fixture
def key():
    return Ed25519KeyManager.generate()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def ledger(key):
    return AuditLedger(key)


@pytest.fixture
def book(clock):
    return seed_book(InMemoryBetBook(), clock)


@pytest.fixture
def tokens(key, clock):
    return CapabilityTokens(key, clock)


@pytest.fixture
def traces(ledger, clock):
    return TraceRegistry(ledger, clock)


@pytest.fixture
def reputation(ledger, clock):
    return ReputationRegistry(ledger, clock)


@pytest.fixture
def access(ledger, book, tokens, clock):
    return AccessControl(ledger, book, tokens, clock)


@pytest.fixture
def anchoring(ledger, book, clock):
    return MerkleAnchoring(ledger, book, clock)


@pytest.fixture
def resolver(ledger, book, key, reputation, clock):
    return DisputeResolver(ledger, book, key, reputation, FACILITATOR, clock)


@pytest.fixture
def backend():
    return RecordingBackend("pix")


@pytest.fixture
def orchestrator(traces, reputation, access, book, backend, clock):
    return SettlementOrchestrator(
        traces,
        reputation,
        access,
        book,
        {"pix": backend},
        PermissiveIntentVerifier(),
        facilitator_agent= FACILITATOR,
        clock=             clock,
        executor=          InlineExecutor(),
    )
