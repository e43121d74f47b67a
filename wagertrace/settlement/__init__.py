from wagertrace.settlement.backends import (
    SettlementBackend,
    SimulatedBackend,
    SimulatedCardBackend,
    SimulatedPixBackend,
)
from wagertrace.settlement.intents import (
    Ed25519IntentVerifier,
    IntentVerifier,
    sign_intent,
)
from wagertrace.settlement.orchestrator import SETTLEMENT_INITIATED, SettlementOrchestrator

__all__ = [
    "SettlementBackend",
    "SimulatedBackend",
    "SimulatedCardBackend",
    "SimulatedPixBackend",
    "Ed25519IntentVerifier",
    "IntentVerifier",
    "sign_intent",
    "SETTLEMENT_INITIATED",
    "SettlementOrchestrator",
]
