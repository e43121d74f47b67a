"""
Runtime context: every component constructed and wired explicitly.

There are no module-level singletons. Callers build one RuntimeContext at
start-up and pass it (or the components it holds) to whatever needs them.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from wagertrace.access.control import AccessControl
from wagertrace.access.scheduler import ExpiryScheduler
from wagertrace.anchoring.merkle import MerkleAnchoring
from wagertrace.betting.book import BettingCollaborator
from wagertrace.core.config import Settings
from wagertrace.core.crypto import Ed25519KeyManager
from wagertrace.core.time import Clock, SystemClock
from wagertrace.core.tokens import CapabilityTokens
from wagertrace.disputes.resolver import DisputeResolver
from wagertrace.ledger.ledger import AuditLedger
from wagertrace.registry.reputation import ReputationRegistry
from wagertrace.registry.trace import TraceRegistry
from wagertrace.settlement.backends import (
    SettlementBackend,
    SimulatedBackend,
    SimulatedCardBackend,
    SimulatedPixBackend,
)
from wagertrace.settlement.intents import Ed25519IntentVerifier, IntentVerifier
from wagertrace.settlement.orchestrator import SettlementOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class RuntimeContext:
    settings:     Settings
    key_manager:  Ed25519KeyManager
    ledger:       AuditLedger
    betting:      BettingCollaborator
    traces:       TraceRegistry
    reputation:   ReputationRegistry
    access:       AccessControl
    anchoring:    MerkleAnchoring
    disputes:     DisputeResolver
    orchestrator: SettlementOrchestrator
    scheduler:    Optional[ExpiryScheduler] = None

    @classmethod
    def from_settings(
        cls,
        settings:        Settings,
        betting:         BettingCollaborator,
        backends:        Optional[Dict[str, SettlementBackend]] = None,
        key_manager:     Optional[Ed25519KeyManager] = None,
        clock:           Optional[Clock] = None,
        intent_verifier: Optional[IntentVerifier] = None,
        start_scheduler: bool = True,
    ) -> "RuntimeContext":
        clock = clock or SystemClock()
        if key_manager is None:
            key_path    = Path(settings.key_path) if settings.key_path else None
            key_manager = Ed25519KeyManager.load_or_generate(key_path)

        ledger     = AuditLedger(key_manager, settings.ledger_path)
        traces     = TraceRegistry(ledger, clock)
        reputation = ReputationRegistry(
            ledger,
            clock,
            recent_dispute_window= settings.recent_dispute_window,
            trusted_success_rate=  settings.trusted_success_rate,
        )
        access = AccessControl(
            ledger,
            betting,
            CapabilityTokens(key_manager, clock),
            clock,
            provisional_window= settings.provisional_window,
            full_token_ttl=     settings.full_token_ttl,
        )
        if backends is None:
            backends = {"pix": SimulatedPixBackend(), "card": SimulatedCardBackend()}

        orchestrator = SettlementOrchestrator(
            traces,
            reputation,
            access,
            betting,
            backends,
            intent_verifier or Ed25519IntentVerifier(),
            facilitator_agent= settings.facilitator_agent,
            default_method=    settings.default_payment_method,
            clock=             clock,
            dispatch_workers=  settings.dispatch_workers,
        )
        for backend in backends.values():
            if isinstance(backend, SimulatedBackend) and backend.on_confirm is None:
                backend.on_confirm = orchestrator.handle_callback

        scheduler = None
        if start_scheduler:
            scheduler = ExpiryScheduler(access.on_timer, clock).start()
            access.scheduler = scheduler
            access.reschedule_pending()

        disputes = DisputeResolver(
            ledger,
            betting,
            key_manager,
            reputation,
            settings.facilitator_agent,
            clock,
            grace_ms=         settings.dispute_grace_ms,
            latency_fault_ms= settings.latency_fault_ms,
        )

        logger.info(
            "wagertrace runtime ready (ledger=%s, signer=%s...)",
            settings.ledger_path or "memory", key_manager.public_key_hex[:16],
        )
        return cls(
            settings=     settings,
            key_manager=  key_manager,
            ledger=       ledger,
            betting=      betting,
            traces=       traces,
            reputation=   reputation,
            access=       access,
            anchoring=    MerkleAnchoring(ledger, betting, clock),
            disputes=     disputes,
            orchestrator= orchestrator,
            scheduler=    scheduler,
        )

    def close(self) -> None:
        if self.scheduler is not None:
            self.scheduler.stop()
        self.orchestrator.shutdown()

    def __repr__(self) -> str:
        return (
            f"RuntimeContext("
            f"facilitator={self.settings.facilitator_agent!r}, "
            f"ledger_records={len(self.ledger)})"
        )
