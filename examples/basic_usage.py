"""
wagertrace: Basic Usage Example

Demonstrates:
- Wiring a runtime from Settings
- Paying for a bet with a signed intent
- Settlement confirmation and the FULL access upgrade
- Anchoring a batch and checking inclusion
- Filing a dispute
- Verifying the audit ledger
"""

import logging
import tempfile
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from wagertrace import (
    Bet,
    Ed25519KeyManager,
    InMemoryBetBook,
    Market,
    PaymentIntent,
    RuntimeContext,
    Settings,
    Subject,
    verify_ledger_file,
)
from wagertrace.settlement import Ed25519IntentVerifier, SimulatedPixBackend, sign_intent


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    ledger_dir = tempfile.mkdtemp(prefix="wagertrace-")

    print("=" * 60)
    print("wagertrace: Basic Usage Example")
    print("=" * 60)

    # 1. Seed the betting collaborator
    now  = datetime.now(timezone.utc)
    book = InMemoryBetBook()
    book.add_subject(Subject("user-1", Decimal("100.00"), wallet_address="0xA11CE"))
    book.add_market(Market("market-1", "event-1", Decimal("2.10"), close_time=now + timedelta(hours=1)))
    book.add_bet(Bet("bet-1", "user-1", "market-1", Decimal("25.00"), Decimal("2.10"),
                     placed_at=now, server_received_at=now + timedelta(milliseconds=40)))

    # 2. Wire the runtime: the pix rail confirms after half a second
    payer_key = Ed25519KeyManager.generate()
    verifier  = Ed25519IntentVerifier({"0xA11CE": payer_key.public_key_hex})
    ctx = RuntimeContext.from_settings(
        Settings(ledger_path=ledger_dir),
        book,
        backends=        {"pix": SimulatedPixBackend(delay_seconds=0.5)},
        intent_verifier= verifier,
    )

    # 3. Pay for the bet
    intent = sign_intent(
        PaymentIntent(
            amount=    Decimal("25.00"),
            currency=  "BRL",
            payer=     "0xA11CE",
            payee=     ctx.settings.operator_payee,
            signature= "",
            nonce=     1,
            timestamp= ctx.orchestrator.clock.timestamp(),
        ),
        payer_key,
    )
    receipt = ctx.orchestrator.process_intent(intent, "bet-1", "user-1")
    print(f"\nIntent: {receipt.trace_id}  {receipt.status}  {receipt.access_level.value}")
    print(f"Balance after debit: {book.get_subject('user-1').balance}")

    # 4. Wait for the simulated confirmation
    time.sleep(1.0)
    confirmed, latency = ctx.traces.verify_settlement(receipt.trace_id)
    print(f"Settled: {confirmed}  latency={latency} ms  bet={book.get_bet('bet-1').status.value}")

    # 5. Anchor and verify
    commit = ctx.anchoring.commit("event-1", ["bet-1"])
    print(f"\nMerkle root: {commit.root[:16]}...")
    print(f"Inclusion:   {ctx.anchoring.verify('bet-1', commit.root).verified}")

    # 6. Dispute
    dispute = ctx.disputes.create_dispute("bet-1", "I was charged twice")
    print(f"\nDispute verdict: {dispute.result.verdict.value}: {dispute.result.explanation}")

    # 7. Reputation and ledger
    print(f"\nFacilitator: {ctx.orchestrator.status()['verification']}")
    ctx.close()

    report = verify_ledger_file(ledger_dir)
    print(f"\nLedger: {report.total_records} records, valid={report.valid}")
    print(f"Verify from the shell:  wagertrace verify {ledger_dir}")


if __name__ == "__main__":
    main()
