"""
wagertrace/settlement/intents.py

Payment intent signatures.

    signed bytes = JCS(intent.to_signing_dict())   — every field but signature
    signature    = Ed25519, base64url, by the payer's key

The orchestrator depends only on IntentVerifier. Ed25519IntentVerifier is
the production implementation, backed by a registry of payer public keys.
"""

from dataclasses import replace
from typing import Dict, Optional, Protocol

from wagertrace.core.canonical import canonicalize
from wagertrace.core.crypto import Ed25519KeyManager, Signer
from wagertrace.core.models import PaymentIntent


class IntentVerifier(Protocol):
    def verify(self, intent: PaymentIntent) -> bool: ...


def intent_bytes(intent: PaymentIntent) -> bytes:
    return canonicalize(intent.to_signing_dict())


def sign_intent(intent: PaymentIntent, signer: Signer) -> PaymentIntent:
    """Return a copy of intent carrying signer's signature."""
    return replace(intent, signature=signer.sign(intent_bytes(intent)))


class Ed25519IntentVerifier:
    """Checks intent signatures against registered payer keys."""

    def __init__(self, payer_keys: Optional[Dict[str, str]] = None):
        self._payer_keys: Dict[str, str] = dict(payer_keys or {})

    def register(self, payer: str, public_key_hex: str) -> None:
        self._payer_keys[payer] = public_key_hex

    def verify(self, intent: PaymentIntent) -> bool:
        public_key_hex = self._payer_keys.get(intent.payer)
        if public_key_hex is None:
            return False
        return Ed25519KeyManager.verify_detached(
            intent_bytes(intent), intent.signature, public_key_hex
        )
