"""
wagertrace/core/crypto.py

Signing Layer

Ledger records, capability tokens and dispute attestations are signed
through a Signer. Payment intents and ledger files are checked with
verify_detached, which needs only the signer's public key hex.

    Signer.sign(payload)            → base64url signature, no padding
    Signer.verify(payload, proof)   → bool, never raises
    Signer.public_key_hex           → @property, 64-char lowercase hex

Nothing in wagertrace reaches for the cryptography package except this module.
"""

import base64
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
)

ED25519_SIGNATURE_BYTES = 64


@runtime_checkable
class Signer(Protocol):
    """Capability to produce and check proofs over canonical bytes."""

    @property
    def public_key_hex(self) -> str: ...

    def sign(self, data: bytes) -> str: ...

    def verify(self, data: bytes, signature_b64: str) -> bool: ...


class Ed25519KeyManager:
    """The production Signer: one Ed25519 key pair, optionally kept as a PEM file."""

    def __init__(self, private_key: Ed25519PrivateKey) -> None:
        self._private_key    = private_key
        self._public_key_hex = (
            private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()
        )

    @classmethod
    def generate(cls) -> "Ed25519KeyManager":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def load_or_generate(cls, path: Optional[Path]) -> "Ed25519KeyManager":
        """
        Key for a runtime context.

        No path: a fresh in-memory key. A path that exists must hold an
        Ed25519 PEM private key (ValueError otherwise). A missing path gets
        a new key written to it, so restarts sign with the same identity.
        """
        if path is None:
            return cls.generate()
        path = Path(path)
        if not path.exists():
            key = cls.generate()
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(key._private_key.private_bytes(
                encoding=             Encoding.PEM,
                format=               PrivateFormat.PKCS8,
                encryption_algorithm= NoEncryption(),
            ))
            return key

        try:
            private_key = load_pem_private_key(path.read_bytes(), password=None)
        except ValueError as exc:
            raise ValueError(f"Unreadable key file {path}: {exc}") from exc
        if not isinstance(private_key, Ed25519PrivateKey):
            raise ValueError(f"Key file {path} does not hold an Ed25519 private key")
        return cls(private_key)

    @property
    def public_key_hex(self) -> str:
        return self._public_key_hex

    def sign(self, data: bytes) -> str:
        """Sign canonical bytes. Caller canonicalizes."""
        return encode_b64url(self._private_key.sign(data))

    def verify(self, data: bytes, signature_b64: str) -> bool:
        return Ed25519KeyManager.verify_detached(data, signature_b64, self._public_key_hex)

    @staticmethod
    def verify_detached(data: bytes, signature_b64: str, public_key_hex: str) -> bool:
        """
        Check a signature against a bare public key hex string.

        False for a malformed key, a malformed or wrong-length signature,
        or a signature that does not match. Never raises.
        """
        if not isinstance(public_key_hex, str) or len(public_key_hex) != 64:
            return False
        if not isinstance(signature_b64, str) or not signature_b64:
            return False
        try:
            public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key_hex))
            raw_sig    = decode_b64url(signature_b64)
        except ValueError:
            return False
        if len(raw_sig) != ED25519_SIGNATURE_BYTES:
            return False
        try:
            public_key.verify(raw_sig, data)
        except InvalidSignature:
            return False
        return True

    def __repr__(self) -> str:
        return f"Ed25519KeyManager(public_key_hex={self._public_key_hex[:16]}...)"


def encode_b64url(raw: bytes) -> str:
    """base64url without padding."""
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_b64url(value: str) -> bytes:
    """Decode base64url, re-adding stripped padding."""
    padding = 4 - len(value) % 4
    return base64.urlsafe_b64decode(value + "=" * (padding % 4))
