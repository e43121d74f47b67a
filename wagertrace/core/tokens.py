"""
Signed, time-limited capability tokens.

Token format:
    base64url(JCS(claims)) + "." + signature

The signature is the Signer's proof over the canonical claim bytes.
Claims always carry "iat" and "exp" as wire timestamps.
"""

import json
from datetime import timedelta
from typing import Any, Dict

from wagertrace.core.canonical import canonicalize
from wagertrace.core.crypto import Signer, decode_b64url, encode_b64url
from wagertrace.core.exceptions import TokenError
from wagertrace.core.time import Clock, SystemClock, format_timestamp, parse_timestamp


class CapabilityTokens:
    """Issues and checks capability tokens for one signer."""

    def __init__(self, signer: Signer, clock: Clock = None):
        self.signer = signer
        self.clock  = clock or SystemClock()

    def issue(self, claims: Dict[str, Any], ttl: timedelta) -> str:
        issued_at = self.clock.now()
        body = dict(claims)
        body["iat"] = format_timestamp(issued_at)
        body["exp"] = format_timestamp(issued_at + ttl)

        payload   = canonicalize(body)
        signature = self.signer.sign(payload)
        return f"{encode_b64url(payload)}.{signature}"

    def decode(self, token: str, verify_expiry: bool = True) -> Dict[str, Any]:
        """
        Verify a token and return its claims.

        Raises:
            TokenError: malformed token, bad signature, or expired
        """
        try:
            encoded, signature = token.split(".", 1)
            payload = decode_b64url(encoded)
            claims  = json.loads(payload)
        except (ValueError, AttributeError) as exc:
            raise TokenError(f"Malformed capability token: {exc}") from exc

        if not self.signer.verify(payload, signature):
            raise TokenError("Capability token signature is invalid")

        if verify_expiry and parse_timestamp(claims["exp"]) <= self.clock.now():
            raise TokenError(
                "Capability token has expired",
                details={"exp": claims["exp"]},
                reason="token_expired",
            )
        return claims
