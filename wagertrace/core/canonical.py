"""
wagertrace: Canonical JSON Encoding — RFC 8785 (JCS)

This is the ONLY canonicalization permitted in wagertrace.
Ledger signing, chain hashing, Merkle leaves, capability tokens and
dispute attestations all go through this module.

RFC 8785: https://www.rfc-editor.org/rfc/rfc8785
"""

import hashlib

try:
    import jcs as _jcs
except ImportError as exc:
    raise ImportError(
        "wagertrace requires the 'jcs' package for RFC 8785 compliance.\n"
        "Install with: pip install jcs\n"
        f"Original error: {exc}"
    ) from exc


def canonicalize(obj: dict) -> bytes:
    """
    Encode a dict to RFC 8785 canonical JSON bytes.

    Output is deterministic regardless of key insertion order.
    All values must be JSON-primitive (str, int, float, bool, None, list, dict).
    Do NOT pass datetime or Decimal objects. Convert to strings first.

    Returns:
        UTF-8 encoded canonical JSON bytes, suitable for signing.
    """
    return _jcs.canonicalize(obj)


def canonical_hash(obj: dict) -> str:
    """
    SHA-256 of the RFC 8785 canonical form.

    Returns:
        Lowercase hex-encoded SHA-256 digest (64 characters).
    """
    return hashlib.sha256(canonicalize(obj)).hexdigest()


def sha256_hex(data: str) -> str:
    """SHA-256 of a UTF-8 string, lowercase hex."""
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
