"""
wagertrace Exception Hierarchy

All exceptions inherit from WagerTraceError for easy catching.

Every error carries:
    reason  — stable machine-readable string (e.g. "market_closed")
    kind    — "business" for rejections the caller caused or can act on,
              "system" for infrastructure failures (ledger, backend)
"""

BUSINESS = "business"
SYSTEM   = "system"


class WagerTraceError(Exception):
    """Base exception for all wagertrace errors"""

    reason = "error"
    kind   = SYSTEM

    def __init__(self, message: str, details: dict = None, reason: str = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if reason is not None:
            self.reason = reason

    def __str__(self):
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message

    def to_dict(self) -> dict:
        return {
            "error":   type(self).__name__,
            "reason":  self.reason,
            "kind":    self.kind,
            "message": self.message,
            "details": {k: str(v) for k, v in self.details.items()},
        }


class ValidationError(WagerTraceError):
    """Raised when input fails validation before any state mutation"""
    reason = "validation_failed"
    kind   = BUSINESS


class InvalidIntentError(ValidationError):
    """Raised when a payment intent is malformed or its signature is rejected"""
    reason = "invalid_intent"


class InvalidTransitionError(ValidationError):
    """Raised when an access grant is asked to leave a terminal level"""
    reason = "invalid_transition"


class DuplicateGrantError(ValidationError):
    """Raised when a trace already holds an ACTIVE grant"""
    reason = "duplicate_grant"


class NotFoundError(WagerTraceError):
    """Raised when a referenced entity does not exist"""
    reason = "not_found"
    kind   = BUSINESS


class TraceNotFoundError(NotFoundError):
    reason = "trace_not_found"


class BetNotFoundError(NotFoundError):
    reason = "bet_not_found"


class MarketNotFoundError(NotFoundError):
    reason = "market_not_found"


class GrantNotFoundError(NotFoundError):
    reason = "grant_not_found"


class CommitNotFoundError(NotFoundError):
    reason = "commit_not_found"


class SubjectNotFoundError(NotFoundError):
    reason = "subject_not_found"


class InsufficientBalanceError(WagerTraceError):
    """Raised before a debit that would take a balance below zero"""
    reason = "insufficient_balance"
    kind   = BUSINESS


class EmptyBatchError(WagerTraceError):
    """Raised when a Merkle commit is requested with no bet ids"""
    reason = "empty_batch"
    kind   = BUSINESS


class TokenError(WagerTraceError):
    """Raised when a capability token is malformed, forged or expired"""
    reason = "invalid_token"
    kind   = BUSINESS


class LedgerError(WagerTraceError):
    """Raised when ledger operations fail"""
    reason = "ledger_failure"


class SettlementBackendError(WagerTraceError):
    """Raised when a settlement backend cannot accept a dispatch"""
    reason = "backend_unreachable"
