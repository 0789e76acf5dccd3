"""
Workflow Error Taxonomy

Every service failure the presentation layer must render specifically.
Each error carries its kind, an HTTP status and optional structured details.
"""
from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """Base class for all workflow failures."""
    kind = "error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"detail": self.message, "error": self.kind}
        body.update(self.details)
        return body


class NotFoundError(WorkflowError):
    """Referenced record does not exist."""
    kind = "not_found"
    status_code = 404


class InvalidStateError(WorkflowError):
    """Transition attempted on a record that is no longer pending."""
    kind = "invalid_state"
    status_code = 409


class ValidationError(WorkflowError):
    """Missing or malformed required field."""
    kind = "validation"
    status_code = 400


class MissingWalletError(ValidationError):
    """Vetting request has no wallet address to approve."""
    kind = "missing_wallet"


class ConflictError(WorkflowError):
    """Record collides with an existing one."""
    kind = "conflict"
    status_code = 409


class DuplicatePendingError(ConflictError):
    """An identical approval request is already pending."""
    kind = "duplicate_pending"


class WalletConflictError(ConflictError):
    """Wallet address disagrees with, or is already taken by, another record."""
    kind = "wallet_conflict"


class UnauthorizedError(WorkflowError):
    """Caller lacks rights for the mutation."""
    kind = "unauthorized"
    status_code = 403


class UpstreamFailure(WorkflowError):
    """
    The ledger gateway call failed.

    reason is one of "unauthorized" (privilege problem, needs owner action),
    "reverted" (transaction rejected by the ledger) or "unavailable"
    (transient, safe to retry).
    """
    kind = "upstream_failure"
    status_code = 502

    def __init__(self, message: str, reason: str = "unavailable", details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details.setdefault("reason", reason)
        super().__init__(message, details)
        self.reason = reason
