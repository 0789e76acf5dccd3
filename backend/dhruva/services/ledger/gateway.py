"""
External Ledger Gateway contract.

The ledger is an opaque, append-only service of record for issuer
authorization and credential issuance/revocation. The core depends only on
this Protocol so any transport (contract RPC relay, local ledger) can back it.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

from ..errors import UpstreamFailure


# =============================================================================
# LEDGER ERRORS
# =============================================================================

class LedgerError(Exception):
    """Base class for ledger call failures."""
    reason = "unavailable"


class LedgerUnauthorized(LedgerError):
    """Caller lacks ledger privilege (not owner / not authorized issuer)."""
    reason = "unauthorized"


class LedgerTransactionReverted(LedgerError):
    """Ledger rejected the transaction."""
    reason = "reverted"


class LedgerUnavailable(LedgerError):
    """Ledger could not be reached or timed out."""
    reason = "unavailable"


# =============================================================================
# LEDGER RECORDS
# =============================================================================

@dataclass(frozen=True)
class Receipt:
    """Proof that a ledger write was accepted."""
    tx_hash: str
    operation: str
    block_number: int
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class LedgerCredential:
    """Result of verifyCredential. exists=False means the hash is unknown."""
    exists: bool
    revoked: bool = False
    expired: bool = False
    issuer: str = ""
    holder: str = ""
    issued_at: int = 0
    expiry_date: int = 0
    name: str = ""
    description: str = ""

    @property
    def valid(self) -> bool:
        return self.exists and not self.revoked and not self.expired

    def to_dict(self) -> dict:
        return {
            "exists": self.exists,
            "revoked": self.revoked,
            "expired": self.expired,
            "valid": self.valid,
            "issuer": self.issuer,
            "holder": self.holder,
            "issued_at": self.issued_at,
            "expiry_date": self.expiry_date,
            "name": self.name,
            "description": self.description,
        }


# =============================================================================
# GATEWAY PROTOCOL
# =============================================================================

class LedgerGateway(Protocol):
    """
    Call contract of the external ledger.

    `caller` is the address whose ledger privilege backs a write.
    Writes raise LedgerUnauthorized, LedgerTransactionReverted or
    LedgerUnavailable; they are never retried by the gateway.
    """

    def is_authorized_issuer(self, address: str) -> bool:
        ...

    def get_owner(self) -> str:
        ...

    def authorize_issuer(self, address: str, caller: str) -> Receipt:
        ...

    def revoke_issuer(self, address: str, caller: str) -> Receipt:
        ...

    def issue_credential(
        self,
        holder: str,
        credential_hash: str,
        expiry_date: int,
        name: str,
        description: str,
        caller: str,
    ) -> Receipt:
        ...

    def verify_credential(self, credential_hash: str) -> LedgerCredential:
        ...

    def revoke_credential(self, credential_hash: str, caller: str) -> Receipt:
        ...


def caller_has_privilege(ledger: LedgerGateway, caller: Optional[str]) -> bool:
    """True when caller is the ledger owner or an authorized issuer."""
    if not caller:
        return False
    caller = caller.lower()
    if ledger.get_owner().lower() == caller:
        return True
    return ledger.is_authorized_issuer(caller)


def to_upstream_failure(error: LedgerError, action: str):
    """Translate a ledger failure into the workflow's UpstreamFailure."""
    if error.reason == "unauthorized":
        message = f"Ledger refused to {action}: caller is not the owner or an authorized issuer ({error})"
    elif error.reason == "reverted":
        message = f"Ledger transaction to {action} was reverted: {error}"
    else:
        message = f"Ledger unavailable while trying to {action}: {error}"
    return UpstreamFailure(message, reason=error.reason)
