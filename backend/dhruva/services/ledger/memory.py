"""
In-process ledger.

Enforces the same authorization rules as the deployed registry contract:
only the owner or an authorized issuer may authorize issuers, only the owner
may revoke them, only authorized issuers may issue, and only the issuing
address may revoke a credential. Used for local development and tests.
"""
import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Set

from .gateway import (
    LedgerCredential, LedgerTransactionReverted, LedgerUnauthorized, Receipt,
)

logger = logging.getLogger(__name__)


@dataclass
class _StoredCredential:
    issuer: str
    holder: str
    issued_at: int
    expiry_date: int
    name: str
    description: str
    revoked: bool = False


class InMemoryLedger:
    """Process-local ledger backing the LedgerGateway protocol."""

    def __init__(self, owner: str):
        self.owner = owner.lower()
        self.authorized_issuers: Set[str] = set()
        self.credentials: Dict[str, _StoredCredential] = {}
        self.transactions: List[Receipt] = []

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def is_authorized_issuer(self, address: str) -> bool:
        return address.lower() in self.authorized_issuers

    def get_owner(self) -> str:
        return self.owner

    def verify_credential(self, credential_hash: str) -> LedgerCredential:
        stored = self.credentials.get(credential_hash.lower())
        if stored is None:
            return LedgerCredential(exists=False)
        expired = stored.expiry_date != 0 and stored.expiry_date < int(time.time())
        return LedgerCredential(
            exists=True,
            revoked=stored.revoked,
            expired=expired,
            issuer=stored.issuer,
            holder=stored.holder,
            issued_at=stored.issued_at,
            expiry_date=stored.expiry_date,
            name=stored.name,
            description=stored.description,
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def authorize_issuer(self, address: str, caller: str) -> Receipt:
        caller = caller.lower()
        if caller != self.owner and caller not in self.authorized_issuers:
            raise LedgerUnauthorized("Only owner or authorized issuer")
        self.authorized_issuers.add(address.lower())
        return self._record("authorizeIssuer", address)

    def revoke_issuer(self, address: str, caller: str) -> Receipt:
        if caller.lower() != self.owner:
            raise LedgerUnauthorized("Only owner")
        self.authorized_issuers.discard(address.lower())
        return self._record("revokeIssuer", address)

    def issue_credential(
        self,
        holder: str,
        credential_hash: str,
        expiry_date: int,
        name: str,
        description: str,
        caller: str,
    ) -> Receipt:
        caller = caller.lower()
        if caller not in self.authorized_issuers:
            raise LedgerUnauthorized("Only authorized issuer")
        if not holder:
            raise LedgerTransactionReverted("Invalid holder address")
        key = credential_hash.lower()
        if key in self.credentials:
            raise LedgerTransactionReverted("Credential already exists")
        self.credentials[key] = _StoredCredential(
            issuer=caller,
            holder=holder.lower(),
            issued_at=int(time.time()),
            expiry_date=int(expiry_date or 0),
            name=name,
            description=description,
        )
        return self._record("issueCredential", key)

    def revoke_credential(self, credential_hash: str, caller: str) -> Receipt:
        stored = self.credentials.get(credential_hash.lower())
        if stored is None:
            raise LedgerTransactionReverted("Credential does not exist")
        if stored.issuer != caller.lower():
            raise LedgerUnauthorized("Only issuer can revoke")
        # Revocation is idempotent
        stored.revoked = True
        return self._record("revokeCredential", credential_hash)

    def _record(self, operation: str, subject: str) -> Receipt:
        block_number = len(self.transactions) + 1
        digest = hashlib.sha256(f"{block_number}:{operation}:{subject}".encode("utf-8")).hexdigest()
        receipt = Receipt(tx_hash=f"0x{digest}", operation=operation, block_number=block_number)
        self.transactions.append(receipt)
        logger.info(f"Ledger {operation} accepted in block {block_number}")
        return receipt
