"""
Credential Issuance

Ledger-first saga for approving a document:

    1. ledger.issue_credential   (irreversible, authorization-gated)
    2. credential mirror row     (off-chain copy of what the ledger holds)
    3. ApprovalService.decide    (pending -> approved, stores the hash)

A failed ledger write leaves the approval request pending and surfaces an
UpstreamFailure. If step 2 or 3 fails after the ledger accepted the write, a
retry finds the credential already on the ledger (issued by this organization
to this holder) and resumes from the mirror row. If step 3 loses a race the
credential still exists on the ledger and in the mirror; the approval shows
whoever decided first.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import uuid4
import hashlib
import logging

from sqlalchemy.orm import Session

from ...models.db_models import ApprovalRequestDB, CredentialDB, RequestStatus
from ..addresses import normalize_address, require_address
from ..errors import NotFoundError, UnauthorizedError, ValidationError
from ..ledger import (
    LedgerError, LedgerGateway, LedgerCredential, LedgerTransactionReverted, Receipt, to_upstream_failure,
)
from .approval import ApprovalService, DecisionOutcome
from .state_machine import ensure_transition

logger = logging.getLogger(__name__)


@dataclass
class IssuanceOutcome:
    """
    Approval decision plus the ledger write that backs it.
    receipt is None when a retry resumed from a credential already on the ledger.
    """
    decision: DecisionOutcome
    credential_hash: str
    receipt: Optional[Receipt] = None
    tx_hash: Optional[str] = None
    resumed: bool = False


def derive_credential_hash(request: ApprovalRequestDB) -> str:
    """Deterministic 32-byte credential id for an approval request."""
    requested_at = request.requested_at.isoformat() if request.requested_at else ""
    material = "|".join([
        request.requester, request.document_hash, request.organization, requested_at, request.id,
    ])
    return "0x" + hashlib.sha3_256(material.encode("utf-8")).hexdigest()


class IssuanceService:
    """Issues credentials on the ledger and records the approvals they back."""

    def __init__(self, db: Session, ledger: LedgerGateway):
        self.db = db
        self.ledger = ledger
        self.approvals = ApprovalService(db)

    def issue_and_approve(
        self,
        request_id: str,
        organization: str,
        credential_hash: Optional[str] = None,
        expiry_date: Optional[int] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
        response_message: Optional[str] = None,
    ) -> IssuanceOutcome:
        organization = require_address(organization, "organization")
        request = self.approvals.get(request_id)
        ensure_transition(request.status, RequestStatus.APPROVED)
        if request.organization != organization:
            raise UnauthorizedError(
                "Only the addressed organization can issue for this request",
                {"organization": request.organization},
            )

        credential_hash = normalize_address(credential_hash) or derive_credential_hash(request)
        if expiry_date is None:
            expiry_date = request.expiry_date or 0
        name = name or request.document_name
        description = description if description is not None else (request.description or "")

        receipt = None
        try:
            receipt = self.ledger.issue_credential(
                holder=request.requester,
                credential_hash=credential_hash,
                expiry_date=int(expiry_date),
                name=name,
                description=description,
                caller=organization,
            )
        except LedgerTransactionReverted as e:
            if not self._issued_for(request, credential_hash):
                logger.warning(f"Issuance for approval request {request.id} reverted on ledger: {e}")
                raise to_upstream_failure(e, "issue credential")
            logger.info(f"Credential {credential_hash} already on ledger, resuming approval request {request.id}")
        except LedgerError as e:
            logger.warning(f"Issuance for approval request {request.id} failed on ledger: {e}")
            raise to_upstream_failure(e, "issue credential")

        mirror = self._find_credential(credential_hash)
        if mirror is None:
            mirror = self._record_credential(
                request, credential_hash, int(expiry_date), name, description, receipt
            )

        decision = self.approvals.decide(
            request.id,
            RequestStatus.APPROVED,
            responder=organization,
            response_message=response_message,
            issued_credential_ref=credential_hash,
        )
        logger.info(f"Credential {credential_hash} issued for approval request {request.id}")
        return IssuanceOutcome(
            decision=decision,
            credential_hash=credential_hash,
            receipt=receipt,
            tx_hash=receipt.tx_hash if receipt else mirror.tx_hash,
            resumed=receipt is None,
        )

    def _issued_for(self, request: ApprovalRequestDB, credential_hash: str) -> bool:
        """Ledger already holds this credential, issued by the organization to the requester."""
        status = self.verify_credential(credential_hash)
        return (
            status.exists
            and not status.revoked
            and status.issuer == request.organization
            and status.holder == request.requester
        )

    def _find_credential(self, credential_hash: str) -> Optional[CredentialDB]:
        return self.db.query(CredentialDB).filter(CredentialDB.hash == credential_hash).first()

    def _record_credential(self, request, credential_hash, expiry_date, name, description, receipt) -> CredentialDB:
        credential = CredentialDB(
            id=str(uuid4()),
            hash=credential_hash,
            issuer=request.organization,
            holder=request.requester,
            name=name,
            description=description,
            expiry_date=expiry_date or None,
            tx_hash=receipt.tx_hash if receipt else None,
            approval_request_id=request.id,
            revoked=False,
            credential_metadata={"document_hash": request.document_hash},
        )
        self.db.add(credential)
        self.db.commit()
        return credential

    # =========================================================================
    # VERIFICATION / REVOCATION
    # =========================================================================

    def verify_credential(self, credential_hash: str) -> LedgerCredential:
        if not normalize_address(credential_hash):
            raise ValidationError("credential hash is required")
        try:
            return self.ledger.verify_credential(normalize_address(credential_hash))
        except LedgerError as e:
            raise to_upstream_failure(e, "verify credential")

    def revoke_credential(self, credential_hash: str, caller: str) -> Receipt:
        credential_hash = normalize_address(credential_hash)
        if not credential_hash:
            raise ValidationError("credential hash is required")
        caller = require_address(caller, "caller")

        status = self.verify_credential(credential_hash)
        if not status.exists:
            raise NotFoundError("Credential not found on ledger", {"credential_hash": credential_hash})

        try:
            receipt = self.ledger.revoke_credential(credential_hash, caller)
        except LedgerError as e:
            raise to_upstream_failure(e, "revoke credential")

        credential = self._find_credential(credential_hash)
        if credential is not None:
            credential.revoked = True
            metadata = dict(credential.credential_metadata or {})
            metadata["revoked_at"] = datetime.utcnow().isoformat()
            credential.credential_metadata = metadata
            self.db.commit()

        logger.info(f"Credential {credential_hash} revoked by {caller}")
        return receipt
