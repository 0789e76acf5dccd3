"""
Document Approval Workflow

A holder submits a document fingerprint to an organization; the
organization approves or rejects it exactly once.

The workflow never writes to the ledger. An approval that references an
issued credential must only be recorded after the ledger accepted the
issuance (see IssuanceService, which enforces that ordering).
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4
import json
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import ApprovalRequestDB, CredentialDB, RequestStatus
from ..addresses import normalize_address, require_address
from ..errors import (
    DuplicatePendingError, InvalidStateError, NotFoundError, UnauthorizedError, ValidationError,
)
from .state_machine import ensure_transition

logger = logging.getLogger(__name__)

DECISION_STATUSES = (RequestStatus.APPROVED, RequestStatus.REJECTED)


@dataclass
class DecisionOutcome:
    """Result of decide(). mirror_updated is None when no credential was referenced."""
    request: ApprovalRequestDB
    mirror_updated: Optional[bool] = None
    warning: Optional[str] = None


def parse_metadata(metadata: Union[None, str, Dict[str, Any]]) -> Dict[str, Any]:
    """Accept a dict or a JSON object string; anything unparsable becomes {}."""
    if metadata is None or metadata == "":
        return {}
    if isinstance(metadata, dict):
        return metadata
    try:
        parsed = json.loads(metadata)
    except (TypeError, ValueError):
        logger.warning(f"Failed to parse metadata JSON: {metadata!r}")
        return {}
    if not isinstance(parsed, dict):
        logger.warning("Metadata JSON is not an object, ignoring it")
        return {}
    return parsed


def parse_status(status: Union[None, str, RequestStatus]) -> Optional[RequestStatus]:
    if status is None or status == "":
        return None
    try:
        return RequestStatus(status)
    except ValueError:
        raise ValidationError("Invalid status. Must be 'pending', 'approved' or 'rejected'")


class ApprovalService:
    """Submission, decision, cancellation and lookup of document approval requests."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def submit(
        self,
        requester: str,
        organization: str,
        document_hash: str,
        document_name: str,
        document_type: str = "",
        description: str = "",
        file_url: str = "",
        expiry_date: Optional[int] = None,
        metadata: Union[None, str, Dict[str, Any]] = None,
    ) -> ApprovalRequestDB:
        """Create a pending approval request."""
        if not normalize_address(requester) or not normalize_address(organization) \
                or not document_hash or not document_name:
            raise ValidationError(
                "Missing required fields: requester, organization, documentHash, documentName"
            )
        requester = require_address(requester, "requester")
        organization = require_address(organization, "organization")

        if expiry_date is not None and expiry_date != "":
            try:
                expiry_date = int(expiry_date)
            except (TypeError, ValueError):
                raise ValidationError("expiry_date must be a unix timestamp")
        else:
            expiry_date = None

        existing = self.db.query(ApprovalRequestDB).filter(
            ApprovalRequestDB.requester == requester,
            ApprovalRequestDB.organization == organization,
            ApprovalRequestDB.document_hash == document_hash,
            ApprovalRequestDB.status == RequestStatus.PENDING,
        ).first()
        if existing is not None:
            raise DuplicatePendingError(
                "Approval request already pending for this document",
                {"request_id": existing.id},
            )

        request = ApprovalRequestDB(
            id=str(uuid4()),
            requester=requester,
            organization=organization,
            document_hash=document_hash,
            document_name=document_name,
            document_type=document_type or "",
            description=description or "",
            file_url=file_url or "",
            status=RequestStatus.PENDING,
            response_message="",
            issued_credential_hash="",
            requested_at=datetime.utcnow(),
            expiry_date=expiry_date,
            request_metadata=parse_metadata(metadata),
        )
        self.db.add(request)
        self.db.commit()
        self.db.refresh(request)

        logger.info(f"Approval request {request.id} submitted by {requester} to {organization}")
        return request

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def get(self, request_id: str) -> ApprovalRequestDB:
        request = self.db.query(ApprovalRequestDB).filter(ApprovalRequestDB.id == request_id).first()
        if request is None:
            raise NotFoundError("Approval request not found", {"request_id": request_id})
        return request

    def list_by_organization(self, organization: str, status=None) -> List[ApprovalRequestDB]:
        query = self.db.query(ApprovalRequestDB).filter(
            ApprovalRequestDB.organization == normalize_address(organization)
        )
        status = parse_status(status)
        if status is not None:
            query = query.filter(ApprovalRequestDB.status == status)
        return query.order_by(ApprovalRequestDB.requested_at.desc()).all()

    def list_by_requester(self, requester: str) -> List[ApprovalRequestDB]:
        return self.db.query(ApprovalRequestDB).filter(
            ApprovalRequestDB.requester == normalize_address(requester)
        ).order_by(ApprovalRequestDB.requested_at.desc()).all()

    # =========================================================================
    # DECISION
    # =========================================================================

    def decide(
        self,
        request_id: str,
        decision: Union[str, RequestStatus],
        responder: Optional[str] = None,
        response_message: Optional[str] = None,
        issued_credential_ref: Optional[str] = None,
    ) -> DecisionOutcome:
        """
        Approve or reject a pending request.

        issued_credential_ref must come from a ledger issuance that already
        succeeded. Marking the credential mirror verified is best-effort.
        """
        try:
            decision = RequestStatus(decision)
        except ValueError:
            decision = None
        if decision not in DECISION_STATUSES:
            raise ValidationError("Invalid status. Must be 'approved' or 'rejected'")

        request = self.get(request_id)
        ensure_transition(request.status, decision)

        if responder and normalize_address(responder) != request.organization:
            raise UnauthorizedError(
                "Only the addressed organization can decide this request",
                {"organization": request.organization},
            )

        values = {
            ApprovalRequestDB.status: decision,
            ApprovalRequestDB.response_message: response_message or "",
            ApprovalRequestDB.responded_at: datetime.utcnow(),
        }
        credential_ref = None
        if decision == RequestStatus.APPROVED and issued_credential_ref:
            credential_ref = issued_credential_ref
            values[ApprovalRequestDB.issued_credential_hash] = credential_ref

        updated = self.db.query(ApprovalRequestDB).filter(
            ApprovalRequestDB.id == request.id,
            ApprovalRequestDB.status == RequestStatus.PENDING,
        ).update(values, synchronize_session=False)
        if updated != 1:
            self.db.rollback()
            raise InvalidStateError("Request already processed", {"request_id": request.id})
        self.db.commit()
        self.db.refresh(request)

        logger.info(f"Approval request {request.id} {decision.value}")

        outcome = DecisionOutcome(request=request)
        if credential_ref:
            outcome.mirror_updated, outcome.warning = self._mark_credential_verified(
                credential_ref, request.organization
            )
        return outcome

    def _mark_credential_verified(self, credential_hash: str, organization: str):
        try:
            credential = self.db.query(CredentialDB).filter(
                CredentialDB.hash == credential_hash
            ).first()
            if credential is None:
                return False, "No off-chain record for the issued credential"

            metadata = dict(credential.credential_metadata or {})
            metadata.update({
                "verified": True,
                "verified_by": organization,
                "verified_at": datetime.utcnow().isoformat(),
            })
            credential.credential_metadata = metadata
            self.db.commit()
            return True, None
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"Approval recorded but credential {credential_hash} mirror update failed: {e}")
            return False, "Credential mirror could not be marked verified"

    # =========================================================================
    # CANCELLATION
    # =========================================================================

    def cancel(self, request_id: str, requester: Optional[str] = None) -> bool:
        """Delete a still-pending request. Only the original requester may cancel."""
        request = self.get(request_id)

        if request.status != RequestStatus.PENDING:
            raise InvalidStateError("Cannot cancel processed request", {"request_id": request_id})
        if requester and normalize_address(requester) != request.requester:
            raise UnauthorizedError("Unauthorized")

        deleted = self.db.query(ApprovalRequestDB).filter(
            ApprovalRequestDB.id == request_id,
            ApprovalRequestDB.status == RequestStatus.PENDING,
        ).delete(synchronize_session=False)
        if deleted != 1:
            self.db.rollback()
            raise InvalidStateError("Cannot cancel processed request", {"request_id": request_id})
        self.db.commit()

        logger.info(f"Approval request {request_id} cancelled by requester")
        return True
