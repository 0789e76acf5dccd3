"""
DHRUVA - Document Approval Router

Holders submit document fingerprints to organizations; organizations
approve (optionally issuing the credential on the ledger) or reject.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import AccountDB, ApprovalRequestDB, RequestStatus
from ..auth import get_current_user, require_approved_organization
from ..services.addresses import normalize_address
from ..services.errors import UnauthorizedError
from ..services.ledger import LedgerGateway, get_ledger
from ..services.workflow import ApprovalService, IssuanceService

router = APIRouter(prefix="/approval-requests", tags=["approvals"])


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CreateApprovalRequest(BaseModel):
    """Send a document to an organization for approval."""
    organization: str = Field(..., description="Organization wallet address")
    document_hash: str = Field(..., description="Content fingerprint of the document")
    document_name: str = Field(..., description="Human-readable document name")
    requester: Optional[str] = Field(None, description="Defaults to the caller's wallet")
    document_type: Optional[str] = ""
    description: Optional[str] = ""
    file_url: Optional[str] = Field("", description="Reference to the stored file")
    expiry_date: Optional[int] = Field(None, description="Requested expiry (unix seconds)")
    metadata: Optional[Dict[str, Any]] = None


class DecideApprovalRequest(BaseModel):
    """Organization decision on a pending request."""
    status: str = Field(..., description="approved or rejected")
    response_message: Optional[str] = None
    issued_credential_hash: Optional[str] = Field(
        None, description="Ledger credential hash from a completed issuance"
    )


class IssueCredentialRequest(BaseModel):
    """Issue the credential on the ledger, then approve."""
    credential_hash: Optional[str] = None
    expiry_date: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    response_message: Optional[str] = None


class ApprovalRequestResponse(BaseModel):
    id: str
    requester: str
    organization: str
    document_hash: str
    document_name: str
    document_type: Optional[str] = ""
    description: Optional[str] = ""
    file_url: Optional[str] = ""
    status: str
    response_message: Optional[str] = ""
    issued_credential_hash: Optional[str] = ""
    requested_at: Optional[str] = None
    responded_at: Optional[str] = None
    expiry_date: Optional[int] = None
    metadata: Dict[str, Any] = {}


class DecisionResponse(BaseModel):
    success: bool = True
    request: ApprovalRequestResponse
    credential_mirror_updated: Optional[bool] = None
    warning: Optional[str] = None


class IssueResponse(DecisionResponse):
    credential_hash: str
    tx_hash: Optional[str] = None
    resumed: bool = False


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def approval_to_response(request: ApprovalRequestDB) -> ApprovalRequestResponse:
    return ApprovalRequestResponse(
        id=request.id,
        requester=request.requester,
        organization=request.organization,
        document_hash=request.document_hash,
        document_name=request.document_name,
        document_type=request.document_type,
        description=request.description,
        file_url=request.file_url,
        status=RequestStatus(request.status).value,
        response_message=request.response_message,
        issued_credential_hash=request.issued_credential_hash,
        requested_at=_iso(request.requested_at),
        responded_at=_iso(request.responded_at),
        expiry_date=request.expiry_date,
        metadata=request.request_metadata or {},
    )


# =============================================================================
# HOLDER ENDPOINTS
# =============================================================================

@router.post("", response_model=DecisionResponse, status_code=201)
async def create_approval_request(
    request: CreateApprovalRequest,
    db: Session = Depends(get_db),
    current_user: AccountDB = Depends(get_current_user),
):
    """Submit a document to an organization."""
    if not current_user.wallet_address:
        raise UnauthorizedError("Link a wallet before submitting requests")
    requester = request.requester or current_user.wallet_address
    if normalize_address(requester) != current_user.wallet_address:
        raise UnauthorizedError("Requester must be the caller's own wallet")

    created = ApprovalService(db).submit(
        requester=requester,
        organization=request.organization,
        document_hash=request.document_hash,
        document_name=request.document_name,
        document_type=request.document_type,
        description=request.description,
        file_url=request.file_url,
        expiry_date=request.expiry_date,
        metadata=request.metadata,
    )
    return DecisionResponse(request=approval_to_response(created))


@router.get("/requester/{address}", response_model=List[ApprovalRequestResponse])
async def list_by_requester(
    address: str,
    db: Session = Depends(get_db),
    current_user: AccountDB = Depends(get_current_user),
):
    """All requests sent by a wallet, newest first."""
    return [approval_to_response(r) for r in ApprovalService(db).list_by_requester(address)]


@router.delete("/{request_id}", response_model=dict)
async def cancel_approval_request(
    request_id: str,
    requester: Optional[str] = Query(None, description="Must match the original requester"),
    db: Session = Depends(get_db),
    current_user: AccountDB = Depends(get_current_user),
):
    """Cancel a still-pending request. Only its requester may cancel."""
    service = ApprovalService(db)
    service.get(request_id)

    caller_wallet = current_user.wallet_address
    if not caller_wallet:
        raise UnauthorizedError("Link a wallet before cancelling requests")
    if requester and normalize_address(requester) != caller_wallet:
        raise UnauthorizedError("Unauthorized")

    service.cancel(request_id, requester=caller_wallet)
    return {"success": True, "message": "Request cancelled"}


# =============================================================================
# ORGANIZATION ENDPOINTS
# =============================================================================

@router.get("/organization/{address}", response_model=List[ApprovalRequestResponse])
async def list_by_organization(
    address: str,
    status: Optional[str] = Query(None, description="pending, approved or rejected"),
    db: Session = Depends(get_db),
    current_user: AccountDB = Depends(get_current_user),
):
    """All requests addressed to an organization, newest first."""
    return [
        approval_to_response(r)
        for r in ApprovalService(db).list_by_organization(address, status)
    ]


@router.patch("/{request_id}", response_model=DecisionResponse)
async def decide_approval_request(
    request_id: str,
    request: DecideApprovalRequest,
    db: Session = Depends(get_db),
    current_user: AccountDB = Depends(require_approved_organization),
):
    """
    Approve or reject a pending request.

    issued_credential_hash must come from an issuance the ledger already
    accepted; use POST /{id}/issue to have the server do both in order.
    """
    outcome = ApprovalService(db).decide(
        request_id,
        request.status,
        responder=current_user.wallet_address,
        response_message=request.response_message,
        issued_credential_ref=request.issued_credential_hash,
    )
    return DecisionResponse(
        request=approval_to_response(outcome.request),
        credential_mirror_updated=outcome.mirror_updated,
        warning=outcome.warning,
    )


@router.post("/{request_id}/issue", response_model=IssueResponse)
async def issue_and_approve(
    request_id: str,
    request: IssueCredentialRequest,
    db: Session = Depends(get_db),
    current_user: AccountDB = Depends(require_approved_organization),
    ledger: LedgerGateway = Depends(get_ledger),
):
    """
    Issue the credential on the ledger, then mark the request approved.
    If the ledger refuses, the request stays pending.
    """
    outcome = IssuanceService(db, ledger).issue_and_approve(
        request_id,
        organization=current_user.wallet_address,
        credential_hash=request.credential_hash,
        expiry_date=request.expiry_date,
        name=request.name,
        description=request.description,
        response_message=request.response_message,
    )
    return IssueResponse(
        request=approval_to_response(outcome.decision.request),
        credential_mirror_updated=outcome.decision.mirror_updated,
        warning=outcome.decision.warning,
        credential_hash=outcome.credential_hash,
        tx_hash=outcome.tx_hash,
        resumed=outcome.resumed,
    )


@router.get("/{request_id}", response_model=ApprovalRequestResponse)
async def get_approval_request(
    request_id: str,
    db: Session = Depends(get_db),
    current_user: AccountDB = Depends(get_current_user),
):
    """Get a single approval request."""
    return approval_to_response(ApprovalService(db).get(request_id))
