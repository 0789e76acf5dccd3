"""
DHRUVA - Organization Vetting Router

Organization-side endpoints: submit a vetting request, check its status
and, once approved, self-service ledger authorization.
Admin decisions live in the admin router.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import AccountDB, RequestStatus, VettingRequestDB
from ..auth import require_organization
from ..services.errors import NotFoundError
from ..services.ledger import LedgerGateway, get_ledger
from ..services.workflow import ConsistencyReconciler, VettingService

router = APIRouter(prefix="/vetting-requests", tags=["vetting"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class SubmitVettingRequest(BaseModel):
    """Organization details for a vetting request. Wallet defaults to the linked one."""
    wallet_address: Optional[str] = None
    organization_name: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None


class AccountSnapshot(BaseModel):
    id: str
    username: str
    wallet_address: Optional[str] = None
    is_approved: bool


class VettingRequestResponse(BaseModel):
    id: str
    account_id: Optional[str] = None
    wallet_address: Optional[str] = None
    username: Optional[str] = None
    organization_name: str
    website: Optional[str] = None
    description: Optional[str] = None
    status: str
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[str] = None
    account: Optional[AccountSnapshot] = None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def vetting_to_response(request: VettingRequestDB) -> VettingRequestResponse:
    account = request.account
    snapshot = None
    if account is not None:
        snapshot = AccountSnapshot(
            id=account.id,
            username=account.username,
            wallet_address=account.wallet_address,
            is_approved=bool(account.is_approved),
        )
    return VettingRequestResponse(
        id=request.id,
        account_id=request.account_id,
        wallet_address=request.wallet_address,
        username=request.username,
        organization_name=request.organization_name,
        website=request.website,
        description=request.description,
        status=RequestStatus(request.status).value,
        reviewed_by=request.reviewed_by,
        reviewed_at=_iso(request.reviewed_at),
        rejection_reason=request.rejection_reason,
        created_at=_iso(request.created_at),
        account=snapshot,
    )


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.post("", response_model=VettingRequestResponse, status_code=201)
async def submit_vetting_request(
    request: SubmitVettingRequest,
    current_user: AccountDB = Depends(require_organization),
    db: Session = Depends(get_db),
):
    """
    Request issuer status for the current organization.

    Idempotent: an existing pending request is returned unchanged.
    """
    vetting = VettingService(db).submit_vetting(
        current_user,
        request.wallet_address or current_user.wallet_address,
        request.model_dump(exclude_none=True, exclude={"wallet_address"}),
    )
    return vetting_to_response(vetting)


@router.get("/mine", response_model=List[VettingRequestResponse])
async def list_my_vetting_requests(
    current_user: AccountDB = Depends(require_organization),
    db: Session = Depends(get_db),
):
    """All vetting requests of the current organization, newest first."""
    requests = db.query(VettingRequestDB).filter(
        VettingRequestDB.account_id == current_user.id
    ).order_by(VettingRequestDB.created_at.desc()).all()
    return [vetting_to_response(r) for r in requests]


@router.post("/mine/sync-authorization", response_model=dict)
async def sync_my_authorization(
    current_user: AccountDB = Depends(require_organization),
    db: Session = Depends(get_db),
    ledger: LedgerGateway = Depends(get_ledger),
):
    """
    Authorize the current organization on the ledger using its own wallet.
    Only succeeds if that wallet already holds ledger privilege.
    """
    approved = db.query(VettingRequestDB).filter(
        VettingRequestDB.account_id == current_user.id,
        VettingRequestDB.status == RequestStatus.APPROVED,
    ).order_by(VettingRequestDB.reviewed_at.desc()).first()
    if approved is None:
        raise NotFoundError("No approved vetting request for this organization")

    outcome = ConsistencyReconciler(db, ledger).sync_authorization(approved, current_user.wallet_address)
    return outcome.to_dict()
