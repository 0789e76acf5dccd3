"""
DHRUVA - Admin Router
Organization vetting decisions and ledger authorization reconciliation.
"""
from typing import List, Optional
import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import AccountDB, VettingDecision
from ..auth import require_admin
from ..services.errors import UnauthorizedError, UpstreamFailure
from ..services.ledger import LedgerGateway, get_ledger
from ..services.workflow import (
    ConsistencyReconciler, SyncResult, VettingService, purge_corrupt_requests,
)
from .vetting import VettingRequestResponse, vetting_to_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class RejectRequest(BaseModel):
    reason: Optional[str] = None


class LedgerSyncResponse(BaseModel):
    result: str
    success: bool
    message: str
    wallet_address: str
    tx_hash: Optional[str] = None
    ledger_owner: Optional[str] = None


class DecisionResponse(BaseModel):
    """Vetting decision, plus ledger sync outcome for approvals."""
    message: str
    request: VettingRequestResponse
    ledger_sync: Optional[LedgerSyncResponse] = None
    warning: Optional[str] = None


class DriftResponse(BaseModel):
    request_id: str
    organization_name: str
    wallet_address: str
    status: str


class RepairResponse(BaseModel):
    repaired: int


# =============================================================================
# VETTING DECISIONS
# =============================================================================

@router.get("/vetting-requests", response_model=List[VettingRequestResponse])
async def list_vetting_requests(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    admin: AccountDB = Depends(require_admin),
):
    """
    Get all organization vetting requests, newest first.

    Corrupt requests (no wallet, or account gone) are left out and deleted
    after the response is sent.
    """
    requests, corrupt_ids = VettingService(db).list_vetting_requests()
    if corrupt_ids:
        background_tasks.add_task(purge_corrupt_requests, corrupt_ids)
    return [vetting_to_response(r) for r in requests]


@router.post("/vetting-requests/{request_id}/approve", response_model=DecisionResponse)
async def approve_vetting_request(
    request_id: str,
    db: Session = Depends(get_db),
    admin: AccountDB = Depends(require_admin),
    ledger: LedgerGateway = Depends(get_ledger),
):
    """
    Approve an organization, then try to authorize it on the ledger.

    The approval stands even when ledger authorization fails or is skipped;
    the response carries a warning and the drift endpoints can finish it.
    """
    vetting = VettingService(db).decide_vetting(request_id, VettingDecision.APPROVE, admin.username)

    outcome = ConsistencyReconciler(db, ledger).sync_after_approval(vetting, admin.wallet_address)
    warning = None
    if not outcome.success:
        warning = f"Organization approved but not authorized on the ledger: {outcome.message}"
        logger.warning(f"Partial approval of vetting request {vetting.id}: {outcome.result.value}")

    return DecisionResponse(
        message="Organization approved successfully",
        request=vetting_to_response(vetting),
        ledger_sync=LedgerSyncResponse(**outcome.to_dict()),
        warning=warning,
    )


@router.post("/vetting-requests/{request_id}/reject", response_model=DecisionResponse)
async def reject_vetting_request(
    request_id: str,
    request: RejectRequest,
    db: Session = Depends(get_db),
    admin: AccountDB = Depends(require_admin),
):
    """Reject an organization. The account is left untouched."""
    vetting = VettingService(db).decide_vetting(
        request_id, VettingDecision.REJECT, admin.username, request.reason
    )
    return DecisionResponse(
        message="Organization rejected successfully",
        request=vetting_to_response(vetting),
    )


# =============================================================================
# LEDGER RECONCILIATION
# =============================================================================

@router.get("/vetting-requests/{request_id}/drift", response_model=DriftResponse)
async def check_vetting_drift(
    request_id: str,
    db: Session = Depends(get_db),
    admin: AccountDB = Depends(require_admin),
    ledger: LedgerGateway = Depends(get_ledger),
):
    """Read-only: is this organization authorized on the ledger, and can the admin fix it?"""
    vetting = VettingService(db).get(request_id)
    status = ConsistencyReconciler(db, ledger).check_authorization_drift(vetting, admin.wallet_address)
    return DriftResponse(
        request_id=vetting.id,
        organization_name=vetting.organization_name,
        wallet_address=vetting.wallet_address or "",
        status=status.value,
    )


@router.post("/vetting-requests/{request_id}/sync-authorization", response_model=LedgerSyncResponse)
async def sync_vetting_authorization(
    request_id: str,
    db: Session = Depends(get_db),
    admin: AccountDB = Depends(require_admin),
    ledger: LedgerGateway = Depends(get_ledger),
):
    """
    Authorize an approved organization on the ledger with the admin's wallet.
    No write happens if it is already authorized.
    """
    vetting = VettingService(db).get(request_id)
    outcome = ConsistencyReconciler(db, ledger).sync_authorization(vetting, admin.wallet_address)

    if outcome.result == SyncResult.UNAUTHORIZED_CALLER:
        raise UnauthorizedError(outcome.message, outcome.to_dict())
    if not outcome.success:
        reason = "reverted" if outcome.result == SyncResult.REVERTED else "unavailable"
        raise UpstreamFailure(outcome.message, reason=reason, details=outcome.to_dict())
    return LedgerSyncResponse(**outcome.to_dict())


@router.get("/drift", response_model=List[DriftResponse])
async def scan_drift(
    db: Session = Depends(get_db),
    admin: AccountDB = Depends(require_admin),
    ledger: LedgerGateway = Depends(get_ledger),
):
    """Drift status of every approved organization."""
    reports = ConsistencyReconciler(db, ledger).scan_drift(admin.wallet_address)
    return [
        DriftResponse(
            request_id=r.request_id,
            organization_name=r.organization_name,
            wallet_address=r.wallet_address,
            status=r.status.value,
        )
        for r in reports
    ]


@router.post("/repair-approvals", response_model=RepairResponse)
async def repair_approvals(
    db: Session = Depends(get_db),
    admin: AccountDB = Depends(require_admin),
    ledger: LedgerGateway = Depends(get_ledger),
):
    """Re-apply account approval for approved requests whose account update was lost."""
    repaired = ConsistencyReconciler(db, ledger).repair_account_approval()
    return RepairResponse(repaired=repaired)
