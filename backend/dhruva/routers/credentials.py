"""
DHRUVA - Credential Verification Router
Verifiers check credentials against the ledger; issuers revoke them.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import AccountDB
from ..auth import get_current_user, require_approved_organization
from ..services.ledger import LedgerGateway, get_ledger
from ..services.workflow import IssuanceService

router = APIRouter(prefix="/credentials", tags=["credentials"])


@router.get("/{credential_hash}/verify", response_model=dict)
async def verify_credential(
    credential_hash: str,
    db: Session = Depends(get_db),
    current_user: AccountDB = Depends(get_current_user),
    ledger: LedgerGateway = Depends(get_ledger),
):
    """Ledger status of a credential: exists, revoked, expired, issuer, holder."""
    status = IssuanceService(db, ledger).verify_credential(credential_hash)
    return status.to_dict()


@router.post("/{credential_hash}/revoke", response_model=dict)
async def revoke_credential(
    credential_hash: str,
    db: Session = Depends(get_db),
    current_user: AccountDB = Depends(require_approved_organization),
    ledger: LedgerGateway = Depends(get_ledger),
):
    """Revoke a credential the current organization issued. Idempotent."""
    receipt = IssuanceService(db, ledger).revoke_credential(credential_hash, current_user.wallet_address)
    return {"success": True, "tx_hash": receipt.tx_hash}
