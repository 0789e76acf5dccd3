"""
Consistency Reconciler

Detects and repairs divergence between off-chain approval state and the
ledger's issuer authorization ("drift"). Partial approval, where an
organization is approved in the database but not authorized on the ledger,
is an expected state; this is the path that closes it.

All checks are read-only and safe to repeat. The only ledger write is
authorize_issuer, issued after a fresh check and never retried.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from ...models.db_models import AccountDB, RequestStatus, VettingRequestDB
from ..addresses import addresses_match, normalize_address
from ..errors import InvalidStateError, MissingWalletError, UpstreamFailure
from ..ledger import (
    LedgerError, LedgerGateway, LedgerTransactionReverted, LedgerUnauthorized,
    caller_has_privilege, to_upstream_failure,
)

logger = logging.getLogger(__name__)


class DriftStatus(str, Enum):
    """Ledger authorization state of an approved organization."""
    IN_SYNC = "in_sync"
    MISSING_ON_CHAIN = "missing_on_chain"          # caller can fix it
    UNAUTHORIZED_CALLER = "unauthorized_caller"    # needs owner/issuer action


class SyncResult(str, Enum):
    ALREADY_AUTHORIZED = "already_authorized"
    AUTHORIZED = "authorized"
    UNAUTHORIZED_CALLER = "unauthorized_caller"
    REVERTED = "reverted"
    UPSTREAM_FAILURE = "upstream_failure"
    SKIPPED = "skipped"


@dataclass
class SyncOutcome:
    """What sync_authorization did and, on failure, who can fix it."""
    result: SyncResult
    message: str
    wallet_address: str
    tx_hash: Optional[str] = None
    ledger_owner: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.result in (SyncResult.ALREADY_AUTHORIZED, SyncResult.AUTHORIZED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result": self.result.value,
            "success": self.success,
            "message": self.message,
            "wallet_address": self.wallet_address,
            "tx_hash": self.tx_hash,
            "ledger_owner": self.ledger_owner,
        }


@dataclass
class DriftReport:
    request_id: str
    organization_name: str
    wallet_address: str
    status: DriftStatus
    details: Dict[str, Any] = field(default_factory=dict)


class ConsistencyReconciler:
    """Compares approved vetting requests with ledger issuer authorization."""

    def __init__(self, db: Session, ledger: LedgerGateway):
        self.db = db
        self.ledger = ledger

    # =========================================================================
    # DRIFT DETECTION
    # =========================================================================

    def check_authorization_drift(
        self,
        vetting_request: VettingRequestDB,
        caller: Optional[str] = None,
    ) -> DriftStatus:
        """Read-only drift check for an approved organization. Never writes to the ledger."""
        if vetting_request.status != RequestStatus.APPROVED:
            raise InvalidStateError(
                "Drift is only defined for approved organizations",
                {"status": RequestStatus(vetting_request.status).value},
            )
        wallet = normalize_address(vetting_request.wallet_address)
        if not wallet:
            raise MissingWalletError("Vetting request has no wallet address")

        try:
            if self.ledger.is_authorized_issuer(wallet):
                return DriftStatus.IN_SYNC
            if caller_has_privilege(self.ledger, normalize_address(caller)):
                return DriftStatus.MISSING_ON_CHAIN
        except LedgerError as e:
            raise to_upstream_failure(e, "check issuer authorization")
        return DriftStatus.UNAUTHORIZED_CALLER

    def scan_drift(self, caller: Optional[str] = None) -> List[DriftReport]:
        """Check every approved organization against the ledger."""
        approved = self.db.query(VettingRequestDB).filter(
            VettingRequestDB.status == RequestStatus.APPROVED
        ).order_by(VettingRequestDB.reviewed_at.desc()).all()

        reports = []
        for request in approved:
            if not normalize_address(request.wallet_address):
                continue
            status = self.check_authorization_drift(request, caller)
            reports.append(DriftReport(
                request_id=request.id,
                organization_name=request.organization_name,
                wallet_address=request.wallet_address,
                status=status,
            ))

        drifted = sum(1 for r in reports if r.status != DriftStatus.IN_SYNC)
        if drifted:
            logger.warning(f"{drifted} approved organization(s) not authorized on the ledger")
        return reports

    # =========================================================================
    # REPAIR
    # =========================================================================

    def sync_authorization(self, vetting_request: VettingRequestDB, caller: Optional[str]) -> SyncOutcome:
        """
        Authorize an approved organization's wallet on the ledger if needed.

        Failures are reported in the outcome, distinguishing a privilege
        problem from a reverted or unreachable ledger.
        """
        if vetting_request.status != RequestStatus.APPROVED:
            raise InvalidStateError(
                "Only approved organizations can be authorized on the ledger",
                {"status": RequestStatus(vetting_request.status).value},
            )

        wallet = normalize_address(vetting_request.wallet_address)
        caller = normalize_address(caller)
        drift = self.check_authorization_drift(vetting_request, caller)

        if drift == DriftStatus.IN_SYNC:
            return SyncOutcome(
                result=SyncResult.ALREADY_AUTHORIZED,
                message="Organization is already authorized on the ledger",
                wallet_address=wallet,
            )
        if drift == DriftStatus.UNAUTHORIZED_CALLER:
            return self._needs_owner(wallet)

        try:
            receipt = self.ledger.authorize_issuer(wallet, caller)
        except LedgerUnauthorized as e:
            logger.warning(f"Ledger refused to authorize {wallet}: {e}")
            return self._needs_owner(wallet)
        except LedgerTransactionReverted as e:
            logger.warning(f"Authorization of {wallet} reverted: {e}")
            return SyncOutcome(
                result=SyncResult.REVERTED,
                message=f"Ledger transaction reverted: {e}",
                wallet_address=wallet,
            )
        except LedgerError as e:
            logger.warning(f"Ledger unavailable while authorizing {wallet}: {e}")
            return SyncOutcome(
                result=SyncResult.UPSTREAM_FAILURE,
                message=f"Ledger unavailable, retry later: {e}",
                wallet_address=wallet,
            )

        logger.info(f"Authorized {wallet} on the ledger (tx {receipt.tx_hash})")
        return SyncOutcome(
            result=SyncResult.AUTHORIZED,
            message="Organization authorized on the ledger",
            wallet_address=wallet,
            tx_hash=receipt.tx_hash,
        )

    def sync_after_approval(self, vetting_request: VettingRequestDB, caller: Optional[str]) -> SyncOutcome:
        """sync_authorization for the admin approval flow; skipped without a caller wallet."""
        if not normalize_address(caller):
            return SyncOutcome(
                result=SyncResult.SKIPPED,
                message="Approved without ledger authorization: reviewer has no linked wallet",
                wallet_address=normalize_address(vetting_request.wallet_address),
            )
        try:
            return self.sync_authorization(vetting_request, caller)
        except UpstreamFailure as e:
            return SyncOutcome(
                result=SyncResult.UPSTREAM_FAILURE,
                message=e.message,
                wallet_address=normalize_address(vetting_request.wallet_address),
            )

    def repair_account_approval(self) -> int:
        """
        Re-apply account approval for approved requests whose account write
        was lost. Returns the number of accounts repaired.
        """
        rows = self.db.query(VettingRequestDB, AccountDB).join(
            AccountDB, AccountDB.id == VettingRequestDB.account_id
        ).filter(
            VettingRequestDB.status == RequestStatus.APPROVED,
            AccountDB.is_approved.is_(False),
        ).all()

        repaired = 0
        for request, account in rows:
            if account.wallet_address and not addresses_match(account.wallet_address, request.wallet_address):
                logger.warning(
                    f"Skipping repair of {account.username}: wallet changed since approval"
                )
                continue
            if not account.wallet_address:
                wallet = normalize_address(request.wallet_address)
                holder = self.db.query(AccountDB).filter(AccountDB.wallet_address == wallet).first()
                if holder is not None and holder.id != account.id:
                    logger.warning(f"Skipping repair of {account.username}: wallet {wallet} taken")
                    continue
                account.wallet_address = wallet
            account.is_approved = True
            account.approved_by = request.reviewed_by
            account.approved_at = request.reviewed_at
            repaired += 1

        if repaired:
            self.db.commit()
            logger.info(f"Repaired approval of {repaired} organization account(s)")
        return repaired

    def _needs_owner(self, wallet: str) -> SyncOutcome:
        try:
            owner = self.ledger.get_owner()
        except LedgerError:
            owner = None
        return SyncOutcome(
            result=SyncResult.UNAUTHORIZED_CALLER,
            message=(
                "Caller is not the ledger owner or an authorized issuer. The organization can "
                "authorize itself, or the ledger owner must authorize it."
            ),
            wallet_address=wallet,
            ledger_owner=owner,
        )
