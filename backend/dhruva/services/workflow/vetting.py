"""
Organization Vetting Pipeline

Lifecycle of an organization's bid to become a credential issuer:
register -> admin decision -> ledger authorization (see reconciler).

Approval touches two records. The vetting request is committed first and
the account second; if the account write fails the request stays approved
and ConsistencyReconciler.repair_account_approval restores the account.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...database import SessionLocal
from ...models.db_models import (
    AccountDB, AccountRole, RequestStatus, VettingDecision, VettingRequestDB,
)
from ..addresses import addresses_match, normalize_address, require_address
from ..errors import (
    InvalidStateError, MissingWalletError, NotFoundError, ValidationError, WalletConflictError,
)
from ..identity import IdentityStore
from .state_machine import ensure_transition

logger = logging.getLogger(__name__)

DEFAULT_ORGANIZATION_NAME = "Unnamed Organization"
DEFAULT_REJECTION_REASON = "No reason provided"


def is_corrupt(request: VettingRequestDB) -> bool:
    """A request with no account or a blank wallet can never be decided."""
    if request.account is None:
        return True
    return not normalize_address(request.wallet_address)


def purge_corrupt_requests(request_ids: List[str], session_factory=SessionLocal) -> int:
    """
    Delete corrupt vetting requests.

    Runs detached from the request that found them, in its own session.
    Failures are logged and swallowed.
    """
    if not request_ids:
        return 0

    db = session_factory()
    deleted = 0
    try:
        for request in db.query(VettingRequestDB).filter(VettingRequestDB.id.in_(request_ids)).all():
            # Re-check: the record may have been repaired since it was read
            if is_corrupt(request):
                db.delete(request)
                deleted += 1
        db.commit()
        if deleted:
            logger.info(f"Purged {deleted} corrupt vetting request(s)")
    except Exception as e:
        db.rollback()
        logger.error(f"Error cleaning up invalid vetting requests: {e}")
    finally:
        db.close()
    return deleted


class VettingService:
    """Organization vetting: submission, listing, admin decisions, wallet linkage."""

    def __init__(self, db: Session):
        self.db = db
        self.identity = IdentityStore(db)

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def find_pending(self, account_id: str) -> Optional[VettingRequestDB]:
        return self.db.query(VettingRequestDB).filter(
            VettingRequestDB.account_id == account_id,
            VettingRequestDB.status == RequestStatus.PENDING,
        ).first()

    def submit_vetting(
        self,
        account: AccountDB,
        wallet_address: str,
        org_metadata: Optional[Dict[str, Any]] = None,
    ) -> VettingRequestDB:
        """
        Create a pending vetting request, or return the existing one.
        The account itself is not modified.
        """
        if account.role != AccountRole.ORGANIZATION:
            raise ValidationError("Only organization accounts can request vetting")
        if not normalize_address(wallet_address):
            raise MissingWalletError(
                "Organization wallet address is missing. Organization must connect their wallet first."
            )
        wallet = require_address(wallet_address, "wallet_address")

        existing = self.find_pending(account.id)
        if existing is not None:
            return existing

        org_metadata = org_metadata or {}
        request = VettingRequestDB(
            id=str(uuid4()),
            account_id=account.id,
            wallet_address=wallet,
            username=account.username,
            organization_name=(
                org_metadata.get("organization_name")
                or account.organization_name
                or DEFAULT_ORGANIZATION_NAME
            ),
            website=org_metadata.get("website", account.website),
            description=org_metadata.get("description", account.description),
            status=RequestStatus.PENDING,
        )
        self.db.add(request)
        self.db.commit()
        self.db.refresh(request)

        logger.info(f"Vetting request {request.id} submitted for {account.username}")
        return request

    def link_wallet(self, account: AccountDB, wallet_address: str) -> AccountDB:
        """
        Link a wallet to an account. An unapproved organization gets its
        vetting request on first linkage.
        """
        account = self.identity.link_wallet(account, wallet_address)

        if account.role == AccountRole.ORGANIZATION and not account.is_approved:
            self.submit_vetting(account, account.wallet_address)
        return account

    # =========================================================================
    # LISTING
    # =========================================================================

    def get(self, request_id: str) -> VettingRequestDB:
        request = self.db.query(VettingRequestDB).filter(VettingRequestDB.id == request_id).first()
        if request is None:
            raise NotFoundError("Request not found", {"request_id": request_id})
        return request

    def list_vetting_requests(self) -> Tuple[List[VettingRequestDB], List[str]]:
        """
        All decidable requests, newest first, plus the ids of corrupt ones.

        Corrupt requests are never returned; the caller schedules
        purge_corrupt_requests for them after responding.
        """
        requests = self.db.query(VettingRequestDB).order_by(
            VettingRequestDB.created_at.desc()
        ).all()

        valid, corrupt_ids = [], []
        for request in requests:
            if is_corrupt(request):
                corrupt_ids.append(request.id)
            else:
                valid.append(request)

        if corrupt_ids:
            logger.warning(f"Found {len(corrupt_ids)} corrupt vetting request(s)")
        return valid, corrupt_ids

    # =========================================================================
    # DECISION
    # =========================================================================

    def decide_vetting(
        self,
        request_id: str,
        decision: VettingDecision,
        reviewer: str,
        reason: Optional[str] = None,
    ) -> VettingRequestDB:
        """Apply an admin decision to a pending vetting request."""
        try:
            decision = VettingDecision(decision)
        except ValueError:
            raise ValidationError("Decision must be 'approve' or 'reject'")
        if not reviewer or not reviewer.strip():
            raise ValidationError("Admin username is required")

        request = self.get(request_id)
        target = RequestStatus.APPROVED if decision == VettingDecision.APPROVE else RequestStatus.REJECTED
        ensure_transition(request.status, target)

        if decision == VettingDecision.APPROVE:
            return self._approve(request, reviewer)
        return self._reject(request, reviewer, reason)

    def _approve(self, request: VettingRequestDB, reviewer: str) -> VettingRequestDB:
        wallet = normalize_address(request.wallet_address)
        if not wallet:
            raise MissingWalletError(
                "Organization wallet address is missing. Organization must connect their wallet first."
            )

        account = self.identity.find_account_by_id(request.account_id)
        if account is None:
            raise NotFoundError("Organization user not found", {"account_id": request.account_id})

        if account.wallet_address and not addresses_match(account.wallet_address, wallet):
            raise WalletConflictError(
                "Wallet address mismatch between request and user account",
                {"request_wallet": wallet, "account_wallet": account.wallet_address},
            )
        if not account.wallet_address:
            holder = self.identity.find_account_by_wallet(wallet)
            if holder is not None and holder.id != account.id:
                raise WalletConflictError(
                    "This wallet is already linked to another account",
                    {"wallet_address": wallet},
                )

        now = datetime.utcnow()
        self._commit_decision(request.id, {
            VettingRequestDB.status: RequestStatus.APPROVED,
            VettingRequestDB.reviewed_by: reviewer,
            VettingRequestDB.reviewed_at: now,
        })

        # Second record, committed separately; repair_account_approval closes a lost write
        try:
            if not account.wallet_address:
                account.wallet_address = wallet
            account.is_approved = True
            account.approved_by = reviewer
            account.approved_at = now
            self.identity.save_account(account)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Vetting request {request.id} approved but account {account.id} update failed: {e}. "
                f"Run repair_account_approval to reconcile."
            )
            raise

        logger.info(f"Organization {account.username} approved by {reviewer}")
        self.db.refresh(request)
        return request

    def _reject(self, request: VettingRequestDB, reviewer: str, reason: Optional[str]) -> VettingRequestDB:
        self._commit_decision(request.id, {
            VettingRequestDB.status: RequestStatus.REJECTED,
            VettingRequestDB.reviewed_by: reviewer,
            VettingRequestDB.reviewed_at: datetime.utcnow(),
            VettingRequestDB.rejection_reason: reason or DEFAULT_REJECTION_REASON,
        })
        logger.info(f"Vetting request {request.id} rejected by {reviewer}")
        self.db.refresh(request)
        return request

    def _commit_decision(self, request_id: str, values: Dict[Any, Any]) -> None:
        """Compare-and-swap on status: only a still-pending row is updated."""
        updated = self.db.query(VettingRequestDB).filter(
            VettingRequestDB.id == request_id,
            VettingRequestDB.status == RequestStatus.PENDING,
        ).update(values, synchronize_session=False)
        if updated != 1:
            self.db.rollback()
            raise InvalidStateError("Request has already been reviewed", {"request_id": request_id})
        self.db.commit()
