"""
Identity Store

Account lookups and persistence used by the workflow services.
Wallet addresses are canonicalized here and kept unique across accounts.
"""
from datetime import datetime
from typing import Optional
from uuid import uuid4
import logging

from sqlalchemy.orm import Session

from ..models.db_models import AccountDB, AccountRole, default_is_approved
from .addresses import normalize_address, require_address
from .errors import ConflictError, NotFoundError, ValidationError, WalletConflictError

logger = logging.getLogger(__name__)


class IdentityStore:
    """Account persistence for the vetting and approval pipelines."""

    def __init__(self, db: Session):
        self.db = db

    def find_account_by_id(self, account_id: str) -> Optional[AccountDB]:
        if not account_id:
            return None
        return self.db.query(AccountDB).filter(AccountDB.id == account_id).first()

    def find_account_by_wallet(self, wallet_address: str) -> Optional[AccountDB]:
        wallet = normalize_address(wallet_address)
        if not wallet:
            return None
        return self.db.query(AccountDB).filter(AccountDB.wallet_address == wallet).first()

    def find_account_by_username(self, username: str) -> Optional[AccountDB]:
        return self.db.query(AccountDB).filter(AccountDB.username == username).first()

    def get_account(self, account_id: str) -> AccountDB:
        account = self.find_account_by_id(account_id)
        if account is None:
            raise NotFoundError("Account not found", {"account_id": account_id})
        return account

    def save_account(self, account: AccountDB) -> AccountDB:
        account.updated_at = datetime.utcnow()
        self.db.add(account)
        self.db.commit()
        self.db.refresh(account)
        return account

    def create_account(
        self,
        username: str,
        password_hash: str,
        role: AccountRole,
        wallet_address: Optional[str] = None,
        email: Optional[str] = None,
        name: Optional[str] = None,
        organization_name: Optional[str] = None,
        website: Optional[str] = None,
        description: Optional[str] = None,
    ) -> AccountDB:
        """
        Create an account. Organization profile fields are only kept for
        organizations; organizations start unapproved.
        """
        if not username:
            raise ValidationError("username is required")
        if self.find_account_by_username(username):
            raise ConflictError("Username already exists", {"username": username})

        wallet = None
        if wallet_address:
            wallet = require_address(wallet_address, "wallet_address")
            if self.find_account_by_wallet(wallet):
                raise WalletConflictError(
                    "This wallet is already registered with another account",
                    {"wallet_address": wallet},
                )

        is_org = role == AccountRole.ORGANIZATION
        account = AccountDB(
            id=str(uuid4()),
            username=username,
            password_hash=password_hash,
            role=role,
            wallet_address=wallet,
            email=email,
            name=name,
            organization_name=organization_name if is_org else None,
            website=website if is_org else None,
            description=description if is_org else None,
            is_approved=default_is_approved(role),
        )
        self.db.add(account)
        self.db.commit()
        self.db.refresh(account)

        logger.info(f"Account created: {username} ({role.value})")
        return account

    def assign_wallet(self, account: AccountDB, wallet_address: str) -> str:
        """
        Set the account's wallet without committing.
        Raises WalletConflictError if another account already holds it.
        """
        wallet = require_address(wallet_address, "wallet_address")
        holder = self.find_account_by_wallet(wallet)
        if holder is not None and holder.id != account.id:
            raise WalletConflictError(
                "This wallet is already linked to another account",
                {"wallet_address": wallet},
            )
        account.wallet_address = wallet
        return wallet

    def link_wallet(self, account: AccountDB, wallet_address: str) -> AccountDB:
        """Assign and persist the account's wallet."""
        self.assign_wallet(account, wallet_address)
        return self.save_account(account)

    def unlink_wallet(self, account: AccountDB, wallet_address: str) -> dict:
        """
        Remove the account's wallet. The ledger authorization of an approved
        organization is not touched; the caller is told it needs revoking.
        """
        if not account.wallet_address or normalize_address(wallet_address) != account.wallet_address:
            raise ValidationError("Wallet address does not match user's linked wallet")

        old_wallet = account.wallet_address
        account.wallet_address = None
        self.save_account(account)

        logger.info(f"Wallet unlinked from {account.username}")
        return {
            "old_wallet_address": old_wallet,
            "requires_ledger_revocation": account.role == AccountRole.ORGANIZATION and account.is_approved,
        }
