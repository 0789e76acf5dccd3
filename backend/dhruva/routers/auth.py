"""
DHRUVA - Authentication Router
Handles account registration, login, session verification and wallet linkage.
Wallet signature checks happen in the wallet client before these calls.
"""
from typing import Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import AccountDB, AccountRole
from ..auth import hash_password, verify_password, create_access_token, get_current_user
from ..services.identity import IdentityStore
from ..services.workflow import VettingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class RegisterRequest(BaseModel):
    username: str
    password: str
    role: AccountRole
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    wallet_address: Optional[str] = None
    # Organization profile
    organization_name: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None

    @field_validator('role')
    @classmethod
    def validate_role(cls, v):
        if v == AccountRole.ADMIN:
            raise ValueError('Admin accounts cannot self-register')
        return v

    @field_validator('password')
    @classmethod
    def validate_password_strength(cls, v):
        if len(v) < 8:
            raise ValueError('Password must be at least 8 characters')
        return v


class LoginRequest(BaseModel):
    username: str
    password: str


class WalletRequest(BaseModel):
    wallet_address: str


class AccountResponse(BaseModel):
    """Account as seen by its owner."""
    id: str
    username: str
    role: str
    name: Optional[str] = None
    email: Optional[str] = None
    wallet_address: Optional[str] = None
    organization_name: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None
    is_approved: bool
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    created_at: Optional[str] = None


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    account: AccountResponse


class UnlinkWalletResponse(BaseModel):
    message: str
    old_wallet_address: str
    requires_ledger_revocation: bool
    note: Optional[str] = None


def account_to_response(account: AccountDB) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        username=account.username,
        role=AccountRole(account.role).value,
        name=account.name,
        email=account.email,
        wallet_address=account.wallet_address,
        organization_name=account.organization_name,
        website=account.website,
        description=account.description,
        is_approved=bool(account.is_approved),
        approved_by=account.approved_by,
        approved_at=account.approved_at.isoformat() if account.approved_at else None,
        created_at=account.created_at.isoformat() if account.created_at else None,
    )


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest, db: Session = Depends(get_db)):
    """
    Register a new account.

    Organizations registering with a wallet get a pending vetting request.
    """
    identity = IdentityStore(db)
    account = identity.create_account(
        username=request.username,
        password_hash=hash_password(request.password),
        role=request.role,
        wallet_address=request.wallet_address,
        email=request.email,
        name=request.name,
        organization_name=request.organization_name,
        website=request.website,
        description=request.description,
    )

    if account.role == AccountRole.ORGANIZATION and account.wallet_address:
        VettingService(db).submit_vetting(account, account.wallet_address, {
            "organization_name": request.organization_name,
            "website": request.website,
            "description": request.description,
        })

    token = create_access_token(account.id, account.username, account.role.value)
    logger.info(f"Account registered: {account.username}")
    return AuthResponse(access_token=token, account=account_to_response(account))


@router.post("/login", response_model=AuthResponse)
async def login(request: LoginRequest, db: Session = Depends(get_db)):
    """
    Authenticate account and return JWT token.
    """
    account = IdentityStore(db).find_account_by_username(request.username)

    if not account or not verify_password(request.password, account.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = create_access_token(account.id, account.username, account.role.value)

    logger.info(f"Account logged in: {request.username}")
    return AuthResponse(access_token=token, account=account_to_response(account))


@router.get("/me", response_model=AccountResponse)
async def get_me(current_user: AccountDB = Depends(get_current_user)):
    """Get the current account."""
    return account_to_response(current_user)


@router.post("/link-wallet", response_model=AccountResponse)
async def link_wallet(
    request: WalletRequest,
    current_user: AccountDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Link a wallet to the current account.

    An unapproved organization's first wallet link opens its vetting request.
    """
    account = VettingService(db).link_wallet(current_user, request.wallet_address)
    return account_to_response(account)


@router.post("/unlink-wallet", response_model=UnlinkWalletResponse)
async def unlink_wallet(
    request: WalletRequest,
    current_user: AccountDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Unlink the current account's wallet.

    Ledger authorization is not revoked here; approved organizations are told
    to revoke it through the ledger owner.
    """
    result = IdentityStore(db).unlink_wallet(current_user, request.wallet_address)
    note = None
    if result["requires_ledger_revocation"]:
        note = ("If this organization was authorized on the ledger, revoke its authorization "
                "through the ledger owner.")
    return UnlinkWalletResponse(
        message="Wallet unlinked successfully",
        old_wallet_address=result["old_wallet_address"],
        requires_ledger_revocation=result["requires_ledger_revocation"],
        note=note,
    )
