"""
DHRUVA - SQLAlchemy ORM Models
Persistent storage for accounts, organization vetting, document approvals
and the off-chain mirror of issued ledger credentials.
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, DateTime, Text, JSON, ForeignKey, Enum as SQLEnum, Boolean, BigInteger
from sqlalchemy.orm import relationship
from ..database import Base


# =============================================================================
# ENUMS
# =============================================================================

class AccountRole(str, Enum):
    """Account roles."""
    HOLDER = "holder"
    ORGANIZATION = "organization"
    VERIFIER = "verifier"
    ADMIN = "admin"


class RequestStatus(str, Enum):
    """Status shared by vetting and document approval requests."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class VettingDecision(str, Enum):
    """Admin decisions on an organization vetting request."""
    APPROVE = "approve"
    REJECT = "reject"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def default_is_approved(role) -> bool:
    """Every role except organization is approved on creation."""
    if role is None:
        return True
    return AccountRole(role) != AccountRole.ORGANIZATION


def _is_approved_default(context):
    return default_is_approved(context.get_current_parameters().get("role"))


# =============================================================================
# IDENTITY
# =============================================================================

class AccountDB(Base):
    """User or organization account."""
    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True)  # UUID
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)
    role = Column(
        SQLEnum(AccountRole, name="account_role", values_callable=_enum_values),
        nullable=False,
    )

    # Canonical lower-case wallet address, unique across all accounts
    wallet_address = Column(String(64), unique=True, nullable=True, index=True)

    # Organization profile
    organization_name = Column(String(255), nullable=True)
    website = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)

    # Off-chain approval (only meaningful for organizations)
    is_approved = Column(Boolean, nullable=False, default=_is_approved_default)
    approved_by = Column(String(100), nullable=True)
    approved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    vetting_requests = relationship("VettingRequestDB", back_populates="account")


# =============================================================================
# ORGANIZATION VETTING
# =============================================================================

class VettingRequestDB(Base):
    """
    An organization's request to become a credential issuer.
    Decided once by an admin, never mutated afterwards.
    """
    __tablename__ = "vetting_requests"

    id = Column(String(36), primary_key=True)  # UUID
    # No cascade: a request whose account disappeared is treated as corrupt
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=True, index=True)

    # Snapshots taken at submission
    wallet_address = Column(String(64), nullable=True)
    username = Column(String(100), nullable=True)
    organization_name = Column(String(255), nullable=False, default="Unnamed Organization")
    website = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)

    status = Column(
        SQLEnum(RequestStatus, name="vetting_status", values_callable=_enum_values),
        nullable=False,
        default=RequestStatus.PENDING,
        index=True,
    )
    reviewed_by = Column(String(100), nullable=True)  # Admin username
    reviewed_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    account = relationship("AccountDB", back_populates="vetting_requests")


# =============================================================================
# DOCUMENT APPROVAL
# =============================================================================

class ApprovalRequestDB(Base):
    """A document a holder sent to an organization for review."""
    __tablename__ = "approval_requests"

    id = Column(String(36), primary_key=True)  # UUID
    requester = Column(String(64), nullable=False, index=True)
    organization = Column(String(64), nullable=False, index=True)

    # Content fingerprint, not the content itself
    document_hash = Column(String(132), nullable=False, index=True)
    document_name = Column(String(255), nullable=False)
    document_type = Column(String(100), default="")
    description = Column(Text, default="")
    file_url = Column(String(500), default="")

    status = Column(
        SQLEnum(RequestStatus, name="approval_status", values_callable=_enum_values),
        nullable=False,
        default=RequestStatus.PENDING,
        index=True,
    )
    response_message = Column(Text, default="")
    issued_credential_hash = Column(String(132), default="")

    requested_at = Column(DateTime, default=datetime.utcnow)
    responded_at = Column(DateTime, nullable=True)
    expiry_date = Column(BigInteger, nullable=True)  # Unix seconds chosen by requester

    # Opaque key-value bag, passed through unmodified
    request_metadata = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CredentialDB(Base):
    """Off-chain mirror of a credential anchored on the ledger."""
    __tablename__ = "credentials"

    id = Column(String(36), primary_key=True)  # UUID
    hash = Column(String(132), unique=True, nullable=False, index=True)
    issuer = Column(String(64), nullable=False, index=True)
    holder = Column(String(64), nullable=False, index=True)
    name = Column(String(255), default="")
    description = Column(Text, default="")
    expiry_date = Column(BigInteger, nullable=True)
    tx_hash = Column(String(132), nullable=True)
    approval_request_id = Column(String(36), nullable=True, index=True)
    revoked = Column(Boolean, default=False)

    # verified / verified_by / verified_at
    credential_metadata = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
