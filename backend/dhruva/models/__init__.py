"""DHRUVA - Data Models"""
from .db_models import (
    # Enums
    AccountRole, RequestStatus, VettingDecision,
    # Tables
    AccountDB, VettingRequestDB, ApprovalRequestDB, CredentialDB,
    default_is_approved,
)

__all__ = [
    "AccountRole", "RequestStatus", "VettingDecision",
    "AccountDB", "VettingRequestDB", "ApprovalRequestDB", "CredentialDB",
    "default_is_approved",
]
