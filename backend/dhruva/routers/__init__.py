"""DHRUVA - API Routers"""
from .auth import router as auth_router
from .vetting import router as vetting_router
from .admin import router as admin_router
from .approvals import router as approvals_router
from .credentials import router as credentials_router

__all__ = [
    "auth_router",
    "vetting_router",
    "admin_router",
    "approvals_router",
    "credentials_router",
]
