"""
DHRUVA - FastAPI Application

Main entry point for the credential approval backend.

Architecture:
- Account → VettingRequest → admin decision → issuer authorization on the ledger
- ApprovalRequest → organization decision → credential issued on the ledger
- ConsistencyReconciler compares the off-chain records with the ledger and repairs drift
"""
from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .routers import (
    auth_router, vetting_router, admin_router, approvals_router, credentials_router,
)
from .database import init_db
from .services.errors import WorkflowError

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Dhruva",
    description="""
    Dhruva - Credential Approval Workflow

    Organizations are vetted by an administrator before they may issue
    credentials. Holders send document fingerprints to vetted organizations,
    which approve them by issuing a credential on the ledger.

    ## Workflows
    1. **Vetting**: organization registers → admin approves → issuer authorized on ledger
    2. **Approval**: holder submits document → organization issues credential → request approved
    3. **Reconciliation**: admin inspects and repairs drift between records and the ledger

    ## Key Principles
    - Requests move pending → approved | rejected exactly once
    - The ledger is written before the off-chain record that depends on it
    - Drift checks never write to the ledger
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router)
app.include_router(vetting_router)
app.include_router(admin_router)
app.include_router(approvals_router)
app.include_router(credentials_router)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    """Map workflow errors to their HTTP status with a structured body."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Dhruva",
        "version": __version__,
        "description": "Credential Approval Workflow",
        "docs": "/docs",
        "workflows": {
            "vetting": "Organization onboarding and issuer authorization",
            "approval": "Document approval backed by ledger credentials",
            "reconciliation": "Drift detection between records and the ledger",
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


# For running with: python -m dhruva.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
