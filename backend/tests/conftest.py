"""
Shared fixtures.

Tests run against an in-memory SQLite database. DATABASE_URL must be set
before dhruva.database is imported so the app's own engine uses it.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"

import pytest

from dhruva.database import Base, SessionLocal, engine
from dhruva.models import db_models  # noqa: F401
from dhruva.models.db_models import AccountRole, VettingRequestDB, RequestStatus
from dhruva.services.identity import IdentityStore
from dhruva.services.ledger import InMemoryLedger, set_ledger


OWNER = "0x" + "0" * 39 + "1"
ADMIN_WALLET = "0x" + "ad" * 20
ORG_WALLET = "0x" + "a" * 40
OTHER_ORG_WALLET = "0x" + "b" * 40
HOLDER_WALLET = "0x" + "c" * 40
DOC_HASH = "0x" + "d0c" * 10


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def ledger():
    return InMemoryLedger(owner=OWNER)


@pytest.fixture
def make_account(db):
    """Factory creating accounts straight through the identity store."""
    def _make(username, role=AccountRole.HOLDER, wallet_address=None, **profile):
        return IdentityStore(db).create_account(
            username=username,
            password_hash="not-a-real-hash",
            role=role,
            wallet_address=wallet_address,
            **profile,
        )
    return _make


@pytest.fixture
def organization(make_account):
    return make_account(
        "acme",
        role=AccountRole.ORGANIZATION,
        wallet_address=ORG_WALLET,
        organization_name="Acme University",
        website="https://acme.example",
    )


@pytest.fixture
def approved_organization(db, organization):
    organization.is_approved = True
    db.commit()
    db.refresh(organization)
    return organization


@pytest.fixture
def pending_vetting(db, organization):
    from dhruva.services.workflow import VettingService
    return VettingService(db).submit_vetting(organization, organization.wallet_address)


@pytest.fixture
def approved_vetting(db, organization):
    """Approved request with the account approved, ledger untouched."""
    from dhruva.services.workflow import VettingService
    service = VettingService(db)
    request = service.submit_vetting(organization, organization.wallet_address)
    return service.decide_vetting(request.id, "approve", "root")


@pytest.fixture
def corrupt_vetting(db):
    """Vetting request with neither an account nor a wallet."""
    request = VettingRequestDB(
        id="corrupt-1",
        account_id=None,
        wallet_address="",
        username="ghost",
        organization_name="Ghost Org",
        status=RequestStatus.PENDING,
    )
    db.add(request)
    db.commit()
    return request


@pytest.fixture
def client(db, ledger):
    from fastapi.testclient import TestClient
    from dhruva.main import app

    set_ledger(ledger)
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        set_ledger(None)


@pytest.fixture
def auth_headers():
    """Bearer header for an account, without going through bcrypt."""
    from dhruva.auth import create_access_token

    def _headers(account):
        token = create_access_token(account.id, account.username, AccountRole(account.role).value)
        return {"Authorization": f"Bearer {token}"}
    return _headers
