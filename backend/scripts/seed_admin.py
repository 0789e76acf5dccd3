#!/usr/bin/env python3
"""
Admin Account Seed Script
Creates an administrator account for the vetting panel.

Usage:
    python -m scripts.seed_admin <username> <password> [wallet_address]

Example:
    python -m scripts.seed_admin admin securepassword123 0xabc123...

The wallet is optional. Without one, approved organizations are recorded
but not authorized on the ledger until someone with ledger privilege syncs them.
"""
import sys
import os

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from dhruva.database import SessionLocal, engine, Base
from dhruva.models.db_models import AccountRole
from dhruva.auth import hash_password
from dhruva.services.errors import WorkflowError
from dhruva.services.identity import IdentityStore


def create_admin_account(username: str, password: str, wallet_address: str = None) -> bool:
    """Create an admin account, or promote an existing account with that username."""
    # Ensure tables exist
    Base.metadata.create_all(bind=engine)

    db: Session = SessionLocal()
    try:
        identity = IdentityStore(db)
        existing = identity.find_account_by_username(username)

        if existing:
            if existing.role == AccountRole.ADMIN:
                print(f"Account '{username}' is already an admin.")
                return False
            existing.role = AccountRole.ADMIN
            existing.is_approved = True
            if wallet_address:
                identity.assign_wallet(existing, wallet_address)
            identity.save_account(existing)
            print(f"Upgraded existing account '{username}' to admin role.")
            return True

        account = identity.create_account(
            username=username,
            password_hash=hash_password(password),
            role=AccountRole.ADMIN,
            wallet_address=wallet_address,
        )

        print("Admin account created successfully!")
        print(f"  Username: {account.username}")
        print(f"  Wallet: {account.wallet_address or '(none)'}")
        print("  Role: admin")
        return True

    except WorkflowError as e:
        print(f"Error creating admin account: {e.message}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    if len(sys.argv) not in (3, 4):
        print(__doc__)
        sys.exit(1)

    username = sys.argv[1]
    password = sys.argv[2]
    wallet_address = sys.argv[3] if len(sys.argv) == 4 else None

    # Basic validation
    if len(password) < 8:
        print("Error: Password must be at least 8 characters.")
        sys.exit(1)

    success = create_admin_account(username, password, wallet_address)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
