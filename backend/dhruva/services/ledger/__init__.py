"""
External Ledger Gateway

The core never reimplements ledger logic; it talks to whichever gateway
is installed here. LEDGER_OWNER_ADDRESS seeds the local ledger's owner.
"""
import os
from typing import Optional

from .gateway import (
    LedgerGateway, LedgerCredential, Receipt, caller_has_privilege, to_upstream_failure,
    LedgerError, LedgerUnauthorized, LedgerTransactionReverted, LedgerUnavailable,
)
from .memory import InMemoryLedger

LEDGER_OWNER_ADDRESS = os.getenv(
    "LEDGER_OWNER_ADDRESS",
    "0x0000000000000000000000000000000000000001"
)

_ledger: Optional[LedgerGateway] = None


def get_ledger() -> LedgerGateway:
    """Dependency for FastAPI - returns the installed ledger gateway."""
    global _ledger
    if _ledger is None:
        _ledger = InMemoryLedger(owner=LEDGER_OWNER_ADDRESS)
    return _ledger


def set_ledger(ledger: Optional[LedgerGateway]) -> None:
    """Install a gateway (None resets to the local ledger on next use)."""
    global _ledger
    _ledger = ledger


__all__ = [
    "LedgerGateway", "LedgerCredential", "Receipt", "caller_has_privilege", "to_upstream_failure",
    "LedgerError", "LedgerUnauthorized", "LedgerTransactionReverted", "LedgerUnavailable",
    "InMemoryLedger", "get_ledger", "set_ledger", "LEDGER_OWNER_ADDRESS",
]
