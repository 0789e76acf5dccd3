"""
Address canonicalization.

All wallet/contract addresses are compared in one canonical form.
Call these at every ingress boundary instead of lower-casing inline.
"""
import re
from typing import Optional

from .errors import ValidationError

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-f]+$")


def normalize_address(value: Optional[str]) -> str:
    """Canonical form of an address: stripped and lower-cased ('' for None)."""
    if value is None:
        return ""
    return str(value).strip().lower()


def require_address(value: Optional[str], field: str = "address") -> str:
    """Normalize and validate a required address."""
    address = normalize_address(value)
    if not address:
        raise ValidationError(f"{field} is required")
    if not ADDRESS_PATTERN.match(address):
        raise ValidationError(f"{field} must be a 0x-prefixed hex address", {"field": field})
    return address


def addresses_match(left: Optional[str], right: Optional[str]) -> bool:
    """Case-insensitive address equality. Blank never matches."""
    a, b = normalize_address(left), normalize_address(right)
    return bool(a) and a == b
