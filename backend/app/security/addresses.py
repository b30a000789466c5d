# backend/app/security/addresses.py
"""
Wallet-style account addresses.

An address is "0x" followed by 40 lowercase hex characters. Addresses for
brand-new passkey accounts are derived from the credential id alone, so
re-registering the same credential always lands on the same account without
any stored mapping.
"""
import hashlib
import re
from typing import Optional

from backend.app.core.errors import Invalid

ADDRESS_HEX_LENGTH = 40

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")


def normalize_address(address: str) -> str:
    """
    Lowercase and validate an address.

    Raises:
        Invalid: if the value is not a 0x-prefixed 20-byte hex string
    """
    if not isinstance(address, str):
        raise Invalid("Invalid address format")
    normalized = address.strip().lower()
    if not _ADDRESS_RE.match(normalized):
        raise Invalid("Invalid address format")
    return normalized


def normalize_optional_address(address: Optional[str]) -> Optional[str]:
    if address is None or address == "":
        return None
    return normalize_address(address)


def is_valid_address(address: str) -> bool:
    return isinstance(address, str) and bool(_ADDRESS_RE.match(address.strip().lower()))


def derive_address_from_credential(credential_id: str, namespace: str) -> str:
    """
    Derive the account address for a credential with no other claim.

    address = "0x" + sha256("<namespace>:<credential_id>")[:40]

    Deterministic: the same credential id and namespace always yield the
    same address.
    """
    digest = hashlib.sha256(f"{namespace}:{credential_id}".encode("utf-8")).hexdigest()
    return f"0x{digest[:ADDRESS_HEX_LENGTH]}"


def user_handle_for(address: Optional[str]) -> bytes:
    """WebAuthn user.id: sha256 of the lowercased address (or of an empty hint)."""
    return hashlib.sha256((address or "").lower().encode("utf-8")).digest()
