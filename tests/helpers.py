"""
Test doubles and builders shared across the suite.
"""

import base64
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import cbor2
from webauthn.helpers import bytes_to_base64url

ADMIN_ADDRESS = "0x" + "ad" * 20


class FakeClock:
    """Callable clock that tests can move forward."""

    def __init__(self, start=None):
        self.now = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


def cose_ec2_key(seed: int = 1) -> bytes:
    """A structurally valid ES256 COSE key with deterministic coordinates."""
    x = bytes([seed]) * 32
    y = bytes([seed + 1]) * 32
    return cbor2.dumps({1: 2, 3: -7, -1: 1, -2: x, -3: y})


def cose_rsa_key() -> bytes:
    return cbor2.dumps({1: 3, 3: -257, -1: b"\x01" * 256, -2: b"\x01\x00\x01"})


def registration_verification(credential_bytes: bytes, public_key: bytes, backed_up: bool = True):
    """Stand-in for webauthn's VerifiedRegistration."""
    return SimpleNamespace(
        credential_id=credential_bytes,
        credential_public_key=public_key,
        sign_count=0,
        credential_backed_up=backed_up,
        credential_device_type=SimpleNamespace(value="multi_device"),
        aaguid="00000000-0000-0000-0000-000000000000",
    )


def authentication_verification(credential_bytes: bytes, new_sign_count: int = 1):
    """Stand-in for webauthn's VerifiedAuthentication."""
    return SimpleNamespace(
        credential_id=credential_bytes,
        new_sign_count=new_sign_count,
        credential_backed_up=True,
    )


def credential_payload(credential_bytes: bytes) -> dict:
    """Browser-shaped credential JSON. Verification is mocked, so only `id` matters."""
    credential_id = bytes_to_base64url(credential_bytes)
    return {
        "id": credential_id,
        "rawId": credential_id,
        "type": "public-key",
        "response": {
            "clientDataJSON": base64.urlsafe_b64encode(b"{}").decode().rstrip("="),
            "attestationObject": "AA",
            "transports": ["internal", "hybrid"],
        },
    }
