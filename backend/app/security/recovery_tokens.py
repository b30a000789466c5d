# backend/app/security/recovery_tokens.py
"""
Signed recovery and rescue tokens.

A token is an HS256 JWT signed with SECRET_KEY:

    {"sub": <address>, "kind": "recovery"|"rescue", "jti": <token id>,
     "iat": ..., "exp": ..., "typ": "passkey_recovery"}

The signature is always checked before any claim is read. Unsigned
base64 payloads, tokens signed with another key, and tokens using an
unexpected algorithm are all rejected as Invalid.
"""
from dataclasses import dataclass
from datetime import datetime, timezone

from jose import jwt, JWTError, ExpiredSignatureError

from backend.app.core.config import settings
from backend.app.core.errors import Invalid, Expired
from backend.app.models.recovery import TOKEN_KINDS
from backend.app.security.addresses import is_valid_address

TOKEN_TYPE = "passkey_recovery"


@dataclass(frozen=True)
class RecoveryClaims:
    address: str
    kind: str
    token_id: str
    expires_at: datetime


def create_recovery_token(address: str, kind: str, token_id: str, expires_at: datetime) -> str:
    if kind not in TOKEN_KINDS:
        raise ValueError(f"Unknown recovery token kind: {kind}")
    now = datetime.now(timezone.utc)
    to_encode = {
        "sub": address,
        "kind": kind,
        "jti": token_id,
        "typ": TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_recovery_token(token: str, expected_kind: str) -> RecoveryClaims:
    """
    Verify the signature, then the claims.

    Raises:
        Invalid: malformed, unsigned, tampered, or of the wrong kind
        Expired: signature valid but past exp
    """
    if not token or not isinstance(token, str):
        raise Invalid("Invalid recovery token")

    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError:
        raise Expired("Recovery token has expired")
    except JWTError:
        raise Invalid("Invalid recovery token")

    if payload.get("typ") != TOKEN_TYPE or payload.get("kind") != expected_kind:
        raise Invalid("Invalid recovery token")

    address = payload.get("sub")
    token_id = payload.get("jti")
    exp = payload.get("exp")
    if not is_valid_address(address or "") or not token_id or not isinstance(exp, (int, float)):
        raise Invalid("Invalid recovery token")

    return RecoveryClaims(
        address=address.lower(),
        kind=payload["kind"],
        token_id=token_id,
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
    )


def peek_token_kind(token: str) -> str:
    """
    Kind claim of a token whose signature verifies, without enforcing kind.
    Used where either a recovery or a rescue token is accepted.
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        raise Invalid("Invalid recovery token")
    kind = payload.get("kind")
    if kind not in TOKEN_KINDS:
        raise Invalid("Invalid recovery token")
    return kind
