# backend/app/security/session.py
"""
Session issuance and inspection.

Sessions are HS256 JWTs carried in an HttpOnly cookie, and echoed to the
frontend as a bearer token. Reading a request yields one of three states:

- none:  no cookie and no bearer token
- valid: signature and expiry check out, bound to an address
- stale: a token is present but does not verify (expired, rotated key,
         tampered). Registration must not treat this like "none".
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request, Response
from jose import jwt, JWTError

from backend.app.core.config import settings

SESSION_NONE = "none"
SESSION_VALID = "valid"
SESSION_STALE = "stale"

AUTH_METHOD_PASSKEY = "passkey"


@dataclass(frozen=True)
class SessionState:
    status: str
    address: Optional[str] = None
    auth_method: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.status == SESSION_VALID

    @property
    def is_stale(self) -> bool:
        return self.status == SESSION_STALE


def create_session_token(address: str, auth_method: str = AUTH_METHOD_PASSKEY,
                         expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(days=settings.SESSION_EXPIRE_DAYS))
    to_encode = {
        "sub": address.lower(),
        "auth_method": auth_method,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_session_token(token: str) -> Optional[SessionState]:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    address = payload.get("sub")
    if not address:
        return None
    return SessionState(
        status=SESSION_VALID,
        address=address.lower(),
        auth_method=payload.get("auth_method"),
    )


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    if header.lower().startswith("bearer "):
        token = header[7:].strip()
        return token or None
    return None


def read_session(request: Request) -> SessionState:
    """Cookie first, then Authorization header; any valid token wins."""
    presented = [
        token
        for token in (request.cookies.get(settings.SESSION_COOKIE_NAME), _bearer_token(request))
        if token
    ]
    if not presented:
        return SessionState(status=SESSION_NONE)

    for token in presented:
        state = decode_session_token(token)
        if state is not None:
            return state
    return SessionState(status=SESSION_STALE)


def set_session_cookie(response: Response, token: str) -> Response:
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_EXPIRE_DAYS * 24 * 60 * 60,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )
    return response


def clear_session_cookie(response: Response) -> Response:
    response.delete_cookie(
        key=settings.SESSION_COOKIE_NAME,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )
    return response


def issue_session(response: Response, address: str, auth_method: str = AUTH_METHOD_PASSKEY) -> str:
    """Mint a session for `address`, set the cookie, return the bearer token."""
    token = create_session_token(address, auth_method)
    set_session_cookie(response, token)
    return token
