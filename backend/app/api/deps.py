# backend/app/api/deps.py
from typing import Optional

from fastapi import Depends, Request

from backend.app.core.config import settings
from backend.app.core.errors import SessionExpired, Unauthorized, Forbidden
from backend.app.security.passkeys import RelyingParty, resolve_relying_party
from backend.app.security.session import SessionState, read_session
from backend.app.services.wallets import WalletDeriver, OwnershipChecker, StoreOwnershipChecker


def get_relying_party(request: Request) -> RelyingParty:
    """RP ID and accepted origins for this request's host."""
    return resolve_relying_party(request.headers.get("host"), settings)


def get_session_state(request: Request) -> SessionState:
    return read_session(request)


def require_session(session: SessionState = Depends(get_session_state)) -> SessionState:
    if session.is_stale:
        raise SessionExpired()
    if not session.is_valid:
        raise Unauthorized()
    return session


def require_admin(session: SessionState = Depends(require_session)) -> SessionState:
    if session.address not in settings.admin_addresses:
        raise Forbidden("Admin access required")
    return session


def get_wallet_deriver() -> WalletDeriver:
    return WalletDeriver(settings.CHAIN_ID)


def get_ownership_checker(deriver: WalletDeriver = Depends(get_wallet_deriver)) -> OwnershipChecker:
    # Swap for an on-chain checker via app.dependency_overrides
    return StoreOwnershipChecker(deriver)


def get_client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None
