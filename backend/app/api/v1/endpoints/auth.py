# backend/app/api/v1/endpoints/auth.py
from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api import deps
from backend.app.db.session import get_db
from backend.app.schemas.session import SessionResponse, LogoutResponse
from backend.app.security.session import SessionState, clear_session_cookie
from backend.app.services.accounts import AccountService

router = APIRouter()


@router.get("/session", response_model=SessionResponse)
async def get_session(
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(deps.get_session_state),
):
    if not session.is_valid:
        return SessionResponse(authenticated=False)

    account = await AccountService(db).get(session.address)
    return SessionResponse(
        authenticated=True,
        user_address=session.address,
        auth_method=session.auth_method,
        smart_wallet_address=account.smart_wallet_address if account else None,
    )


@router.post("/logout", response_model=LogoutResponse)
async def logout(response: Response):
    clear_session_cookie(response)
    return LogoutResponse(success=True)
