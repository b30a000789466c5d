# backend/app/api/v1/endpoints/recovery.py
"""
Account recovery.

Endpoints:
- POST /passkey/recovery/redeem - spend a recovery code, get a follow-up token
- POST /passkey/recovery/link   - move this session's passkey onto the
                                  account a recovery token vouches for

The follow-up token is then passed as `recoveryToken` to
/passkey/register/options and /passkey/register/verify.
"""
from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api import deps
from backend.app.db.session import get_db
from backend.app.schemas.recovery import (
    RedeemCodeRequest,
    RedeemCodeResponse,
    LinkAccountRequest,
    LinkAccountResponse,
)
from backend.app.security.session import SessionState, issue_session
from backend.app.services.recovery import RecoveryService

router = APIRouter()


@router.post("/redeem", response_model=RedeemCodeResponse)
async def redeem_recovery_code(body: RedeemCodeRequest, db: AsyncSession = Depends(get_db)):
    redeemed = await RecoveryService(db).redeem_code(body.code)
    return RedeemCodeResponse(
        user_address=redeemed.address,
        recovery_token=redeemed.token,
        expires_in=redeemed.expires_in,
    )


@router.post("/link", response_model=LinkAccountResponse)
async def link_account(
    body: LinkAccountRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(deps.require_session),
):
    target = await RecoveryService(db).link(session.address, body.recovery_token)
    token = issue_session(response, target)
    return LinkAccountResponse(success=True, user_address=target, session_token=token)
