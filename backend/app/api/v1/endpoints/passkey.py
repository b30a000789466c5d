# backend/app/api/v1/endpoints/passkey.py
"""
Passkey ceremonies and credential management.

Endpoints:
- POST   /passkey/register/options  - creation options, challenge bound to the hint
- POST   /passkey/register/verify   - verify, resolve the account, bind, sign in
- POST   /passkey/login/options     - request options (discoverable when no hint)
- POST   /passkey/login/verify      - verify assertion, sign in (or offer rescue)
- GET    /passkey/credentials       - passkeys on the signed-in account
- DELETE /passkey/credentials/{id}  - remove one, unless it is the only wallet key

Failures are raised as PassbindError subclasses and rendered by the
handler in main.py.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api import deps
from backend.app.db.session import get_db
from backend.app.schemas.passkey import (
    RegisterOptionsRequest,
    RegisterOptionsResponse,
    RegisterVerifyRequest,
    RegisterVerifyResponse,
    LoginOptionsRequest,
    LoginOptionsResponse,
    LoginVerifyRequest,
    LoginVerifyResponse,
    CredentialInfo,
    CredentialListResponse,
    DeleteCredentialResponse,
)
from backend.app.security.passkeys import RelyingParty
from backend.app.security.session import SessionState, issue_session
from backend.app.services.authentication import AuthenticationFlow
from backend.app.services.credentials import CredentialStore, remove_credential
from backend.app.services.registration import RegistrationFlow
from backend.app.services.wallets import WalletDeriver, OwnershipChecker

router = APIRouter()


@router.post("/register/options", response_model=RegisterOptionsResponse)
async def registration_options(
    body: RegisterOptionsRequest,
    db: AsyncSession = Depends(get_db),
    rp: RelyingParty = Depends(deps.get_relying_party),
    deriver: WalletDeriver = Depends(deps.get_wallet_deriver),
):
    flow = RegistrationFlow(db, rp, deriver)
    begin = await flow.begin(
        address_hint=body.user_address,
        display_name=body.display_name,
        recovery_token=body.recovery_token,
    )
    return RegisterOptionsResponse(
        options=begin.options,
        rp_id=begin.rp_id,
        is_recovery_flow=begin.is_recovery_flow,
        user_address=begin.address,
    )


@router.post("/register/verify", response_model=RegisterVerifyResponse)
async def registration_verify(
    body: RegisterVerifyRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    rp: RelyingParty = Depends(deps.get_relying_party),
    session: SessionState = Depends(deps.get_session_state),
    deriver: WalletDeriver = Depends(deps.get_wallet_deriver),
):
    """
    Bind a new passkey to an account.

    The owning account comes from (in order) a recovery token, the current
    session, a returning address hint, or the credential id itself. A
    stale session is refused rather than falling through to a new account.
    """
    flow = RegistrationFlow(db, rp, deriver)
    result = await flow.complete(
        credential=body.credential,
        challenge=body.challenge,
        session=session,
        address_hint=body.user_address,
        display_name=body.display_name,
        recovery_token=body.recovery_token,
        user_agent=request.headers.get("user-agent"),
    )

    token = issue_session(response, result.resolution.address)
    return RegisterVerifyResponse(
        verified=True,
        credential_id=result.credential.credential_id,
        user_address=result.resolution.address,
        resolution=result.resolution.source,
        backed_up=bool(result.credential.backed_up),
        smart_wallet_address=result.account.smart_wallet_address,
        session_token=token,
    )


@router.post("/login/options", response_model=LoginOptionsResponse)
async def login_options(
    body: Optional[LoginOptionsRequest] = None,
    db: AsyncSession = Depends(get_db),
    rp: RelyingParty = Depends(deps.get_relying_party),
    deriver: WalletDeriver = Depends(deps.get_wallet_deriver),
):
    flow = AuthenticationFlow(db, rp, deriver)
    begin = await flow.begin(address_hint=body.user_address if body else None)
    return LoginOptionsResponse(options=begin.options, rp_id=begin.rp_id)


@router.post("/login/verify", response_model=LoginVerifyResponse)
async def login_verify(
    body: LoginVerifyRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    rp: RelyingParty = Depends(deps.get_relying_party),
    deriver: WalletDeriver = Depends(deps.get_wallet_deriver),
    client_ip: Optional[str] = Depends(deps.get_client_ip),
):
    flow = AuthenticationFlow(db, rp, deriver)
    result = await flow.complete(body.credential, body.challenge, client_ip=client_ip)

    token = issue_session(response, result.address)
    return LoginVerifyResponse(
        verified=True,
        user_address=result.address,
        credential_id=result.credential_id,
        session_token=token,
    )


@router.get("/credentials", response_model=CredentialListResponse)
async def list_credentials(
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(deps.require_session),
):
    credentials = await CredentialStore(db).list_for_account(session.address)
    return CredentialListResponse(
        credentials=[
            CredentialInfo(
                id=cred.id,
                credential_id=cred.credential_id,
                display_name=cred.display_name,
                device_type=cred.device_type,
                backed_up=bool(cred.backed_up),
                transports=cred.transports,
                is_wallet_key=cred.has_signing_capability,
                created_at=cred.created_at,
                last_used_at=cred.last_used_at,
            )
            for cred in credentials
        ]
    )


@router.delete("/credentials/{credential_row_id}", response_model=DeleteCredentialResponse)
async def delete_credential(
    credential_row_id: int,
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(deps.require_session),
    checker: OwnershipChecker = Depends(deps.get_ownership_checker),
):
    await remove_credential(db, session.address, credential_row_id, checker)
    return DeleteCredentialResponse(success=True)
