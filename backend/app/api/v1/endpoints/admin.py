# backend/app/api/v1/endpoints/admin.py
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api import deps
from backend.app.db.session import get_db
from backend.app.schemas.recovery import (
    IssueCodeRequest,
    RecoveryCodeInfo,
    RecoveryCodeListResponse,
)
from backend.app.security.session import SessionState
from backend.app.services.recovery import RecoveryService

router = APIRouter()


@router.post("/recovery-codes", response_model=RecoveryCodeInfo, status_code=status.HTTP_201_CREATED)
async def issue_recovery_code(
    body: IssueCodeRequest,
    db: AsyncSession = Depends(get_db),
    admin: SessionState = Depends(deps.require_admin),
):
    """Issue a recovery code for a user who lost access to their passkeys."""
    record = await RecoveryService(db).issue_code(
        body.user_address,
        created_by=admin.address,
        expires_days=body.expires_days,
        notes=body.notes,
    )
    return RecoveryCodeInfo.model_validate(record)


@router.get("/recovery-codes", response_model=RecoveryCodeListResponse)
async def list_recovery_codes(
    db: AsyncSession = Depends(get_db),
    admin: SessionState = Depends(deps.require_admin),
):
    codes = await RecoveryService(db).active_codes()
    return RecoveryCodeListResponse(codes=[RecoveryCodeInfo.model_validate(code) for code in codes])
