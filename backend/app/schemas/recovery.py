# backend/app/schemas/recovery.py
from datetime import datetime
from typing import List, Optional

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from backend.app.schemas.passkey import CamelModel


class RedeemCodeRequest(CamelModel):
    code: str = Field(..., min_length=1, max_length=32)


class RedeemCodeResponse(CamelModel):
    user_address: str
    recovery_token: str
    expires_in: int


class LinkAccountRequest(CamelModel):
    recovery_token: str = Field(..., min_length=1)


class LinkAccountResponse(CamelModel):
    success: bool
    user_address: str
    session_token: str


class IssueCodeRequest(CamelModel):
    user_address: str
    expires_days: Optional[int] = Field(None, ge=1, le=365)
    notes: Optional[str] = Field(None, max_length=500)


class RecoveryCodeInfo(CamelModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, from_attributes=True)

    code: str
    user_address: str = Field(validation_alias="account_address")
    expires_at: datetime
    created_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class RecoveryCodeListResponse(CamelModel):
    codes: List[RecoveryCodeInfo]
