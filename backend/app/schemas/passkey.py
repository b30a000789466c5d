# backend/app/schemas/passkey.py
"""
Pydantic schemas for the passkey ceremonies.

Field names are snake_case in Python and camelCase on the wire, matching
what browser WebAuthn helpers send and expect. The `credential` payloads
are passed to the verification library untouched, so they stay plain dicts.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class RegisterOptionsRequest(CamelModel):
    user_address: Optional[str] = None
    display_name: Optional[str] = Field(None, max_length=100)
    recovery_token: Optional[str] = None


class RegisterOptionsResponse(CamelModel):
    options: Dict[str, Any]
    rp_id: str
    is_recovery_flow: bool
    user_address: Optional[str] = None


class RegisterVerifyRequest(CamelModel):
    credential: Dict[str, Any]
    challenge: str = Field(..., min_length=1)
    user_address: Optional[str] = None
    display_name: Optional[str] = Field(None, max_length=100)
    recovery_token: Optional[str] = None


class RegisterVerifyResponse(CamelModel):
    verified: bool
    credential_id: str
    user_address: str
    resolution: str
    backed_up: bool
    smart_wallet_address: Optional[str] = None
    session_token: str


class LoginOptionsRequest(CamelModel):
    user_address: Optional[str] = None


class LoginOptionsResponse(CamelModel):
    options: Dict[str, Any]
    rp_id: str


class LoginVerifyRequest(CamelModel):
    credential: Dict[str, Any]
    challenge: str = Field(..., min_length=1)


class LoginVerifyResponse(CamelModel):
    verified: bool
    user_address: str
    credential_id: str
    session_token: str


class CredentialInfo(CamelModel):
    """A stored passkey as shown in account settings. No key material."""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, from_attributes=True)

    id: int
    credential_id: str
    display_name: Optional[str] = None
    device_type: Optional[str] = None
    backed_up: bool
    transports: Optional[List[str]] = None
    is_wallet_key: bool = False
    created_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None


class CredentialListResponse(CamelModel):
    credentials: List[CredentialInfo]


class DeleteCredentialResponse(CamelModel):
    success: bool
