# backend/app/schemas/session.py
from typing import Optional

from backend.app.schemas.passkey import CamelModel


class SessionResponse(CamelModel):
    authenticated: bool
    user_address: Optional[str] = None
    auth_method: Optional[str] = None
    smart_wallet_address: Optional[str] = None


class LogoutResponse(CamelModel):
    success: bool
