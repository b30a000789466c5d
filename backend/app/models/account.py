# backend/app/models/account.py
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func

from backend.app.db.base import Base


class Account(Base):
    __tablename__ = "accounts"

    # Lowercased 0x-prefixed 20-byte hex address
    address = Column(String(42), primary_key=True)

    wallet_type = Column(String(20), nullable=False, default="passkey")

    login_count = Column(Integer, nullable=False, default=0)
    first_login_at = Column(DateTime(timezone=True), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    # Write-once: set from the first credential with signing capability.
    # A funded wallet lives here, later passkeys must not repoint it.
    smart_wallet_address = Column(String(42), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
