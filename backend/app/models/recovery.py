# backend/app/models/recovery.py
"""
ORM models for account recovery.

RecoveryCode: human-entered code handed out of band (admin, support).
RecoveryToken: server-side half of the signed follow-up token a redeemed
code hands out. Rescue tokens are tracked in the challenge ledger instead.
The signed JWT proves who issued it, the row makes it single-use.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text
from sqlalchemy.sql import func

from backend.app.db.base import Base

TOKEN_KIND_RECOVERY = "recovery"
TOKEN_KIND_RESCUE = "rescue"

TOKEN_KINDS = (TOKEN_KIND_RECOVERY, TOKEN_KIND_RESCUE)


class RecoveryCode(Base):
    __tablename__ = "passkey_recovery_codes"

    id = Column(Integer, primary_key=True, index=True)

    # XXXX-XXXX-XXXX, unambiguous alphabet
    code = Column(String(32), unique=True, index=True, nullable=False)

    account_address = Column(String(42), nullable=False, index=True)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=True)

    # Audit trail
    created_by = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RecoveryToken(Base):
    __tablename__ = "passkey_recovery_tokens"

    id = Column(Integer, primary_key=True, index=True)

    # jti claim of the signed token
    token_id = Column(String(64), unique=True, index=True, nullable=False)

    account_address = Column(String(42), nullable=False, index=True)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
