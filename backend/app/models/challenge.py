# backend/app/models/challenge.py
from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.sql import func

from backend.app.db.base import Base

CEREMONY_REGISTRATION = "registration"
CEREMONY_AUTHENTICATION = "authentication"
CEREMONY_RESCUE = "rescue"

CEREMONY_TYPES = (CEREMONY_REGISTRATION, CEREMONY_AUTHENTICATION, CEREMONY_RESCUE)


class PasskeyChallenge(Base):
    __tablename__ = "passkey_challenges"

    id = Column(Integer, primary_key=True, index=True)

    # base64url challenge, exactly as embedded in the ceremony options
    challenge = Column(String(255), unique=True, index=True, nullable=False)

    ceremony_type = Column(String(20), nullable=False)

    # Null for discoverable-credential authentication
    account_address = Column(String(42), nullable=True, index=True)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, nullable=False, default=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)

    client_ip = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
