# backend/app/models/credential.py
"""
ORM model for WebAuthn credentials.

Only public material is stored. The private key never leaves the
authenticator.
"""
from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, Boolean, JSON
from sqlalchemy.sql import func

from backend.app.db.base import Base


class PasskeyCredential(Base):
    __tablename__ = "passkey_credentials"

    id = Column(Integer, primary_key=True, index=True)

    # base64url credential id as reported by the authenticator
    credential_id = Column(String(1024), unique=True, index=True, nullable=False)

    # Repointed during account linking, never duplicated
    account_address = Column(
        String(42), ForeignKey("accounts.address"), index=True, nullable=False
    )

    # Base64-encoded COSE public key, as returned by the verification library
    public_key = Column(Text, nullable=False)

    # P-256 coordinates (hex), only for ES256 credentials
    public_key_x = Column(String(66), nullable=True)
    public_key_y = Column(String(66), nullable=True)

    # Signer address derived from the P-256 key; present means the
    # credential can sign for the account's smart wallet
    signer_address = Column(String(42), nullable=True)

    sign_count = Column(Integer, nullable=False, default=0)
    backed_up = Column(Boolean, nullable=False, default=False)
    device_type = Column(String(32), nullable=True)
    aaguid = Column(String(64), nullable=True)
    transports = Column(JSON, nullable=True)

    display_name = Column(String(100), nullable=True)
    user_agent = Column(String(512), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def has_signing_capability(self) -> bool:
        return bool(self.public_key_x and self.public_key_y and self.signer_address)
